import mongomock
import pytest
from fastapi.testclient import TestClient

from database import BUILDS_COLLECTION, PARTS_COLLECTION, get_db
from main import app

PARTS = [
    {
        "_id": "m1", "category": "motors", "brand": "TBS", "model": "Ethix", "name": "Ethix",
        "kv": 1950, "weight_g": 32.5, "active": True, "warranty_months": 12,
        "price": {"eur": 24.9, "currency": "EUR"},
        "specs": {"stator": "2306", "shaft_mm": 5},
        "compat": {"frame_size": "5in"},
    },
    {
        "_id": "m2", "category": "motors", "brand": "GEPRC", "model": "SPEEDX2", "name": "GEPRC Speedx2",
        "kv": 2450, "active": False, "warranty_months": 6,
        "price": {"value": 19.0, "currency": "EUR"},
        "specs": {"stator": "2207", "magnets": "N52"},
        "tags": ["race"],
    },
    {
        "_id": "m3", "category": "motors", "brand": " TBS ", "model": "Flat", "name": "tbs flat",
        "kv": "unknown", "price": 30,
        "specs": "n/a",
    },
    {
        "_id": "f1", "category": "frames", "brand": "ImpulseRC", "model": "Apex", "name": "Apex 5",
        "weight_g": 120, "price": {"eur": 89.0, "currency": "EUR"},
        "compat": {"motor_mount": "16x16"},
    },
]


@pytest.fixture
def mongo_db():
    db = mongomock.MongoClient().db
    db[PARTS_COLLECTION].insert_many([dict(p) for p in PARTS])
    return db


@pytest.fixture
def parts(mongo_db):
    return mongo_db[PARTS_COLLECTION]


@pytest.fixture
def builds_collection(mongo_db):
    return mongo_db[BUILDS_COLLECTION]


@pytest.fixture
def client(mongo_db):
    app.dependency_overrides[get_db] = lambda: mongo_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
