import json


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_categories(client):
    assert client.get("/api/categories").json() == ["frames", "motors"]


def test_raw_listing_limit(client):
    docs = client.get("/api/droneFpv", params={"limit": "2"}).json()
    assert len(docs) == 2
    assert "id" in docs[0] and "_id" not in docs[0]


def test_parts_with_filter(client):
    flt = {"brand": {"$in": ["TBS", "GEPRC"]}, "kv": {"$gte": 2000}}
    res = client.get("/api/parts", params={"category": "motors", "filter": json.dumps(flt)})
    assert res.status_code == 200
    assert [d["id"] for d in res.json()] == ["m2"]


def test_parts_requires_category(client):
    res = client.get("/api/parts")
    assert res.status_code == 400
    assert "category" in res.json()["detail"]


def test_parts_rejects_bad_json_and_operator_keys(client):
    res = client.get("/api/parts", params={"category": "motors", "filter": "{oops"})
    assert res.status_code == 400
    res = client.get("/api/parts", params={"category": "motors", "filter": json.dumps({"$where": "1"})})
    assert res.status_code == 400
    assert "$where" in res.json()["detail"]


def test_distinct(client):
    res = client.get("/api/distinct", params={"category": "motors", "fields": "specs.stator, compat.frame_size"})
    assert res.json() == {"specs.stator": ["2207", "2306"], "compat.frame_size": ["5in"]}


def test_distinct_validation(client):
    assert client.get("/api/distinct", params={"category": "motors"}).status_code == 400
    res = client.get("/api/distinct", params={"category": "motors", "fields": "brand,a;b"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid field: a;b"


def test_range(client):
    assert client.get("/api/range", params={"category": "motors", "field": "kv"}).json() == {"min": 1950, "max": 2450}
    assert client.get("/api/range", params={"category": "vtx", "field": "kv"}).json() == {"min": None, "max": None}
    assert client.get("/api/range", params={"category": "motors", "field": "$kv"}).status_code == 400


def test_nested_and_field_keys(client):
    assert client.get("/api/spec-keys", params={"category": "motors"}).json() == ["magnets", "shaft_mm", "stator"]
    assert client.get("/api/compat-keys", params={"category": "frames"}).json() == ["motor_mount"]
    keys = client.get("/api/field-keys", params={"category": "frames"}).json()
    assert keys == {"scalar": ["brand", "model", "name", "price.currency"], "numeric": ["price.eur", "weight_g"]}
    assert client.get("/api/field-keys").status_code == 400


def test_pieces_paginated(client):
    body = client.get("/api/pieces", params={"limit": "2", "page": "2"}).json()
    assert body["totalDocs"] == 4
    assert body["totalPages"] == 2
    assert body["hasPrevPage"] is True and body["hasNextPage"] is False
    assert len(body["items"]) == 2


def test_pieces_flat_filters(client):
    names = lambda params: sorted(d["id"] for d in client.get("/api/pieces", params=params).json()["items"])
    assert names({"brand": "TBS,GEPRC"}) == ["m1", "m2"]
    assert names({"active": "false"}) == ["m2"]
    assert names({"name": "TBS"}) == ["m3"]
    assert names({"category": "frames"}) == ["f1"]
    assert client.get("/api/pieces", params={"a;b": "1"}).status_code == 400


def test_pieces_distinct(client):
    assert client.get("/api/pieces/distinct/category").json() == {"field": "category", "values": ["frames", "motors"]}


def test_build_lifecycle(client):
    payload = {
        "name": "Racer1",
        "creator": "Bob",
        "type": "5in",
        "total_price_eur": 250.5,
        "items": {"motors": {"m1": {"qty": 4, "item": {"brand": "X"}}}},
    }
    res = client.put("/api/droneFpvAdd", json=payload)
    assert res.status_code == 201
    body = res.json()
    assert body["ok"] is True
    build_id = body["id"]
    assert build_id.startswith("item-")

    detail = client.get("/api/builds/detail", params={"_id": build_id}).json()
    assert detail["total_price_eur"] == 250.5
    assert detail["items"]["motors"]["m1"]["qty"] == 4

    by_tuple = client.get("/api/builds/detail", params={
        "name": "Racer1", "creator": "Bob", "type": "5in", "total_price_eur": "250.5"})
    assert by_tuple.json()["id"] == build_id

    listing = client.get("/api/builds", params={"summary": "1", "name": "racer"}).json()
    assert listing["totalDocs"] == 1
    assert listing["items"][0] == {
        "id": build_id, "name": "Racer1", "creator": "Bob", "type": "5in", "total_price_eur": 250.5}

    assert client.get("/api/builds/distinct/creator").json() == {"field": "creator", "values": ["Bob"]}

    assert client.delete(f"/api/builds/{build_id}").json() == {"ok": True, "deleted": build_id}
    assert client.get("/api/builds/detail", params={"_id": build_id}).status_code == 404
    assert client.delete(f"/api/builds/{build_id}").status_code == 404


def test_add_builds_rejects_malformed_body(client):
    assert client.put("/api/droneFpvAdd", content="not json",
                      headers={"content-type": "application/json"}).status_code == 400
    assert client.put("/api/droneFpvAdd", json="just a string").status_code == 400
    assert client.put("/api/droneFpvAdd", json={"items": {"motors": {"m1": {"qty": -1}}}}).status_code == 400


def test_add_builds_conflict(client, builds_collection, monkeypatch):
    from pymongo.errors import BulkWriteError

    def fail(*args, **kwargs):
        raise BulkWriteError({"writeErrors": [{"code": 11000, "errmsg": "dup"}]})

    monkeypatch.setattr(type(builds_collection), "bulk_write", fail)
    res = client.put("/api/droneFpvAdd", json={"_id": "b1", "name": "x"})
    assert res.status_code == 409


def test_builds_list_rejects_bad_price(client):
    assert client.get("/api/builds", params={"min_price": "cheap"}).status_code == 400


def test_build_detail_needs_id_or_tuple(client):
    assert client.get("/api/builds/detail", params={"name": "x"}).status_code == 400


def test_build_detail_blank_total_is_not_found(client):
    client.put("/api/droneFpvAdd", json={"name": "Racer1", "creator": "Bob", "type": "5in", "total_price_eur": 99})
    res = client.get("/api/builds/detail", params={
        "name": "Racer1", "creator": "Bob", "type": "5in", "total_price_eur": ""})
    assert res.status_code == 404


def test_add_builds_rejects_dotted_keys(client, builds_collection):
    res = client.put("/api/droneFpvAdd", json={"_id": "b2", "name": "x", "meta.owner": "eve"})
    assert res.status_code == 400
    assert "meta.owner" in res.json()["detail"]
    assert builds_collection.count_documents({}) == 0


def test_pieces_huge_page_is_clamped(client):
    body = client.get("/api/pieces", params={"page": "99999999999999999999"}).json()
    assert body["items"] == []
    assert body["hasNextPage"] is False
