"""
Read-only views over the parts collection used to build filter controls:
categories, field classification, specs/compat key discovery, distinct
values and numeric ranges.
"""

from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from bson.decimal128 import Decimal128
from pydantic import BaseModel

from database import sanitize
from errors import InvalidQuery
from queries import Filter, clean_distinct, require_category, validate_path
from schemas import FieldKeys, ValueRange

FIELD_SAMPLE_SIZE = 5000
EXCLUDED_KEYS = frozenset({"_id", "category", "specs", "compat", "price"})


class NestedFieldGroup(str, Enum):
    SPECS = "specs"
    COMPAT = "compat"


class NestedKeys(BaseModel):
    group: NestedFieldGroup
    keys: List[str]

    def paths(self) -> List[str]:
        return [f"{self.group.value}.{key}" for key in self.keys]


def normalize_categories(values: Iterable[Any]) -> List[str]:
    return sorted({v.strip() for v in values if isinstance(v, str) and v.strip()})


def list_categories(collection) -> List[str]:
    return normalize_categories(collection.distinct("category"))


def list_parts(collection, category: Optional[str], flt: Filter, limit: int) -> List[Dict]:
    query = flt.to_query(category)
    return [sanitize(doc) for doc in collection.find(query).limit(limit)]


# ── Field classification ───────────────────────────────────────────────

def value_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float, Decimal128)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if value is None:
        return "null"
    return type(value).__name__


def classify_documents(documents: Iterable[Dict]) -> FieldKeys:
    """Bucket top-level keys of sampled documents into scalar and numeric."""
    kinds = defaultdict(set)
    has_price = False
    for doc in documents:
        for key, value in doc.items():
            if key == "price":
                has_price = True
            if key in EXCLUDED_KEYS:
                continue
            kinds[key].add(value_kind(value))

    scalar, numeric = set(), set()
    for key, seen in kinds.items():
        if "number" in seen:
            numeric.add(key)
        elif seen & {"string", "bool"}:
            scalar.add(key)

    # price is an object ({eur, currency, value}); expose its usable parts
    if has_price:
        numeric.add("price.eur")
        scalar.add("price.currency")
    return FieldKeys(scalar=sorted(scalar), numeric=sorted(numeric))


def classify_fields(collection, category: Optional[str], sample_size: int = FIELD_SAMPLE_SIZE) -> FieldKeys:
    category = require_category(category)
    return classify_documents(collection.find({"category": category}).limit(sample_size))


# ── specs / compat keys ────────────────────────────────────────────────

def collect_nested_keys(documents: Iterable[Dict], group: NestedFieldGroup) -> List[str]:
    keys = set()
    for doc in documents:
        nested = doc.get(group.value)
        if isinstance(nested, dict):
            keys.update(nested.keys())
    return sorted(keys)


def nested_keys(collection, category: Optional[str], group) -> NestedKeys:
    category = require_category(category)
    group = NestedFieldGroup(group)
    cursor = collection.find(
        {"category": category, group.value: {"$type": "object"}},
        {group.value: 1, "_id": 0},
    )
    return NestedKeys(group=group, keys=collect_nested_keys(cursor, group))


# ── Values ─────────────────────────────────────────────────────────────

def distinct_values(collection, category: Optional[str], fields: List[str]) -> Dict[str, List[Any]]:
    category = require_category(category)
    if not fields:
        raise InvalidQuery('Parameter "fields" is required')
    # validate everything up front so a bad path never yields partial output
    paths = [validate_path(f) for f in fields]
    return {path: clean_distinct(collection.distinct(path, {"category": category})) for path in paths}


def _plain_number(value: Any):
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    return value


def value_range(collection, category: Optional[str], field: str) -> ValueRange:
    category = require_category(category)
    path = validate_path(field)
    pipeline = [
        {"$match": {"category": category, path: {"$type": "number"}}},
        {"$group": {"_id": None, "min": {"$min": f"${path}"}, "max": {"$max": f"${path}"}}},
        {"$project": {"_id": 0, "min": 1, "max": 1}},
    ]
    rows = list(collection.aggregate(pipeline))
    if not rows:
        return ValueRange()
    return ValueRange(min=_plain_number(rows[0].get("min")), max=_plain_number(rows[0].get("max")))
