"""
Field path validation, filter model and MongoDB query construction.

Filters arrive on the wire as a JSON object keyed by field path
(``{"specs.connector": {"$in": ["XT60"]}, "price.eur": {"$gte": 10}}``).
They are parsed once into a :class:`Filter` (an ordered list of
``FieldFilter(path, Membership | Range)``) so that every key that ends up in
a store query has gone through :func:`validate_path`.
"""

import json
import math
import re
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator

from database import sanitize
from errors import InvalidQuery

SAFE_PATH_RE = re.compile(r"[A-Za-z0-9_.\-]+")

# Operator keys accepted at the top level of a filter; their operands are
# nested filters and get validated recursively.
GROUP_OPERATORS = ("$and", "$or")
CONSTRAINT_OPERATORS = frozenset({"$in", "$gte", "$lte"})

RESERVED_PARAMS = ("page", "limit")
DEFAULT_PAGE_SIZE = 24
MAX_PAGE_SIZE = 200
# keeps (page - 1) * limit well inside a 64-bit skip
MAX_PAGE = 1_000_000


def is_safe_path(path: Any) -> bool:
    return isinstance(path, str) and SAFE_PATH_RE.fullmatch(path) is not None


def validate_path(path: Any, label: str = "field") -> str:
    if not is_safe_path(path):
        raise InvalidQuery(f"Invalid {label}: {path}")
    return path


def require_category(category: Optional[str]) -> str:
    value = (category or "").strip()
    if not value:
        raise InvalidQuery('Parameter "category" is required')
    return value


def coerce_number(value: Any) -> Optional[Union[int, float]]:
    """Return ``value`` as a finite number, or None when it is not one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def parse_number(value: Optional[str], name: str) -> Optional[float]:
    """Parse an optional numeric query parameter; blank means absent."""
    if value is None or not str(value).strip():
        return None
    number = coerce_number(value)
    if number is None:
        raise InvalidQuery(f'Parameter "{name}" must be a number')
    return float(number)


# ── Filter model ───────────────────────────────────────────────────────

class Membership(BaseModel):
    kind: Literal["in"] = "in"
    values: List[Any] = Field(default_factory=list)

    def to_condition(self) -> Optional[Dict[str, Any]]:
        if not self.values:
            return None
        return {"$in": list(self.values)}


class Range(BaseModel):
    kind: Literal["range"] = "range"
    min: Optional[Union[int, float]] = None
    max: Optional[Union[int, float]] = None

    def to_condition(self) -> Optional[Dict[str, Any]]:
        condition = {}
        if self.min is not None:
            condition["$gte"] = self.min
        if self.max is not None:
            condition["$lte"] = self.max
        return condition or None


Constraint = Union[Membership, Range]


class FieldFilter(BaseModel):
    path: str
    constraint: Constraint = Field(..., discriminator="kind")

    @field_validator("path")
    @classmethod
    def _safe_path(cls, value: str) -> str:
        if not is_safe_path(value):
            raise ValueError(f"Invalid filter key: {value}")
        return value


class FilterGroup(BaseModel):
    operator: Literal["$and", "$or"]
    filters: List["Filter"] = Field(default_factory=list)


class Filter(BaseModel):
    clauses: List[FieldFilter] = Field(default_factory=list)
    groups: List[FilterGroup] = Field(default_factory=list)

    @classmethod
    def from_mapping(cls, mapping: Any) -> "Filter":
        """Parse the wire form of a filter, rejecting unsafe keys."""
        if mapping is None:
            return cls()
        if not isinstance(mapping, Mapping):
            raise InvalidQuery("Filter must be a JSON object")
        flt = cls()
        for key, value in mapping.items():
            if key in GROUP_OPERATORS:
                if not isinstance(value, list) or not value:
                    raise InvalidQuery(f"{key} expects a non-empty list of filters")
                flt.groups.append(FilterGroup(
                    operator=key, filters=[cls.from_mapping(v) for v in value]))
                continue
            path = validate_path(key, label="filter key")
            flt.clauses.append(FieldFilter(path=path, constraint=parse_constraint(path, value)))
        return flt

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "Filter":
        if raw is None or not raw.strip():
            return cls()
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            raise InvalidQuery('Parameter "filter" is invalid (JSON expected)')
        return cls.from_mapping(parsed)

    def add_membership(self, path: str, values: Iterable[Any]) -> "Filter":
        validate_path(path, label="filter key")
        self.clauses.append(FieldFilter(path=path, constraint=Membership(values=list(values))))
        return self

    def add_range(self, path: str, min: Any = None, max: Any = None) -> "Filter":
        validate_path(path, label="filter key")
        self.clauses.append(FieldFilter(
            path=path, constraint=Range(min=coerce_number(min), max=coerce_number(max))))
        return self

    def conditions(self) -> Dict[str, Any]:
        """Per-path store conditions; empty constraints are left out."""
        out: Dict[str, Any] = {}
        for field_filter in self.clauses:
            condition = field_filter.constraint.to_condition()
            if condition is not None:
                out[field_filter.path] = condition
        for group in self.groups:
            operands = [c for c in (f.conditions() for f in group.filters) if c]
            if operands:
                out.setdefault(group.operator, []).extend(operands)
        return out

    def to_mapping(self) -> Dict[str, Any]:
        return self.conditions()

    def is_empty(self) -> bool:
        return not self.conditions()

    def to_query(self, category: Optional[str]) -> Dict[str, Any]:
        category = require_category(category)
        conditions = self.conditions()
        if "category" in conditions:
            return {"$and": [{"category": category}, conditions]}
        return {"category": category, **conditions}


FilterGroup.model_rebuild()


def parse_constraint(path: str, value: Any) -> Constraint:
    if isinstance(value, Mapping):
        unknown = sorted(set(value) - CONSTRAINT_OPERATORS)
        if unknown:
            raise InvalidQuery(f"Unsupported operator for {path}: {unknown[0]}")
        if "$in" in value:
            if len(value) > 1:
                raise InvalidQuery(f"Cannot combine $in with a range for {path}")
            values = value["$in"]
            if not isinstance(values, list):
                raise InvalidQuery(f"$in for {path} expects a list")
            return Membership(values=values)
        return Range(min=coerce_number(value.get("$gte")), max=coerce_number(value.get("$lte")))
    if isinstance(value, list):
        return Membership(values=value)
    return Membership(values=[value])


# ── Flat query-string translation ──────────────────────────────────────

def translate_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn flat ``key=value`` parameters into an equality/membership query."""
    query: Dict[str, Any] = {}
    for key, raw in params.items():
        if key in RESERVED_PARAMS:
            continue
        value = str(raw if raw is not None else "").strip()
        if not value:
            continue
        validate_path(key)
        if key.lower() == "name":
            query["name"] = {"$regex": re.escape(value), "$options": "i"}
        elif "," in value:
            parts = [p.strip() for p in value.split(",") if p.strip()]
            if parts:
                query[key] = {"$in": parts}
        elif value.lower() in ("true", "false"):
            query[key] = value.lower() == "true"
        else:
            query[key] = value
    return query


# ── Distinct values ────────────────────────────────────────────────────

def _sort_key(value: Any):
    if isinstance(value, bool):
        return (2, value)
    if isinstance(value, (int, float)):
        return (0, value)
    if isinstance(value, str):
        return (1, value)
    return (3, str(value))


def clean_distinct(values: Iterable[Any]) -> List[Any]:
    """Drop nulls and duplicates and sort values of mixed types."""
    seen = set()
    out = []
    for value in values:
        if value is None:
            continue
        marker = (type(value).__name__, repr(value))
        if marker in seen:
            continue
        seen.add(marker)
        out.append(value)
    return sorted(out, key=_sort_key)


def distinct_field(collection, field: str, query: Optional[Dict[str, Any]] = None) -> List[Any]:
    validate_path(field)
    return clean_distinct(collection.distinct(field, query or {}))


# ── Pagination ─────────────────────────────────────────────────────────

def parse_page(value: Any) -> int:
    try:
        page = int(str(value).strip())
    except (TypeError, ValueError):
        return 1
    return min(max(1, page), MAX_PAGE)


def parse_limit(value: Any, default: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE) -> int:
    if value is None or not str(value).strip():
        return default
    try:
        limit = int(str(value).strip())
    except ValueError:
        return default
    return min(max(1, limit), maximum)


def page_meta(page: int, limit: int, total_docs: int) -> Dict[str, Any]:
    total_pages = max(1, math.ceil(total_docs / limit))
    has_prev = page > 1
    has_next = page < total_pages
    return {
        "page": page,
        "limit": limit,
        "totalDocs": total_docs,
        "totalPages": total_pages,
        "hasPrevPage": has_prev,
        "hasNextPage": has_next,
        "prevPage": page - 1 if has_prev else None,
        "nextPage": page + 1 if has_next else None,
    }


def paginate(collection, query: Dict[str, Any], *, page: int, limit: int, sort,
             projection: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    total = collection.count_documents(query)
    cursor = collection.find(query, projection).sort(sort).skip((page - 1) * limit).limit(limit)
    return {"items": [sanitize(doc) for doc in cursor], **page_meta(page, limit, total)}
