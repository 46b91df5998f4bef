"""
Client side of the configurator: talks to the catalog API, keeps the
active filter, a per-(category, filter) parts cache and the build cart.

Everything here is single-threaded and driven by user actions; nothing is
cancelled, and the cache has no TTL (it is cleared whenever the filter
changes).
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from cart import BuildCart, Selection
from catalog import NestedFieldGroup, NestedKeys, normalize_categories
from queries import Filter

logger = logging.getLogger(__name__)

FALLBACK_CATEGORIES = [
    "antennas", "batteries", "buzzers", "chargers", "escs", "flight_controllers",
    "fpv_cameras", "frames", "goggles", "gps_modules", "motors", "propellers",
    "radios", "receivers", "vtx",
]


class CatalogClient:
    """Thin wrapper over the HTTP API; non-2xx answers raise."""

    def __init__(self, http: httpx.Client):
        self.http = http

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        logger.debug("GET %s %s", path, params or "")
        response = self.http.get(path, params=params)
        response.raise_for_status()
        return response.json()

    def categories(self) -> List[str]:
        return self._get("/api/categories")

    def parts(self, category: str, flt: Optional[Filter] = None, limit: Optional[int] = None) -> List[Dict]:
        params: Dict[str, Any] = {"category": category}
        if flt is not None and not flt.is_empty():
            params["filter"] = json.dumps(flt.to_mapping())
        if limit is not None:
            params["limit"] = limit
        return self._get("/api/parts", params)

    def distinct(self, category: str, fields: List[str]) -> Dict[str, List[Any]]:
        return self._get("/api/distinct", {"category": category, "fields": ",".join(fields)})

    def value_range(self, category: str, field: str) -> Dict[str, Any]:
        return self._get("/api/range", {"category": category, "field": field})

    def nested_keys(self, category: str, group: NestedFieldGroup) -> List[str]:
        path = "/api/spec-keys" if group is NestedFieldGroup.SPECS else "/api/compat-keys"
        return self._get(path, {"category": category})

    def field_keys(self, category: str) -> Dict[str, List[str]]:
        return self._get("/api/field-keys", {"category": category})

    def builds(self, **params) -> Dict[str, Any]:
        return self._get("/api/builds", {k: v for k, v in params.items() if v not in (None, "")})

    def build_distinct(self, field: str) -> List[Any]:
        return self._get(f"/api/builds/distinct/{field}")["values"]

    def build_detail(self, **params) -> Dict[str, Any]:
        return self._get("/api/builds/detail", params)

    def delete_build(self, build_id: str) -> Dict[str, Any]:
        response = self.http.delete(f"/api/builds/{build_id}")
        response.raise_for_status()
        return response.json()

    def save_builds(self, payload: Any) -> Dict[str, Any]:
        response = self.http.put("/api/droneFpvAdd", json=payload)
        response.raise_for_status()
        return response.json()


# ── Filter controls ────────────────────────────────────────────────────

class Choice(BaseModel):
    label: str
    values: List[Any]


class ChoiceControl(BaseModel):
    path: str
    choices: List[Choice] = Field(default_factory=list)

    def values_for(self, labels: List[str]) -> List[Any]:
        """Raw values behind the given labels, in control order."""
        wanted = set(labels)
        return [v for c in self.choices if c.label in wanted for v in c.values]


class RangeControl(BaseModel):
    path: str
    min: Optional[float] = None
    max: Optional[float] = None


class FilterControls(BaseModel):
    brands: Optional[ChoiceControl] = None
    currencies: Optional[ChoiceControl] = None
    price: Optional[RangeControl] = None
    warranty: Optional[RangeControl] = None
    specs: List[ChoiceControl] = Field(default_factory=list)
    compat: List[ChoiceControl] = Field(default_factory=list)
    scalar_fields: List[str] = Field(default_factory=list)
    numeric_fields: List[str] = Field(default_factory=list)


def normalize_values(path: str, values: List[Any]) -> ChoiceControl:
    """Choices labelled by trimmed string, deduplicated and sorted by label."""
    by_label: Dict[str, List[Any]] = {}
    for value in values:
        if value is None:
            continue
        label = str(value).strip()
        if label:
            by_label.setdefault(label, []).append(value)
    return ChoiceControl(path=path, choices=[Choice(label=k, values=by_label[k]) for k in sorted(by_label)])


# ── Session ────────────────────────────────────────────────────────────

class ConfiguratorSession:

    def __init__(self, client: CatalogClient, cart: Optional[BuildCart] = None):
        self.client = client
        self.cart = cart or BuildCart()
        self.categories: List[str] = []
        self.active_filter: Optional[Filter] = None
        self.status = ""
        self._cache: Dict[Tuple[str, str], List[Dict]] = {}

    # categories

    def load_categories(self) -> List[str]:
        try:
            categories = self.client.categories()
        except httpx.HTTPError as exc:
            logger.warning("Categories unavailable, using fallback list: %s", exc)
            categories = []
        if not isinstance(categories, list) or not categories:
            categories = FALLBACK_CATEGORIES
        self.categories = normalize_categories(categories)
        self.cart.register_categories(self.categories)
        return self.categories

    # parts

    def _cache_key(self, category: str) -> Tuple[str, str]:
        mapping = self.active_filter.to_mapping() if self.active_filter else {}
        return category, json.dumps(mapping, sort_keys=True, default=str)

    def parts(self, category: str) -> List[Dict]:
        if not category:
            return []
        key = self._cache_key(category)
        if key in self._cache:
            return self._cache[key]
        try:
            docs = self.client.parts(category, self.active_filter)
        except httpx.HTTPError as exc:
            logger.error("Loading %s parts failed: %s", category, exc)
            self.status = f"Error: {exc}"
            return []
        self._cache[key] = docs if isinstance(docs, list) else []
        self.status = f"{len(self._cache[key])} parts"
        return self._cache[key]

    def invalidate(self) -> None:
        self._cache.clear()

    def apply_filters(self, flt: Optional[Filter]) -> None:
        self.active_filter = flt if flt is not None and not flt.is_empty() else None
        self.invalidate()

    def reset_filters(self) -> None:
        self.apply_filters(None)

    # filter controls

    def filter_controls(self, category: str) -> FilterControls:
        controls = FilterControls()
        try:
            distinct = self.client.distinct(category, ["brand", "price.currency"])
            controls.brands = normalize_values("brand", distinct.get("brand", []))
            controls.currencies = normalize_values("price.currency", distinct.get("price.currency", []))
            controls.price = RangeControl(path="price.eur", **self.client.value_range(category, "price.eur"))
            controls.warranty = RangeControl(
                path="warranty_months", **self.client.value_range(category, "warranty_months"))
        except httpx.HTTPError as exc:
            logger.error("Loading base filters for %s failed: %s", category, exc)
            self.status = f"Error: {exc}"

        for group in NestedFieldGroup:
            try:
                boxes = self._nested_controls(category, group)
            except httpx.HTTPError as exc:
                logger.error("Loading %s keys for %s failed: %s", group.value, category, exc)
                self.status = f"Error: {exc}"
                continue
            setattr(controls, group.value, boxes)

        try:
            keys = self.client.field_keys(category)
            controls.scalar_fields = keys.get("scalar", [])
            controls.numeric_fields = keys.get("numeric", [])
        except httpx.HTTPError as exc:
            logger.error("Loading field keys for %s failed: %s", category, exc)
        return controls

    def _nested_controls(self, category: str, group: NestedFieldGroup) -> List[ChoiceControl]:
        keys = self.client.nested_keys(category, group)
        if not keys:
            return []
        paths = NestedKeys(group=group, keys=keys).paths()
        values = self.client.distinct(category, paths)
        boxes = [normalize_values(path, values.get(path, [])) for path in paths]
        return [box for box in boxes if box.choices]

    def field_control(self, category: str, path: str, numeric: bool):
        if numeric:
            return RangeControl(path=path, **self.client.value_range(category, path))
        values = self.client.distinct(category, [path]).get(path, [])
        return normalize_values(path, values)

    # build

    def add_to_build(self, category: str, item: Dict[str, Any], qty: Any) -> Optional[Selection]:
        return self.cart.upsert(category, item, qty)

    def finalize(self, name: str, creator: str, build_type: str) -> Dict[str, Any]:
        return self.cart.to_payload(name, creator, build_type)

    def save(self, name: str, creator: str, build_type: str) -> Dict[str, Any]:
        result = self.client.save_builds(self.finalize(name, creator, build_type))
        logger.info("Build %r saved as %s", name, result.get("id"))
        return result

    def open_build(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        """Detail of a listed build; falls back to the field tuple if the id fails."""
        tuple_params = {
            "name": summary.get("name") or "",
            "creator": summary.get("creator") or "",
            "type": summary.get("type") or "",
            "total_price_eur": str(summary.get("total_price_eur", "")),
        }
        if summary.get("id"):
            try:
                return self.client.build_detail(_id=summary["id"])
            except httpx.HTTPStatusError as exc:
                logger.warning("Build %s not found by id, trying its fields: %s", summary["id"], exc)
        return self.client.build_detail(**tuple_params)
