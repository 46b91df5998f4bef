"""
Build aggregator: the parts picked per category, their quantities and the
priced payload that gets saved as a build.
"""

import copy
import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


def sanitize_qty(value: Any) -> int:
    """Leading integer of ``value``; anything unparsable or negative is 0."""
    match = re.match(r"\s*([+-]?\d+)", str(value if value is not None else ""))
    if not match:
        return 0
    return max(0, int(match.group(1)))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def unit_price(price: Any) -> float:
    """EUR unit price of a part.

    Accepts a plain number, ``{"eur": n}`` or ``{"currency": "EUR", "value": n}``.
    Prices in other currencies are not converted and count as 0.
    """
    if _is_number(price):
        return float(price)
    if isinstance(price, dict):
        if _is_number(price.get("eur")):
            return float(price["eur"])
        if price.get("currency") == "EUR" and _is_number(price.get("value")):
            return float(price["value"])
    return 0.0


def item_id(item: Dict[str, Any]) -> Optional[str]:
    value = item.get("id") or item.get("_id")
    return str(value) if value else None


def item_label(item: Dict[str, Any]) -> str:
    parts = [str(item[k]) for k in ("brand", "model") if item.get(k)]
    if item.get("name") and item.get("name") != item.get("model"):
        parts.append(str(item["name"]))
    return " ".join(parts) or item_id(item) or "(item)"


class Selection(BaseModel):
    id: str
    label: str
    brand: str = ""
    model: str = ""
    qty: int = Field(..., ge=1)
    source: Dict[str, Any]

    @property
    def price_eur(self) -> float:
        return unit_price(self.source.get("price"))


class BuildCart:

    def __init__(self, categories: Iterable[str] = ()):
        self._selected: Dict[str, Dict[str, Selection]] = {}
        self.register_categories(categories)

    def register_categories(self, categories: Iterable[str]) -> None:
        for category in categories:
            self._selected.setdefault(category, {})

    def _category(self, category: str) -> Dict[str, Selection]:
        return self._selected.setdefault(category, {})

    def upsert(self, category: str, item: Dict[str, Any], qty: Any) -> Optional[Selection]:
        """Set the quantity of ``item``; 0 removes it, a new quantity overwrites."""
        entries = self._category(category)
        key = item_id(item)
        if not key:
            return None
        n = sanitize_qty(qty)
        if n <= 0:
            entries.pop(key, None)
            return None
        entries[key] = Selection(
            id=key,
            label=item_label(item),
            brand=str(item.get("brand") or ""),
            model=str(item.get("model") or ""),
            qty=n,
            source=item,
        )
        return entries[key]

    def set_quantity(self, category: str, key: str, qty: Any) -> None:
        entries = self._category(category)
        n = sanitize_qty(qty)
        if n <= 0:
            entries.pop(key, None)
        elif key in entries:
            entries[key] = entries[key].model_copy(update={"qty": n})

    def remove(self, category: str, key: str) -> None:
        self._category(category).pop(key, None)

    def clear(self, category: str) -> None:
        self._selected[category] = {}

    def selection(self, category: str) -> Dict[str, Selection]:
        return dict(self._selected.get(category, {}))

    def categories(self) -> List[str]:
        return sorted(self._selected)

    def is_empty(self) -> bool:
        return not any(self._selected.values())

    def compute_total(self) -> float:
        total = sum(
            entry.price_eur * entry.qty
            for entries in self._selected.values()
            for entry in entries.values()
        )
        return round(total, 2)

    def summary(self) -> List[Dict[str, Any]]:
        """Every known category with its lines, empty ones included."""
        out = []
        for category in self.categories():
            lines = [
                {
                    "id": entry.id,
                    "label": entry.label,
                    "qty": entry.qty,
                    "unit_price": entry.price_eur,
                    "line_total": round(entry.price_eur * entry.qty, 2),
                }
                for entry in self._selected[category].values()
            ]
            out.append({"category": category, "lines": lines})
        return out

    def to_payload(self, name: str, creator: str, build_type: str) -> Dict[str, Any]:
        items: Dict[str, Dict[str, Any]] = {}
        for category, entries in self._selected.items():
            lines = {
                key: {"qty": entry.qty, "item": copy.deepcopy(entry.source)}
                for key, entry in entries.items()
                if entry.qty and entry.source
            }
            if lines:
                items[category] = lines
        return {
            "name": name,
            "creator": creator,
            "type": build_type,
            "total_price_eur": self.compute_total(),
            "items": items,
        }
