"""
Database Schemas for the FPV parts catalog

MongoDB collections used by the application:
- droneFpv: parts catalog (schemaless, read-only here; every part has a
  "category" and optionally "brand", "model", "name", "price", "specs",
  "compat")
- builds: finished builds saved from the configurator

Only builds are written by this service, so only they get a schema.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BuildLine(BaseModel):
    qty: int = Field(..., ge=1, description="Quantity of this part in the build")
    item: Dict[str, Any] = Field(default_factory=dict, description="Snapshot of the part document")


class Build(BaseModel):
    """
    Builds collection schema
    Collection: "builds"
    Extra keys (e.g. "category") are kept as sent.
    """
    model_config = ConfigDict(extra="allow")

    name: str = Field("", max_length=200, description="Build name")
    creator: str = Field("", max_length=120, description="Who assembled the build")
    type: str = Field("", max_length=60, description="Build type, e.g. 5in")
    total_price_eur: float = Field(0, ge=0, description="Total price in EUR")
    items: Dict[str, Dict[str, BuildLine]] = Field(
        default_factory=dict, description="category -> part id -> line")

    @field_validator("items")
    @classmethod
    def _drop_empty_categories(cls, items):
        return {category: lines for category, lines in items.items() if lines}


class FieldKeys(BaseModel):
    scalar: List[str] = Field(default_factory=list)
    numeric: List[str] = Field(default_factory=list)


class ValueRange(BaseModel):
    min: Optional[Union[int, float]] = None
    max: Optional[Union[int, float]] = None
