"""
Persistence of finished builds: bulk upsert, paginated listing,
detail lookup, distinct values and deletion.
"""

import logging
import random
import re
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from pymongo import ReplaceOne
from pymongo.errors import BulkWriteError, DuplicateKeyError

from database import id_candidates, sanitize
from errors import BuildConflict, BuildNotFound, InvalidQuery
from queries import distinct_field, is_safe_path, paginate
from schemas import Build

logger = logging.getLogger(__name__)

SUMMARY_PROJECTION = {"_id": 1, "name": 1, "creator": 1, "type": 1, "total_price_eur": 1}
DUPLICATE_KEY = 11000


def new_build_id(payload: Dict[str, Any]) -> str:
    prefix = str(payload.get("category") or "item")
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class BuildStore:

    def __init__(self, collection):
        self.collection = collection

    # ── Write ──────────────────────────────────────────────────────────

    def save(self, payload: Any) -> Dict[str, Any]:
        """Insert or overwrite one build or a list of builds keyed by their id."""
        single = isinstance(payload, dict)
        docs = [payload] if single else payload
        if not isinstance(docs, list) or not docs:
            raise InvalidQuery("Body must be a build object or a non-empty list of builds")

        prepared = [self._prepare(raw) for raw in docs]
        ids = [build_id for build_id, _ in prepared]
        # an overwrite keeps the stamp of the first save
        stamps = {
            doc["_id"]: doc.get("created_at")
            for doc in self.collection.find({"_id": {"$in": ids}}, {"created_at": 1})
        }
        now = datetime.now(timezone.utc)
        ops = [
            ReplaceOne(
                {"_id": build_id},
                {**doc, "created_at": stamps.get(build_id) or now},
                upsert=True,
            )
            for build_id, doc in prepared
        ]

        try:
            result = self.collection.bulk_write(ops, ordered=True)
        except DuplicateKeyError as exc:
            raise BuildConflict("A build with this id already exists") from exc
        except BulkWriteError as exc:
            errors = exc.details.get("writeErrors", [])
            if any(err.get("code") == DUPLICATE_KEY for err in errors):
                raise BuildConflict("A build with this id already exists") from exc
            raise

        logger.info("Saved %d build(s): %s", len(ids), ", ".join(ids))
        out = {
            "ok": True,
            "ids": ids,
            "upserted": result.upserted_count,
            "modified": result.modified_count,
        }
        if single:
            out["id"] = ids[0]
        return out

    @staticmethod
    def _prepare(raw: Any) -> Tuple[str, Dict[str, Any]]:
        if not isinstance(raw, dict):
            raise InvalidQuery("Each build must be a JSON object")
        data = dict(raw)
        raw_id = data.pop("_id", None)
        alt_id = data.pop("id", None)
        data.pop("created_at", None)
        try:
            build = Build.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(p) for p in first["loc"])
            raise InvalidQuery(f"Invalid build payload: {where}: {first['msg']}") from exc
        # extra keys are stored as plain top-level fields, never as paths
        for key in build.model_extra or {}:
            if not is_safe_path(key) or "." in key:
                raise InvalidQuery(f"Invalid build key: {key}")
        build_id = raw_id or alt_id
        return (str(build_id) if build_id else new_build_id(data)), build.model_dump()

    def delete(self, build_id: str) -> Dict[str, Any]:
        result = self.collection.delete_one({"_id": {"$in": id_candidates(build_id)}})
        if result.deleted_count == 0:
            raise BuildNotFound("Build not found")
        logger.info("Deleted build %s", build_id)
        return {"ok": True, "deleted": build_id}

    # ── Read ───────────────────────────────────────────────────────────

    def find_page(
        self,
        *,
        name: Optional[str] = None,
        creator: Optional[str] = None,
        build_type: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        page: int = 1,
        limit: int = 24,
        summary: bool = False,
    ) -> Dict[str, Any]:
        q: Dict[str, Any] = {}
        if name:
            q["name"] = {"$regex": re.escape(name), "$options": "i"}
        if creator:
            q["creator"] = creator
        if build_type:
            q["type"] = build_type
        price: Dict[str, float] = {}
        if min_price is not None:
            price["$gte"] = min_price
        if max_price is not None:
            price["$lte"] = max_price
        if price:
            q["total_price_eur"] = price
        return paginate(
            self.collection, q,
            page=page, limit=limit,
            sort=[("created_at", -1), ("_id", 1)],
            projection=SUMMARY_PROJECTION if summary else None,
        )

    def get(
        self,
        build_id: Optional[str] = None,
        *,
        name: Optional[str] = None,
        creator: Optional[str] = None,
        build_type: Optional[str] = None,
        total_price_eur: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Fetch by id, or by the (name, creator, type, total) tuple.

        The tuple is not unique; the first match wins. A missing total
        matches builds stored without one.
        """
        if build_id:
            doc = self.collection.find_one({"_id": {"$in": id_candidates(build_id)}})
        else:
            if None in (name, creator, build_type):
                raise InvalidQuery('Provide "_id" or name, creator, type and total_price_eur')
            doc = self.collection.find_one({
                "name": name,
                "creator": creator,
                "type": build_type,
                "total_price_eur": total_price_eur,
            })
        if not doc:
            raise BuildNotFound("Build not found")
        return sanitize(doc)

    def distinct(self, field: str) -> List[Any]:
        return distinct_field(self.collection, field)
