import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

from builds import BuildStore
from catalog import (
    NestedFieldGroup,
    classify_fields,
    distinct_values,
    list_categories,
    list_parts,
    nested_keys,
    value_range,
)
from database import BUILDS_COLLECTION, PARTS_COLLECTION, close_db, get_db, sanitize
from errors import CatalogError
from logging_setup import setup_logging
from queries import (
    Filter,
    distinct_field,
    paginate,
    parse_limit,
    parse_number,
    parse_page,
    require_category,
    translate_params,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("FPV catalog API ready")
    yield
    close_db()


# App and CORS
app = FastAPI(title="FPV Parts Catalog API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("▶ %s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed)
    return response


# Error handlers
@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Malformed request"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Dependencies
def parts_collection(db: Database = Depends(get_db)):
    return db[PARTS_COLLECTION]


def build_store(db: Database = Depends(get_db)) -> BuildStore:
    return BuildStore(db[BUILDS_COLLECTION])


def truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


# Utility endpoints
@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/droneFpv")
def raw_parts(limit: Optional[str] = None, parts=Depends(parts_collection)):
    n = parse_limit(limit, default=500, maximum=2000)
    return [sanitize(d) for d in parts.find({}).limit(n)]


# Catalog
@app.get("/api/categories")
def categories(parts=Depends(parts_collection)):
    return list_categories(parts)


@app.get("/api/parts")
def parts_by_filter(
    category: Optional[str] = None,
    filter_json: Optional[str] = Query(None, alias="filter"),
    limit: Optional[str] = None,
    parts=Depends(parts_collection),
):
    category = require_category(category)
    flt = Filter.from_json(filter_json)
    return list_parts(parts, category, flt, parse_limit(limit, default=1000, maximum=5000))


@app.get("/api/distinct")
def distinct(category: Optional[str] = None, fields: Optional[str] = None, parts=Depends(parts_collection)):
    paths = [f.strip() for f in (fields or "").split(",") if f.strip()]
    if not (category or "").strip() or not paths:
        raise HTTPException(status_code=400, detail='Parameters "category" and "fields" are required')
    return distinct_values(parts, category, paths)


@app.get("/api/range")
def field_range(category: Optional[str] = None, field: Optional[str] = None, parts=Depends(parts_collection)):
    if not (category or "").strip() or not (field or "").strip():
        raise HTTPException(status_code=400, detail='Parameters "category" and "field" are required')
    return value_range(parts, category, field.strip())


@app.get("/api/spec-keys")
def spec_keys(category: Optional[str] = None, parts=Depends(parts_collection)):
    return nested_keys(parts, category, NestedFieldGroup.SPECS).keys


@app.get("/api/compat-keys")
def compat_keys(category: Optional[str] = None, parts=Depends(parts_collection)):
    return nested_keys(parts, category, NestedFieldGroup.COMPAT).keys


@app.get("/api/field-keys")
def field_keys(category: Optional[str] = None, parts=Depends(parts_collection)):
    return classify_fields(parts, category)


# Generic paginated listing
@app.get("/api/pieces")
def pieces(request: Request, parts=Depends(parts_collection)):
    params = dict(request.query_params)
    page = parse_page(params.get("page", 1))
    limit = parse_limit(params.get("limit"))
    query = translate_params(params)
    return paginate(parts, query, page=page, limit=limit, sort=[("name", 1), ("_id", 1)])


@app.get("/api/pieces/distinct/{field}")
def pieces_distinct(field: str, parts=Depends(parts_collection)):
    return {"field": field, "values": distinct_field(parts, field)}


# Builds
@app.put("/api/droneFpvAdd", status_code=201)
def add_builds(payload: Any = Body(...), store: BuildStore = Depends(build_store)):
    return store.save(payload)


@app.get("/api/builds")
def list_builds(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    name: Optional[str] = None,
    creator: Optional[str] = None,
    type: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    summary: Optional[str] = None,
    store: BuildStore = Depends(build_store),
):
    return store.find_page(
        name=(name or "").strip() or None,
        creator=creator or None,
        build_type=type or None,
        min_price=parse_number(min_price, "min_price"),
        max_price=parse_number(max_price, "max_price"),
        page=parse_page(page or 1),
        limit=parse_limit(limit),
        summary=truthy(summary),
    )


@app.get("/api/builds/distinct/{field}")
def builds_distinct(field: str, store: BuildStore = Depends(build_store)):
    return {"field": field, "values": store.distinct(field)}


@app.get("/api/builds/detail")
def build_detail(
    build_id: Optional[str] = Query(None, alias="_id"),
    id: Optional[str] = None,
    name: Optional[str] = None,
    creator: Optional[str] = None,
    type: Optional[str] = None,
    total_price_eur: Optional[str] = None,
    store: BuildStore = Depends(build_store),
):
    return store.get(
        build_id or id,
        name=name,
        creator=creator,
        build_type=type,
        total_price_eur=parse_number(total_price_eur, "total_price_eur"),
    )


@app.delete("/api/builds/{build_id}")
def delete_build(build_id: str, store: BuildStore = Depends(build_store)):
    return store.delete(build_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "3000")))
