"""FastAPI Remote Store server: the key-value HTTP API storefronts sync with."""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import AppConfig
from .errors import (
    InvalidRecordError,
    StoresyncError,
    StoreUnavailableError,
)
from .kv_store import (
    ORDER_PREFIX,
    PRODUCT_PREFIX,
    SETTINGS_STORE_KEY,
    USER_PREFIX,
    KVStore,
)
from .models import PRODUCT_METADATA_FIELDS, _utc_now

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000
# Listings with images carry at most this many per product
MAX_LISTED_IMAGES = 2


# --- Pydantic Schemas ---


class RecordPayload(BaseModel):
    """A stored record. Fields beyond the identity are kept verbatim."""

    model_config = ConfigDict(extra="allow")


class ProductPayload(RecordPayload):
    id: Optional[str] = None


class OrderPayload(RecordPayload):
    id: Optional[str] = None


class UserPayload(RecordPayload):
    email: Optional[str] = None


class SettingsPayload(RecordPayload):
    pass


# --- Helper Functions ---


def get_kv_store() -> KVStore:
    """Get the KVStore for the configured data directory."""
    return KVStore(AppConfig.from_env().data_dir)


def _record(payload: RecordPayload, identity: str, entity: str) -> dict[str, Any]:
    data = payload.model_dump()
    if not data.get(identity):
        raise InvalidRecordError(entity, f"missing '{identity}'")
    return data


def _listing(product: dict[str, Any], include_images: bool) -> dict[str, Any]:
    images = product.get("images") or []
    if include_images:
        images = images[:MAX_LISTED_IMAGES]
        return {
            **product,
            "images": images,
            "image": product.get("image") or (images[0] if images else ""),
        }
    listed = {key: product.get(key) for key in PRODUCT_METADATA_FIELDS}
    listed["hasImages"] = len(images) > 0
    return listed


app = FastAPI(
    title="storesync Remote Store",
    description="Key-value REST API backing storefront synchronization",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["Content-Length"],
    max_age=600,
)


# --- Global Exception Handlers ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    InvalidRecordError: 400,
    StoreUnavailableError: 500,
}


@app.exception_handler(StoresyncError)
async def storesync_error_handler(request: Request, exc: StoresyncError) -> JSONResponse:
    """Map StoresyncError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("Server error at %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request data"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        content = {"success": False, "error": "Not found", "path": str(request.url)}
    else:
        content = {"success": False, "error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error at %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc) or "Internal server error"},
    )


# --- Endpoints ---


@app.get("/health")
def health_check():
    return {"status": "ok", "timestamp": _utc_now()}


# --- Product Endpoints ---


@app.get("/products")
def list_products(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=0),
    offset: int = Query(default=0, ge=0),
    include_images: bool = Query(default=False, alias="includeImages"),
):
    """
    List products, newest first.

    Image payloads are left out unless ``includeImages=true``; metadata
    listings carry a ``hasImages`` flag instead.
    """
    store = get_kv_store()
    products = sorted(
        store.get_by_prefix(PRODUCT_PREFIX),
        key=lambda p: p.get("createdAt") or "",
        reverse=True,
    )
    page = products[offset:offset + limit]
    logger.info(
        "Returning %d of %d products (images=%s)", len(page), len(products), include_images
    )
    return {
        "success": True,
        "products": [_listing(p, include_images) for p in page],
        "total": len(products),
        "limit": limit,
        "offset": offset,
        "hasMore": offset + limit < len(products),
    }


@app.post("/products")
def add_product(payload: ProductPayload):
    product = _record(payload, "id", "product")
    get_kv_store().set(f"{PRODUCT_PREFIX}{product['id']}", product)
    return {"success": True, "product": product}


@app.post("/products/cleanup")
def cleanup_products():
    """Delete every product."""
    removed = get_kv_store().delete_by_prefix(PRODUCT_PREFIX)
    return {"success": True, "message": f"Deleted {removed} products"}


@app.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductPayload):
    """Replace a product. A body without image fields keeps the stored images."""
    store = get_kv_store()
    key = f"{PRODUCT_PREFIX}{product_id}"
    product = payload.model_dump()
    product["id"] = product.get("id") or product_id
    if "image" not in product and "images" not in product:
        existing = store.get(key) or {}
        for field in ("image", "images"):
            if field in existing:
                product[field] = existing[field]
    store.set(key, product)
    return {"success": True, "product": product}


@app.delete("/products/{product_id}")
def delete_product(product_id: str):
    get_kv_store().delete(f"{PRODUCT_PREFIX}{product_id}")
    return {"success": True}


# --- Order Endpoints ---


@app.get("/orders")
def list_orders():
    return {"success": True, "orders": get_kv_store().get_by_prefix(ORDER_PREFIX)}


@app.post("/orders")
def create_order(payload: OrderPayload):
    order = _record(payload, "id", "order")
    get_kv_store().set(f"{ORDER_PREFIX}{order['id']}", order)
    return {"success": True, "order": order}


@app.put("/orders/{order_id}")
def update_order(order_id: str, payload: OrderPayload):
    order = payload.model_dump()
    order["id"] = order.get("id") or order_id
    get_kv_store().set(f"{ORDER_PREFIX}{order_id}", order)
    return {"success": True, "order": order}


# --- Settings Endpoints ---


@app.get("/settings")
def get_settings():
    return {"success": True, "settings": get_kv_store().get(SETTINGS_STORE_KEY) or {}}


@app.post("/settings")
def save_settings(payload: SettingsPayload):
    settings = payload.model_dump()
    get_kv_store().set(SETTINGS_STORE_KEY, settings)
    return {"success": True, "settings": settings}


# --- User Endpoints ---


@app.get("/users")
def list_users():
    return {"success": True, "users": get_kv_store().get_by_prefix(USER_PREFIX)}


@app.get("/users/{email}")
def get_user(email: str):
    return {"success": True, "user": get_kv_store().get(f"{USER_PREFIX}{email}")}


@app.post("/users")
def save_user(payload: UserPayload):
    """Create or replace a user with its bundled addresses and wishlist."""
    user = _record(payload, "email", "user")
    get_kv_store().set(f"{USER_PREFIX}{user['email']}", user)
    return {"success": True, "user": user}
