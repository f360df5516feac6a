"""
Warranty Tracker REST API: /api/

JSON endpoints for users, categories, products, service records and the
admin sweep trigger. Accesses the stores through ``request.app.state`` to
avoid circular imports.

Auth: optional API key via ``X-API-Key`` header. Set ``api.api_key`` in
config/settings.toml or the ``WT_API_KEY`` env var. Empty key = open access.
The calling user is identified by the ``X-User-Id`` header; issuing and
checking credentials happens upstream of this service.
"""

import logging
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field, StringConstraints

from api.export import register_routes as register_report_routes
from core.query import (
    ProductFilters,
    QueryError,
    ServiceFilters,
    build_product_query,
    build_service_query,
)
from tools.tracker.documents import DOCUMENT_TYPES
from tools.tracker.users import User

logger = logging.getLogger("tracker.api")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Required text: surrounding whitespace stripped, then must be non-empty
NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# ---------------------------------------------------------------------------
# Auth dependencies
# ---------------------------------------------------------------------------

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_user_id_header = APIKeyHeader(name="X-User-Id", auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Depends(_api_key_header),
):
    """Check X-API-Key against the configured key.

    If the configured key is empty (default), all requests are allowed
    through. When a key is set, requests without a matching header
    receive 403.
    """
    configured_key: str = request.app.state.config.api.api_key
    if not configured_key:
        return
    if api_key != configured_key:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


async def current_user(
    request: Request,
    user_id: Optional[str] = Depends(_user_id_header),
) -> User:
    """Resolve the X-User-Id header to a registered user, else 401."""
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authorized, no user")
    user = request.app.state.users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authorized, user not found")
    return user


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter(
    prefix="/api",
    dependencies=[Depends(verify_api_key)],
)


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class UserCreate(BaseModel):
    name: NonBlank
    email: str = Field(..., pattern=EMAIL_PATTERN)
    notifications_enabled: bool = True


class UserUpdate(BaseModel):
    name: Optional[NonBlank] = None
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    notifications_enabled: Optional[bool] = None


class CategoryCreate(BaseModel):
    name: NonBlank
    description: str = ""


class CategoryUpdate(BaseModel):
    name: Optional[NonBlank] = None
    description: Optional[str] = None


class ProductCreate(BaseModel):
    name: NonBlank
    description: str = ""
    purchase_date: date
    warranty_period: int = Field(..., ge=0, description="Warranty length in months")
    category_id: str = Field(..., min_length=1)
    purchase_price: Optional[float] = Field(None, ge=0)
    seller: str = ""
    model: str = ""
    serial_number: str = ""
    image_url: str = ""
    notes: str = ""


class ProductUpdate(BaseModel):
    name: Optional[NonBlank] = None
    description: Optional[str] = None
    purchase_date: Optional[date] = None
    warranty_period: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = Field(None, min_length=1)
    purchase_price: Optional[float] = Field(None, ge=0)
    seller: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    image_url: Optional[str] = None
    notes: Optional[str] = None


class ServiceCreate(BaseModel):
    product_id: str = Field(..., min_length=1)
    service_date: date
    service_center: NonBlank
    cost: float = Field(0, ge=0)
    description: NonBlank
    next_service_due_date: Optional[date] = None
    notes: str = ""


class ServiceUpdate(BaseModel):
    product_id: Optional[str] = Field(None, min_length=1)
    service_date: Optional[date] = None
    service_center: Optional[NonBlank] = None
    cost: Optional[float] = Field(None, ge=0)
    description: Optional[NonBlank] = None
    next_service_due_date: Optional[date] = None
    notes: Optional[str] = None


class DocumentAttach(BaseModel):
    name: NonBlank
    path: str = Field(..., min_length=1, description="Storage path or URL of the uploaded file")
    document_type: str = Field("other", pattern="^(" + "|".join(DOCUMENT_TYPES) + ")$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _product_dict(request: Request, product) -> dict:
    names = request.app.state.categories.names_by_id([product.category_id])
    return product.to_dict(
        names.get(product.category_id),
        threshold_days=request.app.state.products.threshold_days,
    )


def _service_dict(request: Request, record) -> dict:
    product = request.app.state.products.get_product(record.product_id)
    return record.to_dict(
        product.name if product else None,
        threshold_days=request.app.state.services.threshold_days,
    )


def _owned_product(request: Request, product_id: str, user: User, action: str):
    product = request.app.state.products.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    if product.owner_id != user.user_id:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this product")
    return product


def _owned_service(request: Request, service_id: str, user: User, action: str):
    record = request.app.state.services.get_service(service_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Service record not found")
    if record.owner_id != user.user_id:
        raise HTTPException(
            status_code=403, detail=f"Not authorized to {action} this service record",
        )
    return record


def _check_category(request: Request, category_id: str, user: User):
    if request.app.state.categories.get_visible(category_id, user.user_id) is None:
        raise HTTPException(status_code=400, detail="Invalid category")


def _check_product(request: Request, product_id: str, user: User):
    product = request.app.state.products.get_product(product_id)
    if product is None or product.owner_id != user.user_id:
        raise HTTPException(status_code=400, detail="Invalid product")


def _page_limits(request: Request) -> tuple[int, int]:
    api_cfg = request.app.state.config.api
    return api_cfg.default_page_size, api_cfg.max_page_size


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

# -- Users -------------------------------------------------------------------

@router.post("/users", status_code=201)
async def register_user(body: UserCreate, request: Request):
    """Create a user profile. 400 if the email is already registered."""
    users = request.app.state.users
    if users.get_by_email(body.email):
        raise HTTPException(status_code=400, detail="User already exists")
    user = users.add_user(body.name, body.email, body.notifications_enabled)
    return {"user": user.to_dict()}


@router.get("/users/profile")
async def get_profile(user: User = Depends(current_user)):
    return {"user": user.to_dict()}


@router.put("/users/profile")
async def update_profile(body: UserUpdate, request: Request, user: User = Depends(current_user)):
    """Update name, email or the email-notification opt-in."""
    users = request.app.state.users
    if body.email:
        other = users.get_by_email(body.email)
        if other and other.user_id != user.user_id:
            raise HTTPException(status_code=400, detail="Email already in use")
    updated = users.update_user(user.user_id, **body.model_dump(exclude_unset=True))
    return {"user": updated.to_dict()}


# -- Categories --------------------------------------------------------------

@router.get("/categories")
async def list_categories(request: Request, user: User = Depends(current_user)):
    """Default categories plus the caller's own, sorted by name."""
    categories = request.app.state.categories.list_visible(user.user_id)
    return {"data": [c.to_dict() for c in categories]}


@router.post("/categories", status_code=201)
async def create_category(
    body: CategoryCreate, request: Request, user: User = Depends(current_user),
):
    store = request.app.state.categories
    if store.find_by_name(body.name, user.user_id):
        raise HTTPException(status_code=400, detail="Category already exists")
    category = store.add_category(user.user_id, body.name, body.description)
    return {"category": category.to_dict()}


@router.get("/categories/{category_id}")
async def get_category(category_id: str, request: Request, user: User = Depends(current_user)):
    category = request.app.state.categories.get_visible(category_id, user.user_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"category": category.to_dict()}


@router.put("/categories/{category_id}")
async def update_category(
    category_id: str, body: CategoryUpdate, request: Request,
    user: User = Depends(current_user),
):
    """Rename or re-describe a custom category. Defaults are read-only."""
    store = request.app.state.categories
    category = store.get_visible(category_id, user.user_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    if category.is_default:
        raise HTTPException(status_code=403, detail="Cannot modify default categories")
    if body.name and store.find_by_name(body.name, user.user_id, exclude_id=category_id):
        raise HTTPException(status_code=400, detail="Category already exists")
    updated = store.update_category(category_id, name=body.name, description=body.description)
    return {"category": updated.to_dict()}


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: str, request: Request, user: User = Depends(current_user),
):
    """Delete a custom category. Products keep the dangling reference."""
    store = request.app.state.categories
    category = store.get_visible(category_id, user.user_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    if category.is_default:
        raise HTTPException(status_code=403, detail="Cannot delete default categories")
    store.delete_category(category_id)
    return {"message": "Category removed"}


# -- Products ----------------------------------------------------------------

@router.get("/products")
async def list_products(
    request: Request,
    user: User = Depends(current_user),
    search: str = Query("", description="Substring of name, description, model or serial"),
    category: str = Query("", description="Category id"),
    status: str = Query("", description="active | expiring | expired"),
    page: int = Query(1),
    limit: int = Query(0, description="Page size, 0 = configured default"),
    sort: str = Query("", description="field[:asc|desc]"),
):
    """Owner-scoped, filtered, paginated product listing."""
    default_limit, max_limit = _page_limits(request)
    store = request.app.state.products
    try:
        q = build_product_query(
            user.user_id,
            ProductFilters(search, category, status, page, limit, sort),
            threshold_days=store.threshold_days,
            default_limit=default_limit,
            max_limit=max_limit,
        )
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = store.query(q)
    names = request.app.state.categories.names_by_id([p.category_id for p in result.items])
    return {
        "data": [
            p.to_dict(names.get(p.category_id), threshold_days=store.threshold_days)
            for p in result.items
        ],
        "pagination": result.pagination(),
    }


@router.post("/products", status_code=201)
async def create_product(body: ProductCreate, request: Request, user: User = Depends(current_user)):
    _check_category(request, body.category_id, user)
    product = request.app.state.products.add_product(
        owner_id=user.user_id,
        name=body.name,
        purchase_date=body.purchase_date.isoformat(),
        warranty_period=body.warranty_period,
        category_id=body.category_id,
        description=body.description,
        purchase_price=body.purchase_price,
        seller=body.seller,
        model=body.model,
        serial_number=body.serial_number,
        image_url=body.image_url,
        notes=body.notes,
    )
    return {"product": _product_dict(request, product)}


@router.get("/products/{product_id}")
async def get_product(product_id: str, request: Request, user: User = Depends(current_user)):
    product = _owned_product(request, product_id, user, "access")
    return {"product": _product_dict(request, product)}


@router.put("/products/{product_id}")
async def update_product(
    product_id: str, body: ProductUpdate, request: Request,
    user: User = Depends(current_user),
):
    """Partial update; the expiry date is re-derived from purchase date and period."""
    _owned_product(request, product_id, user, "update")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("category_id"):
        _check_category(request, changes["category_id"], user)
    product = request.app.state.products.update_product(product_id, **changes)
    return {"product": _product_dict(request, product)}


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, request: Request, user: User = Depends(current_user)):
    """Delete a product together with its service records."""
    _owned_product(request, product_id, user, "delete")
    _, removed = request.app.state.products.delete_product(product_id)
    return {"message": "Product removed", "services_removed": removed}


@router.post("/products/{product_id}/documents", status_code=201)
async def attach_product_document(
    product_id: str, body: DocumentAttach, request: Request,
    user: User = Depends(current_user),
):
    _owned_product(request, product_id, user, "update")
    doc = request.app.state.products.add_document(
        product_id, body.name, body.path, body.document_type,
    )
    return {"document": doc}


@router.delete("/products/{product_id}/documents/{document_id}")
async def remove_product_document(
    product_id: str, document_id: str, request: Request,
    user: User = Depends(current_user),
):
    _owned_product(request, product_id, user, "update")
    if not request.app.state.products.remove_document(product_id, document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {"message": "Document removed"}


# -- Services ----------------------------------------------------------------

@router.get("/services")
async def list_services(
    request: Request,
    user: User = Depends(current_user),
    product: str = Query("", description="Product id"),
    page: int = Query(1),
    limit: int = Query(0, description="Page size, 0 = configured default"),
    sort: str = Query("", description="field[:asc|desc]"),
):
    default_limit, max_limit = _page_limits(request)
    store = request.app.state.services
    try:
        q = build_service_query(
            user.user_id,
            ServiceFilters(product, page, limit, sort),
            default_limit=default_limit,
            max_limit=max_limit,
        )
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = store.query(q)
    products = request.app.state.products.get_products([s.product_id for s in result.items])
    return {
        "data": [
            s.to_dict(
                products[s.product_id].name if s.product_id in products else None,
                threshold_days=store.threshold_days,
            )
            for s in result.items
        ],
        "pagination": result.pagination(),
    }


@router.post("/services", status_code=201)
async def create_service(body: ServiceCreate, request: Request, user: User = Depends(current_user)):
    _check_product(request, body.product_id, user)
    record = request.app.state.services.add_service(
        owner_id=user.user_id,
        product_id=body.product_id,
        service_date=body.service_date.isoformat(),
        service_center=body.service_center,
        description=body.description,
        cost=body.cost,
        next_service_due_date=(
            body.next_service_due_date.isoformat() if body.next_service_due_date else None
        ),
        notes=body.notes,
    )
    return {"service": _service_dict(request, record)}


@router.get("/services/{service_id}")
async def get_service(service_id: str, request: Request, user: User = Depends(current_user)):
    record = _owned_service(request, service_id, user, "access")
    return {"service": _service_dict(request, record)}


@router.put("/services/{service_id}")
async def update_service(
    service_id: str, body: ServiceUpdate, request: Request,
    user: User = Depends(current_user),
):
    _owned_service(request, service_id, user, "update")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("product_id"):
        _check_product(request, changes["product_id"], user)
    record = request.app.state.services.update_service(service_id, **changes)
    return {"service": _service_dict(request, record)}


@router.delete("/services/{service_id}")
async def delete_service(service_id: str, request: Request, user: User = Depends(current_user)):
    _owned_service(request, service_id, user, "delete")
    request.app.state.services.delete_service(service_id)
    return {"message": "Service record removed"}


@router.post("/services/{service_id}/documents", status_code=201)
async def attach_service_document(
    service_id: str, body: DocumentAttach, request: Request,
    user: User = Depends(current_user),
):
    _owned_service(request, service_id, user, "update")
    doc = request.app.state.services.add_document(
        service_id, body.name, body.path, body.document_type,
    )
    return {"document": doc}


@router.delete("/services/{service_id}/documents/{document_id}")
async def remove_service_document(
    service_id: str, document_id: str, request: Request,
    user: User = Depends(current_user),
):
    _owned_service(request, service_id, user, "update")
    if not request.app.state.services.remove_document(service_id, document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {"message": "Document removed"}


# -- Admin -------------------------------------------------------------------

@router.post("/admin/sweep")
def run_sweep(request: Request, user: User = Depends(current_user)):
    """Run the expiration sweep now and return its report.

    Plain ``def``: the sweep blocks on SMTP, FastAPI runs it in its threadpool.
    """
    logger.info("Manual sweep triggered via API by %s", user.short_id)
    report = request.app.state.sweep.run_sweep()
    return {"report": report.to_dict()}


# -- Reports -----------------------------------------------------------------

register_report_routes(router, current_user)
