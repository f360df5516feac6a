"""
Owner-scoped query building for product and service listings.

Turns the optional list filters (search, category, status, page, limit,
sort) into a parameterized SQL predicate plus ORDER BY / LIMIT / OFFSET.
The owner is a mandatory positional argument and always the first clause,
so no predicate produced here can match another owner's rows.

Usage:
    from core.query import ProductFilters, build_product_query

    q = build_product_query(user_id, ProductFilters(search="tv", status="expiring"))
    page = product_store.query(q)          # RecordPage
    page.total, page.pages, page.items
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from core.status import DEFAULT_THRESHOLD_DAYS, WARRANTY_STATUSES, status_date_bounds

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# API sort name → column. camelCase aliases mirror the JSON the browser client sends.
PRODUCT_SORT_FIELDS = {
    "name": "name",
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "purchase_date": "purchase_date",
    "purchaseDate": "purchase_date",
    "warranty_expiry_date": "warranty_expiry_date",
    "warrantyExpiryDate": "warranty_expiry_date",
    "warranty_period": "warranty_period",
    "warrantyPeriod": "warranty_period",
    "purchase_price": "purchase_price",
    "purchasePrice": "purchase_price",
}

SERVICE_SORT_FIELDS = {
    "service_date": "service_date",
    "serviceDate": "service_date",
    "next_service_due_date": "next_service_due_date",
    "nextServiceDueDate": "next_service_due_date",
    "cost": "cost",
    "service_center": "service_center",
    "serviceCenter": "service_center",
    "created_at": "created_at",
    "createdAt": "created_at",
}

SEARCH_COLUMNS = ("name", "description", "model", "serial_number")

T = TypeVar("T")


class QueryError(ValueError):
    """A list filter could not be translated (unknown status or sort field)."""


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

@dataclass
class ProductFilters:
    """Optional product list filters as received from the query string."""
    search: str = ""
    category: str = ""
    status: str = ""
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort: str = ""


@dataclass
class ServiceFilters:
    """Optional service list filters."""
    product: str = ""
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort: str = ""


# ---------------------------------------------------------------------------
# Query objects
# ---------------------------------------------------------------------------

@dataclass
class Predicate:
    """AND-joined SQL clauses with their positional parameters."""
    clauses: list[str] = field(default_factory=list)
    params: list[Any] = field(default_factory=list)

    def add(self, clause: str, *params: Any) -> "Predicate":
        self.clauses.append(clause)
        self.params.extend(params)
        return self

    @property
    def where(self) -> str:
        return " AND ".join(f"({c})" for c in self.clauses) or "1=1"


@dataclass
class RecordQuery:
    """A fully built list query: predicate, ordering and page window."""
    owner_id: str
    predicate: Predicate
    order_by: str
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class RecordPage(Generic[T]):
    """One page of results plus the unwindowed match count."""
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
        }


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def owner_predicate(owner_id: str) -> Predicate:
    """The mandatory ownership clause every listing starts from."""
    if not owner_id:
        raise QueryError("owner_id is required")
    return Predicate().add("owner_id = ?", owner_id)


def sql_casefold(value: Any) -> Any:
    """Unicode-aware folding for SQL, registered as ``casefold()``."""
    return value.casefold() if isinstance(value, str) else value


def register_sql_functions(conn) -> None:
    """Install the Python functions list queries rely on into a connection."""
    conn.create_function("casefold", 1, sql_casefold, deterministic=True)


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input matches literally (ESCAPE '\\')."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def normalize_window(
    page: int | None,
    limit: int | None,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> tuple[int, int]:
    """Non-positive or missing values fall back to the defaults; limit is capped."""
    page = page if page and page > 0 else DEFAULT_PAGE
    limit = limit if limit and limit > 0 else default_limit
    return page, min(limit, max_limit)


def parse_sort(sort: str, allowed: dict[str, str], default: tuple[str, str]) -> str:
    """Turn 'field:dir' into an ORDER BY clause with a stable id tie-breaker.

    >>> parse_sort("name:asc", PRODUCT_SORT_FIELDS, ("created_at", "DESC"))
    'name ASC, id ASC'
    """
    if sort:
        name, _, direction = sort.partition(":")
        column = allowed.get(name.strip())
        if column is None:
            raise QueryError(f"Cannot sort by '{name.strip()}'")
        direction = "DESC" if direction.strip().lower() == "desc" else "ASC"
    else:
        column, direction = default
    return f"{column} {direction}, id {direction}"


def build_product_query(
    owner_id: str,
    filters: ProductFilters | None = None,
    now: datetime | None = None,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> RecordQuery:
    """Build the owner-scoped product listing query."""
    filters = filters or ProductFilters()
    predicate = owner_predicate(owner_id)

    search = (filters.search or "").strip()
    if search:
        # casefold() is registered on the store connection; SQLite's LOWER is ASCII-only
        pattern = f"%{escape_like(search.casefold())}%"
        predicate.add(
            " OR ".join(f"casefold({col}) LIKE ? ESCAPE '\\'" for col in SEARCH_COLUMNS),
            *([pattern] * len(SEARCH_COLUMNS)),
        )

    if filters.category:
        predicate.add("category_id = ?", filters.category)

    if filters.status:
        if filters.status not in WARRANTY_STATUSES:
            raise QueryError(
                f"Invalid status '{filters.status}'. Expected one of {', '.join(WARRANTY_STATUSES)}"
            )
        after, up_to = status_date_bounds(filters.status, now, threshold_days)
        if after is not None:
            predicate.add("warranty_expiry_date > ?", after.isoformat())
        if up_to is not None:
            predicate.add("warranty_expiry_date <= ?", up_to.isoformat())

    page, limit = normalize_window(filters.page, filters.limit, default_limit, max_limit)
    order_by = parse_sort(filters.sort, PRODUCT_SORT_FIELDS, ("created_at", "DESC"))
    return RecordQuery(owner_id, predicate, order_by, page, limit)


def build_service_query(
    owner_id: str,
    filters: ServiceFilters | None = None,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> RecordQuery:
    """Build the owner-scoped service listing query, optionally narrowed to one product."""
    filters = filters or ServiceFilters()
    predicate = owner_predicate(owner_id)

    if filters.product:
        predicate.add("product_id = ?", filters.product)

    page, limit = normalize_window(filters.page, filters.limit, default_limit, max_limit)
    order_by = parse_sort(filters.sort, SERVICE_SORT_FIELDS, ("service_date", "DESC"))
    return RecordQuery(owner_id, predicate, order_by, page, limit)
