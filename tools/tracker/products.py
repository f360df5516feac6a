"""
Product registry for the Warranty Tracker.

Each product belongs to one owner and carries its purchase and warranty
metadata. The expiry date is always derived from purchase date plus the
warranty period in months and recomputed before every write, so it can
never drift from its inputs.

Warranty status (active / expiring / expired) and days remaining are not
stored; to_dict() computes them against a reference time.

SQLite-backed, attached documents kept as a JSON list column.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from core.query import RecordPage, RecordQuery, register_sql_functions
from core.status import (
    DEFAULT_THRESHOLD_DAYS,
    add_months,
    days_left,
    parse_date,
    warranty_status,
)
from tools.tracker.documents import dump_documents, load_documents, new_document

logger = logging.getLogger("tracker.products")

# Fields a user may change through the API.
EDITABLE_FIELDS = (
    "name", "description", "purchase_date", "warranty_period", "category_id",
    "purchase_price", "seller", "model", "serial_number", "image_url", "notes",
)

# Optional fields that may be set back to NULL / empty.
NULLABLE_FIELDS = ("purchase_price",)


@dataclass
class Product:
    """A tracked product.

    Attributes:
        product_id:           Unique identifier (UUID string).
        owner_id:             Owning user.
        name:                 Display name.
        purchase_date:        ISO date of purchase.
        warranty_period:      Warranty length in months.
        warranty_expiry_date: Derived ISO date, purchase_date + warranty_period.
        category_id:          Category reference (may dangle after a delete).
        purchase_price:       Optional price, None when unknown.
        documents:            Attached document references.
        expiry_notice_for:    Expiry date the reminder email was last sent for.
    """
    product_id: str
    owner_id: str = ""
    name: str = ""
    description: str = ""
    purchase_date: str = ""
    warranty_period: int = 0
    warranty_expiry_date: str = ""
    category_id: str = ""
    purchase_price: Optional[float] = None
    seller: str = ""
    model: str = ""
    serial_number: str = ""
    image_url: str = ""
    documents: list[dict[str, Any]] = field(default_factory=list)
    notes: str = ""
    expiry_notice_for: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def short_id(self) -> str:
        return self.product_id[:8]

    @property
    def expiry(self) -> Optional[date]:
        return parse_date(self.warranty_expiry_date)

    def status(
        self,
        reference_now: datetime | None = None,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ) -> str:
        return warranty_status(self.expiry, reference_now, threshold_days)

    def to_dict(
        self,
        category_name: str | None = None,
        reference_now: datetime | None = None,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ) -> dict[str, Any]:
        expiry = self.expiry
        return {
            "product_id": self.product_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "purchase_date": self.purchase_date,
            "warranty_period": self.warranty_period,
            "warranty_expiry_date": self.warranty_expiry_date,
            "category_id": self.category_id,
            "category": category_name or "Unknown",
            "purchase_price": self.purchase_price,
            "seller": self.seller,
            "model": self.model,
            "serial_number": self.serial_number,
            "image_url": self.image_url,
            "documents": self.documents,
            "notes": self.notes,
            "warranty_status": warranty_status(expiry, reference_now, threshold_days),
            "days_remaining": days_left(expiry, reference_now),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Product":
        r = dict(row)
        return Product(
            product_id=r.get("product_id", ""),
            owner_id=r.get("owner_id", ""),
            name=r.get("name", ""),
            description=r.get("description", ""),
            purchase_date=r.get("purchase_date", ""),
            warranty_period=r.get("warranty_period", 0),
            warranty_expiry_date=r.get("warranty_expiry_date", ""),
            category_id=r.get("category_id", ""),
            purchase_price=r.get("purchase_price"),
            seller=r.get("seller", ""),
            model=r.get("model", ""),
            serial_number=r.get("serial_number", ""),
            image_url=r.get("image_url", ""),
            documents=load_documents(r.get("documents")),
            notes=r.get("notes", ""),
            expiry_notice_for=r.get("expiry_notice_for", ""),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )


def compute_expiry(purchase_date: str | date, warranty_period: int) -> str:
    """Derive the ISO expiry date from purchase date and months of warranty."""
    return add_months(parse_date(purchase_date), int(warranty_period)).isoformat()


class ProductStore:
    """SQLite-backed product storage.

    Args:
        db_path:        SQLite file, shared with the other tracker stores.
        threshold_days: Expiring window used when serializing status.
    """

    def __init__(
        self,
        db_path: str = "data/warranty_tracker.db",
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        register_sql_functions(self._conn)
        self.threshold_days = threshold_days
        self._create_tables()
        logger.info("ProductStore initialized (db=%s)", db_path)

    def _create_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS products (
                id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id           TEXT UNIQUE NOT NULL,
                owner_id             TEXT NOT NULL,
                name                 TEXT NOT NULL,
                description          TEXT NOT NULL DEFAULT '',
                purchase_date        TEXT NOT NULL,
                warranty_period      INTEGER NOT NULL DEFAULT 0,
                warranty_expiry_date TEXT NOT NULL,
                category_id          TEXT NOT NULL,
                purchase_price       REAL,
                seller               TEXT NOT NULL DEFAULT '',
                model                TEXT NOT NULL DEFAULT '',
                serial_number        TEXT NOT NULL DEFAULT '',
                image_url            TEXT NOT NULL DEFAULT '',
                documents            TEXT NOT NULL DEFAULT '[]',
                notes                TEXT NOT NULL DEFAULT '',
                expiry_notice_for    TEXT NOT NULL DEFAULT '',
                created_at           TEXT NOT NULL,
                updated_at           TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_prod_owner    ON products(owner_id);
            CREATE INDEX IF NOT EXISTS idx_prod_expiry   ON products(warranty_expiry_date);
            CREATE INDEX IF NOT EXISTS idx_prod_category ON products(category_id);
        """)
        self._conn.commit()

    @staticmethod
    def _now() -> str:
        return (
            datetime.now(timezone.utc)
            .isoformat(timespec="seconds")
            .replace("+00:00", "Z")
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add_product(
        self,
        owner_id: str,
        name: str,
        purchase_date: str,
        warranty_period: int,
        category_id: str,
        description: str = "",
        purchase_price: Optional[float] = None,
        seller: str = "",
        model: str = "",
        serial_number: str = "",
        image_url: str = "",
        notes: str = "",
    ) -> Product:
        """Create a product. The expiry date is derived, never supplied."""
        now = self._now()
        pid = str(uuid.uuid4())
        purchase = parse_date(purchase_date).isoformat()
        self._conn.execute(
            """INSERT INTO products
               (product_id, owner_id, name, description, purchase_date,
                warranty_period, warranty_expiry_date, category_id,
                purchase_price, seller, model, serial_number, image_url,
                documents, notes, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', ?, ?, ?)""",
            (pid, owner_id, name.strip(), description or "", purchase,
             int(warranty_period), compute_expiry(purchase, warranty_period),
             category_id, purchase_price, seller or "", model or "",
             serial_number or "", image_url or "", notes or "", now, now),
        )
        self._conn.commit()
        product = self.get_product(pid)
        logger.info(
            "Product added %s '%s' (expires %s)",
            product.short_id, product.name, product.warranty_expiry_date,
        )
        return product

    def get_product(self, product_id: str) -> Optional[Product]:
        row = self._conn.execute(
            "SELECT * FROM products WHERE product_id = ?", (product_id,),
        ).fetchone()
        return Product.from_row(row) if row else None

    def get_products(self, product_ids: list[str]) -> dict[str, Product]:
        """Batch lookup keyed by product_id."""
        ids = sorted({p for p in product_ids if p})
        if not ids:
            return {}
        marks = ", ".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT * FROM products WHERE product_id IN ({marks})", ids,
        ).fetchall()
        return {r["product_id"]: Product.from_row(r) for r in rows}

    def update_product(self, product_id: str, **kwargs) -> Optional[Product]:
        """Update editable fields and re-derive the expiry date.

        Only fields whose value actually differs are written; updated_at
        moves only when something changed.
        """
        existing = self.get_product(product_id)
        if not existing:
            return None

        updates = {}
        for key, value in kwargs.items():
            if key not in EDITABLE_FIELDS:
                continue
            if value is None and key not in NULLABLE_FIELDS:
                continue
            if key == "purchase_date":
                value = parse_date(value).isoformat()
            elif key == "warranty_period":
                value = int(value)
            if getattr(existing, key) != value:
                updates[key] = value
        if not updates:
            return existing

        purchase = updates.get("purchase_date", existing.purchase_date)
        period = updates.get("warranty_period", existing.warranty_period)
        updates["warranty_expiry_date"] = compute_expiry(purchase, period)
        updates["updated_at"] = self._now()

        set_clause = ", ".join(f"{k} = ?" for k in updates)
        self._conn.execute(
            f"UPDATE products SET {set_clause} WHERE product_id = ?",
            list(updates.values()) + [product_id],
        )
        self._conn.commit()
        logger.info("Product updated %s (%s)", product_id[:8], ", ".join(sorted(updates)))
        return self.get_product(product_id)

    def delete_product(self, product_id: str) -> tuple[bool, int]:
        """Delete a product and its service records in one transaction.

        The services table lives in the same database file (ServiceStore).
        Either both deletes commit or neither does.

        Returns (product_deleted, services_removed).
        """
        with self._conn:
            has_services = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'services'",
            ).fetchone()
            removed = 0
            if has_services:
                removed = self._conn.execute(
                    "DELETE FROM services WHERE product_id = ?", (product_id,),
                ).rowcount
            cur = self._conn.execute(
                "DELETE FROM products WHERE product_id = ?", (product_id,),
            )
        if cur.rowcount > 0:
            logger.info("Product deleted %s (%d service records)", product_id[:8], removed)
            return True, removed
        return False, removed

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def query(self, q: RecordQuery) -> RecordPage[Product]:
        """Run a built list query. total uses the same predicate, no window."""
        where = q.predicate.where
        total = self._conn.execute(
            f"SELECT COUNT(*) FROM products WHERE {where}", q.predicate.params,
        ).fetchone()[0]
        rows = self._conn.execute(
            f"SELECT * FROM products WHERE {where} ORDER BY {q.order_by} LIMIT ? OFFSET ?",
            q.predicate.params + [q.limit, q.offset],
        ).fetchall()
        return RecordPage([Product.from_row(r) for r in rows], total, q.page, q.limit)

    def list_for_owner(self, owner_id: str) -> list[Product]:
        """Every product of one owner, newest first. Used by exports."""
        rows = self._conn.execute(
            "SELECT * FROM products WHERE owner_id = ? ORDER BY created_at DESC, id DESC",
            (owner_id,),
        ).fetchall()
        return [Product.from_row(r) for r in rows]

    def expiring_between(self, start: date, end: date) -> list[Product]:
        """Products of all owners whose expiry date lies in [start, end]."""
        rows = self._conn.execute(
            """SELECT * FROM products
               WHERE warranty_expiry_date >= ? AND warranty_expiry_date <= ?
               ORDER BY warranty_expiry_date ASC, id ASC""",
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [Product.from_row(r) for r in rows]

    def mark_expiry_notice(self, product_id: str, expiry_date: str) -> None:
        """Record that the expiry reminder went out for this expiry date."""
        self._conn.execute(
            "UPDATE products SET expiry_notice_for = ? WHERE product_id = ?",
            (expiry_date, product_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(
        self, product_id: str, name: str, path: str, document_type: str = "other",
    ) -> Optional[dict[str, Any]]:
        product = self.get_product(product_id)
        if not product:
            return None
        doc = new_document(name, path, document_type)
        product.documents.append(doc)
        self._save_documents(product_id, product.documents)
        logger.info("Document %s attached to product %s", doc["document_id"][:8], product.short_id)
        return doc

    def remove_document(self, product_id: str, document_id: str) -> bool:
        product = self.get_product(product_id)
        if not product:
            return False
        remaining = [d for d in product.documents if d.get("document_id") != document_id]
        if len(remaining) == len(product.documents):
            return False
        self._save_documents(product_id, remaining)
        logger.info("Document %s removed from product %s", document_id[:8], product.short_id)
        return True

    def _save_documents(self, product_id: str, documents: list[dict[str, Any]]) -> None:
        self._conn.execute(
            "UPDATE products SET documents = ?, updated_at = ? WHERE product_id = ?",
            (dump_documents(documents), self._now(), product_id),
        )
        self._conn.commit()

    def close(self):
        if self._conn:
            self._conn.close()
            logger.info("ProductStore closed")
