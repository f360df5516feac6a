"""
Service history for tracked products.

A service record logs one repair or maintenance visit (date, service
center, cost, description) and optionally when the next service is due.
Due status (scheduled / upcoming / overdue) is derived from
next_service_due_date exactly like warranty status is derived from the
expiry date.

SQLite-backed, same connection pattern as products.py.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from core.query import RecordPage, RecordQuery, register_sql_functions
from core.status import (
    DEFAULT_THRESHOLD_DAYS,
    as_datetime,
    parse_date,
    service_due_status,
    utcnow,
)
from tools.tracker.documents import dump_documents, load_documents, new_document

logger = logging.getLogger("tracker.services")

EDITABLE_FIELDS = (
    "product_id", "service_date", "service_center", "cost", "description",
    "next_service_due_date", "notes",
)


@dataclass
class ServiceRecord:
    """One service visit for a product.

    Attributes:
        service_id:            Unique identifier (UUID string).
        owner_id:              Owning user (same as the product's owner).
        product_id:            Serviced product.
        service_date:          ISO date of the visit.
        service_center:        Where the work was done.
        cost:                  Amount paid, 0 when free or under warranty.
        next_service_due_date: Optional ISO date of the next scheduled service.
        due_notice_for:        Due date the reminder email was last sent for.
    """
    service_id: str
    owner_id: str = ""
    product_id: str = ""
    service_date: str = ""
    service_center: str = ""
    cost: float = 0.0
    description: str = ""
    next_service_due_date: str = ""
    documents: list[dict[str, Any]] = field(default_factory=list)
    notes: str = ""
    due_notice_for: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def short_id(self) -> str:
        return self.service_id[:8]

    @property
    def next_due(self) -> Optional[date]:
        return parse_date(self.next_service_due_date)

    def to_dict(
        self,
        product_name: str | None = None,
        reference_now: datetime | None = None,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "owner_id": self.owner_id,
            "product_id": self.product_id,
            "product_name": product_name,
            "service_date": self.service_date,
            "service_center": self.service_center,
            "cost": self.cost,
            "description": self.description,
            "next_service_due_date": self.next_service_due_date or None,
            "service_due_status": service_due_status(
                self.next_due, reference_now, threshold_days,
            ),
            "documents": self.documents,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "ServiceRecord":
        r = dict(row)
        return ServiceRecord(
            service_id=r.get("service_id", ""),
            owner_id=r.get("owner_id", ""),
            product_id=r.get("product_id", ""),
            service_date=r.get("service_date", ""),
            service_center=r.get("service_center", ""),
            cost=r.get("cost") or 0.0,
            description=r.get("description", ""),
            next_service_due_date=r.get("next_service_due_date") or "",
            documents=load_documents(r.get("documents")),
            notes=r.get("notes", ""),
            due_notice_for=r.get("due_notice_for", ""),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )


def _iso(value: str | date | None) -> str:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else ""


class ServiceStore:
    """SQLite-backed service record storage."""

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
        logger.info("ServiceStore initialized (db=%s)", db_path)

    def _create_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS services (
                id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                service_id            TEXT UNIQUE NOT NULL,
                owner_id              TEXT NOT NULL,
                product_id            TEXT NOT NULL,
                service_date          TEXT NOT NULL,
                service_center        TEXT NOT NULL,
                cost                  REAL NOT NULL DEFAULT 0,
                description           TEXT NOT NULL,
                next_service_due_date TEXT NOT NULL DEFAULT '',
                documents             TEXT NOT NULL DEFAULT '[]',
                notes                 TEXT NOT NULL DEFAULT '',
                due_notice_for        TEXT NOT NULL DEFAULT '',
                created_at            TEXT NOT NULL,
                updated_at            TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_svc_owner   ON services(owner_id);
            CREATE INDEX IF NOT EXISTS idx_svc_product ON services(product_id);
            CREATE INDEX IF NOT EXISTS idx_svc_due     ON services(next_service_due_date);
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

    def add_service(
        self,
        owner_id: str,
        product_id: str,
        service_date: str,
        service_center: str,
        description: str,
        cost: float = 0.0,
        next_service_due_date: str | None = None,
        notes: str = "",
    ) -> ServiceRecord:
        now = self._now()
        sid = str(uuid.uuid4())
        self._conn.execute(
            """INSERT INTO services
               (service_id, owner_id, product_id, service_date, service_center,
                cost, description, next_service_due_date, documents, notes,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, '[]', ?, ?, ?)""",
            (sid, owner_id, product_id, _iso(service_date), service_center.strip(),
             float(cost or 0), description.strip(), _iso(next_service_due_date),
             notes or "", now, now),
        )
        self._conn.commit()
        record = self.get_service(sid)
        logger.info(
            "Service added %s for product %s (%s)",
            record.short_id, product_id[:8], record.service_center,
        )
        return record

    def get_service(self, service_id: str) -> Optional[ServiceRecord]:
        row = self._conn.execute(
            "SELECT * FROM services WHERE service_id = ?", (service_id,),
        ).fetchone()
        return ServiceRecord.from_row(row) if row else None

    def update_service(self, service_id: str, **kwargs) -> Optional[ServiceRecord]:
        """Update a service record. Only supplied fields that differ are written."""
        existing = self.get_service(service_id)
        if not existing:
            return None

        updates = {}
        for key, value in kwargs.items():
            if key not in EDITABLE_FIELDS:
                continue
            if value is None and key != "next_service_due_date":
                continue
            if key in ("service_date", "next_service_due_date"):
                value = _iso(value)
            elif key == "cost":
                value = float(value)
            if getattr(existing, key) != value:
                updates[key] = value
        if not updates:
            return existing

        updates["updated_at"] = self._now()
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        self._conn.execute(
            f"UPDATE services SET {set_clause} WHERE service_id = ?",
            list(updates.values()) + [service_id],
        )
        self._conn.commit()
        logger.info("Service updated %s", service_id[:8])
        return self.get_service(service_id)

    def delete_service(self, service_id: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM services WHERE service_id = ?", (service_id,),
        )
        self._conn.commit()
        if cur.rowcount > 0:
            logger.info("Service deleted %s", service_id[:8])
            return True
        return False

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def query(self, q: RecordQuery) -> RecordPage[ServiceRecord]:
        where = q.predicate.where
        total = self._conn.execute(
            f"SELECT COUNT(*) FROM services WHERE {where}", q.predicate.params,
        ).fetchone()[0]
        rows = self._conn.execute(
            f"SELECT * FROM services WHERE {where} ORDER BY {q.order_by} LIMIT ? OFFSET ?",
            q.predicate.params + [q.limit, q.offset],
        ).fetchall()
        return RecordPage([ServiceRecord.from_row(r) for r in rows], total, q.page, q.limit)

    def list_for_owner(self, owner_id: str) -> list[ServiceRecord]:
        rows = self._conn.execute(
            "SELECT * FROM services WHERE owner_id = ? ORDER BY service_date DESC, id DESC",
            (owner_id,),
        ).fetchall()
        return [ServiceRecord.from_row(r) for r in rows]

    def upcoming(
        self, owner_id: str, now: datetime | None = None, days_ahead: int | None = None,
    ) -> list[ServiceRecord]:
        """Services of one owner due after today, up to today + days_ahead, soonest first.

        A service due today has zero days left and is already overdue.
        """
        today = as_datetime(now or utcnow()).date()
        horizon = today + timedelta(days=self.threshold_days if days_ahead is None else days_ahead)
        rows = self._conn.execute(
            """SELECT * FROM services
               WHERE owner_id = ? AND next_service_due_date != ''
                 AND next_service_due_date > ? AND next_service_due_date <= ?
               ORDER BY next_service_due_date ASC, id ASC""",
            (owner_id, today.isoformat(), horizon.isoformat()),
        ).fetchall()
        return [ServiceRecord.from_row(r) for r in rows]

    def overdue(self, owner_id: str, now: datetime | None = None) -> list[ServiceRecord]:
        """Services of one owner due today or earlier, oldest first."""
        today = as_datetime(now or utcnow()).date()
        rows = self._conn.execute(
            """SELECT * FROM services
               WHERE owner_id = ? AND next_service_due_date != ''
                 AND next_service_due_date <= ?
               ORDER BY next_service_due_date ASC, id ASC""",
            (owner_id, today.isoformat()),
        ).fetchall()
        return [ServiceRecord.from_row(r) for r in rows]

    def due_between(self, start: date, end: date) -> list[ServiceRecord]:
        """Services of all owners whose next due date lies in [start, end]."""
        rows = self._conn.execute(
            """SELECT * FROM services
               WHERE next_service_due_date != ''
                 AND next_service_due_date >= ? AND next_service_due_date <= ?
               ORDER BY next_service_due_date ASC, id ASC""",
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [ServiceRecord.from_row(r) for r in rows]

    def mark_due_notice(self, service_id: str, due_date: str) -> None:
        self._conn.execute(
            "UPDATE services SET due_notice_for = ? WHERE service_id = ?",
            (due_date, service_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(
        self, service_id: str, name: str, path: str, document_type: str = "other",
    ) -> Optional[dict[str, Any]]:
        record = self.get_service(service_id)
        if not record:
            return None
        doc = new_document(name, path, document_type)
        record.documents.append(doc)
        self._save_documents(service_id, record.documents)
        logger.info("Document %s attached to service %s", doc["document_id"][:8], record.short_id)
        return doc

    def remove_document(self, service_id: str, document_id: str) -> bool:
        record = self.get_service(service_id)
        if not record:
            return False
        remaining = [d for d in record.documents if d.get("document_id") != document_id]
        if len(remaining) == len(record.documents):
            return False
        self._save_documents(service_id, remaining)
        logger.info("Document %s removed from service %s", document_id[:8], record.short_id)
        return True

    def _save_documents(self, service_id: str, documents: list[dict[str, Any]]) -> None:
        self._conn.execute(
            "UPDATE services SET documents = ?, updated_at = ? WHERE service_id = ?",
            (dump_documents(documents), self._now(), service_id),
        )
        self._conn.commit()

    def close(self):
        if self._conn:
            self._conn.close()
            logger.info("ServiceStore closed")
