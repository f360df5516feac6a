"""
Product categories: global defaults plus per-user custom categories.

Defaults are seeded once at startup, have no owner and are read-only for
everybody. Custom categories belong to exactly one user. Names are unique,
case-insensitively, within what a user can see: the defaults plus that
user's own customs.

SQLite-backed, single-file module.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("tracker.categories")

DEFAULT_CATEGORIES = (
    ("Appliance", "Kitchen and home appliances"),
    ("Electronics", "Computers, phones, and other electronic devices"),
    ("Vehicle", "Cars, motorcycles, and other vehicles"),
    ("Furniture", "Home and office furniture"),
    ("Others", "Miscellaneous items"),
)


@dataclass
class Category:
    """A product category.

    Attributes:
        category_id: Unique identifier (UUID string).
        name:        Display name.
        description: Optional description.
        is_default:  True for the global seeded categories.
        owner_id:    Owning user for custom categories, '' for defaults.
        created_at:  Record creation timestamp (ISO-8601).
        updated_at:  Last modification timestamp (ISO-8601).
    """
    category_id: str
    name: str = ""
    description: str = ""
    is_default: bool = False
    owner_id: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def short_id(self) -> str:
        return self.category_id[:8]

    def visible_to(self, owner_id: str) -> bool:
        return self.is_default or self.owner_id == owner_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "owner_id": self.owner_id or None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Category":
        r = dict(row)
        return Category(
            category_id=r.get("category_id", ""),
            name=r.get("name", ""),
            description=r.get("description", ""),
            is_default=bool(r.get("is_default", 0)),
            owner_id=r.get("owner_id", ""),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )


class CategoryStore:
    """SQLite-backed category storage with default seeding."""

    def __init__(self, db_path: str = "data/warranty_tracker.db"):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("CategoryStore initialized (db=%s)", db_path)

    def _create_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS categories (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                category_id TEXT UNIQUE NOT NULL,
                name        TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                is_default  INTEGER NOT NULL DEFAULT 0,
                owner_id    TEXT NOT NULL DEFAULT '',
                created_at  TEXT NOT NULL,
                updated_at  TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_cat_owner   ON categories(owner_id);
            CREATE INDEX IF NOT EXISTS idx_cat_default ON categories(is_default);
        """)
        self._conn.commit()

    @staticmethod
    def _now() -> str:
        return (
            datetime.now(timezone.utc)
            .isoformat(timespec="seconds")
            .replace("+00:00", "Z")
        )

    def _insert(self, name: str, description: str, is_default: bool, owner_id: str) -> str:
        now = self._now()
        cid = str(uuid.uuid4())
        self._conn.execute(
            """INSERT INTO categories
               (category_id, name, description, is_default, owner_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (cid, name, description, int(is_default), owner_id, now, now),
        )
        return cid

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_defaults(self) -> int:
        """Insert the default categories unless some already exist.

        Returns the number of categories inserted.
        """
        existing = self._conn.execute(
            "SELECT COUNT(*) FROM categories WHERE is_default = 1",
        ).fetchone()[0]
        if existing:
            logger.info("Default categories already exist (%d)", existing)
            return 0
        for name, description in DEFAULT_CATEGORIES:
            self._insert(name, description, True, "")
        self._conn.commit()
        logger.info("Seeded %d default categories", len(DEFAULT_CATEGORIES))
        return len(DEFAULT_CATEGORIES)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_category(self, category_id: str) -> Optional[Category]:
        row = self._conn.execute(
            "SELECT * FROM categories WHERE category_id = ?", (category_id,),
        ).fetchone()
        return Category.from_row(row) if row else None

    def get_visible(self, category_id: str, owner_id: str) -> Optional[Category]:
        """Fetch a category only if it is a default or owned by owner_id."""
        category = self.get_category(category_id)
        if category and category.visible_to(owner_id):
            return category
        return None

    def list_visible(self, owner_id: str) -> list[Category]:
        """Defaults plus the owner's customs, sorted by name."""
        rows = self._conn.execute(
            """SELECT * FROM categories
               WHERE is_default = 1 OR owner_id = ?
               ORDER BY name COLLATE NOCASE ASC, id ASC""",
            (owner_id,),
        ).fetchall()
        return [Category.from_row(r) for r in rows]

    def find_by_name(
        self, name: str, owner_id: str, exclude_id: str = "",
    ) -> Optional[Category]:
        """Case-insensitive name lookup within the owner's visible scope."""
        wanted = name.strip().casefold()
        for category in self.list_visible(owner_id):
            if category.category_id != exclude_id and category.name.casefold() == wanted:
                return category
        return None

    def names_by_id(self, category_ids: list[str]) -> dict[str, str]:
        """Batch id → name lookup; unknown ids are simply absent."""
        ids = sorted({c for c in category_ids if c})
        if not ids:
            return {}
        marks = ", ".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT category_id, name FROM categories WHERE category_id IN ({marks})",
            ids,
        ).fetchall()
        return {r["category_id"]: r["name"] for r in rows}

    # ------------------------------------------------------------------
    # Writes (custom categories only)
    # ------------------------------------------------------------------

    def add_category(self, owner_id: str, name: str, description: str = "") -> Category:
        """Create a custom category. Callers check find_by_name() first."""
        cid = self._insert(name.strip(), (description or "").strip(), False, owner_id)
        self._conn.commit()
        category = self.get_category(cid)
        logger.info("Category added %s '%s' for %s", category.short_id, category.name, owner_id[:8])
        return category

    def update_category(self, category_id: str, **kwargs) -> Optional[Category]:
        """Update name/description of a category. Only supplied fields are changed."""
        existing = self.get_category(category_id)
        if not existing:
            return None

        updates = {}
        if kwargs.get("name"):
            updates["name"] = kwargs["name"].strip()
        if kwargs.get("description") is not None:
            updates["description"] = kwargs["description"].strip()
        if not updates:
            return existing

        updates["updated_at"] = self._now()
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        self._conn.execute(
            f"UPDATE categories SET {set_clause} WHERE category_id = ?",
            list(updates.values()) + [category_id],
        )
        self._conn.commit()
        logger.info("Category updated %s", category_id[:8])
        return self.get_category(category_id)

    def delete_category(self, category_id: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM categories WHERE category_id = ? AND is_default = 0",
            (category_id,),
        )
        self._conn.commit()
        if cur.rowcount > 0:
            logger.info("Category deleted %s", category_id[:8])
            return True
        return False

    def close(self):
        if self._conn:
            self._conn.close()
            logger.info("CategoryStore closed")
