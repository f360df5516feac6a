"""
User accounts for the Warranty Tracker.

Owners of products, service records and custom categories. Holds the
contact details and the email opt-in the expiration sweep checks before
sending anything. Passwords and tokens are not handled here.

SQLite-backed, single-file module, same pattern as categories.py.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("tracker.users")


@dataclass
class User:
    """A registered user.

    Attributes:
        user_id:               Unique identifier (UUID string).
        name:                  Display name used in emails.
        email:                 Contact address (unique, case-insensitive).
        notifications_enabled: Email reminders opt-in.
        created_at:            Record creation timestamp (ISO-8601).
        updated_at:            Last modification timestamp (ISO-8601).
    """
    user_id: str
    name: str = ""
    email: str = ""
    notifications_enabled: bool = True
    created_at: str = ""
    updated_at: str = ""

    @property
    def short_id(self) -> str:
        return self.user_id[:8]

    @property
    def notifiable(self) -> bool:
        """Whether reminder emails may be sent to this user."""
        return self.notifications_enabled and bool(self.email)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "notifications_enabled": self.notifications_enabled,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "User":
        r = dict(row)
        return User(
            user_id=r.get("user_id", ""),
            name=r.get("name", ""),
            email=r.get("email", ""),
            notifications_enabled=bool(r.get("notifications_enabled", 1)),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )


class UserStore:
    """SQLite-backed user storage."""

    def __init__(self, db_path: str = "data/warranty_tracker.db"):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("UserStore initialized (db=%s)", db_path)

    def _create_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id               TEXT UNIQUE NOT NULL,
                name                  TEXT NOT NULL DEFAULT '',
                email                 TEXT NOT NULL DEFAULT '' COLLATE NOCASE,
                notifications_enabled INTEGER NOT NULL DEFAULT 1,
                created_at            TEXT NOT NULL,
                updated_at            TEXT NOT NULL
            );
            CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users(email);
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

    def add_user(self, name: str, email: str, notifications_enabled: bool = True) -> User:
        """Create a user. Callers check get_by_email() first for a friendly error."""
        now = self._now()
        uid = str(uuid.uuid4())
        self._conn.execute(
            """INSERT INTO users
               (user_id, name, email, notifications_enabled, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (uid, name.strip(), email.strip(), int(notifications_enabled), now, now),
        )
        self._conn.commit()
        user = self.get_user(uid)
        logger.info("User added %s (%s)", user.short_id, user.email)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._conn.execute(
            "SELECT * FROM users WHERE user_id = ?", (user_id,),
        ).fetchone()
        return User.from_row(row) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self._conn.execute(
            "SELECT * FROM users WHERE email = ?", (email.strip(),),
        ).fetchone()
        return User.from_row(row) if row else None

    def update_user(self, user_id: str, **kwargs) -> Optional[User]:
        """Update a user. Only supplied fields are changed."""
        existing = self.get_user(user_id)
        if not existing:
            return None

        allowed = {"name", "email", "notifications_enabled"}
        updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
        if not updates:
            return existing
        if "notifications_enabled" in updates:
            updates["notifications_enabled"] = int(bool(updates["notifications_enabled"]))

        updates["updated_at"] = self._now()
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        self._conn.execute(
            f"UPDATE users SET {set_clause} WHERE user_id = ?",
            list(updates.values()) + [user_id],
        )
        self._conn.commit()
        logger.info("User updated %s", user_id[:8])
        return self.get_user(user_id)

    def close(self):
        if self._conn:
            self._conn.close()
            logger.info("UserStore closed")
