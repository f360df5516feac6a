"""
Attached-document references shared by products and service records.

Files themselves live outside the database (upload storage is handled
elsewhere); only a name/path reference is persisted, as a JSON list
column on the owning row.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("tracker.documents")

DOCUMENT_TYPES = ("receipt", "warranty", "manual", "other")


def new_document(name: str, path: str, document_type: str = "other") -> dict[str, Any]:
    """Build a document reference entry."""
    if document_type not in DOCUMENT_TYPES:
        document_type = "other"
    return {
        "document_id": uuid.uuid4().hex,
        "name": name,
        "path": path,
        "document_type": document_type,
        "uploaded_at": datetime.now(timezone.utc)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z"),
    }


def load_documents(raw: str | None) -> list[dict[str, Any]]:
    """Decode the JSON documents column, tolerating empty or corrupt values."""
    if not raw:
        return []
    try:
        docs = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding unreadable documents column: %r", raw[:80])
        return []
    return docs if isinstance(docs, list) else []


def dump_documents(docs: list[dict[str, Any]]) -> str:
    return json.dumps(docs)
