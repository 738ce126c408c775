"""Lead persistence (SQLite).

Leads are idempotent on the whole submission (email, name, title, date,
time): submitting the same booking twice returns the stored record instead
of creating a duplicate.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, EmailStr, ValidationError

from app.errors import LeadStoreUnavailable, LeadValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("email", "name", "title")
_COLUMNS = ("id", "email", "name", "title", "date", "time", "timezone", "created_at", "status", "source")


class LeadSubmission(BaseModel):
    email: EmailStr
    name: str
    title: str
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None


def _init_db(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with closing(sqlite3.connect(path)) as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS leads (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                name TEXT NOT NULL,
                title TEXT NOT NULL,
                date TEXT NOT NULL DEFAULT '',
                time TEXT NOT NULL DEFAULT '',
                timezone TEXT NOT NULL,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                source TEXT NOT NULL DEFAULT 'chatbot',
                UNIQUE (email, name, title, date, time)
            )
            """
        )
        con.commit()


def _row_to_lead(row: sqlite3.Row) -> Dict[str, Any]:
    lead = {k: row[k] for k in _COLUMNS}
    # empty strings are storage detail; the API reports missing slots as null
    lead["date"] = lead["date"] or None
    lead["time"] = lead["time"] or None
    return lead


class LeadStore:
    def __init__(self, path: str) -> None:
        self.path = path
        _init_db(path)

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path)
        con.row_factory = sqlite3.Row
        return con

    def add(self, lead: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """Insert a lead; returns (stored lead, created)."""
        record = {
            "id": uuid.uuid4().hex,
            "email": lead["email"].strip().lower(),
            "name": lead["name"].strip(),
            "title": lead["title"].strip(),
            "date": (lead.get("date") or "").strip(),
            "time": (lead.get("time") or "").strip(),
            "timezone": lead["timezone"],
            "created_at": datetime.now(timezone.utc).isoformat(),
            "status": "pending",
            "source": "chatbot",
        }
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with closing(self._connect()) as con:
            cur = con.execute(
                f"INSERT OR IGNORE INTO leads ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(record[c] for c in _COLUMNS),
            )
            con.commit()
            created = cur.rowcount == 1
            row = con.execute(
                "SELECT * FROM leads WHERE email = ? AND name = ? AND title = ? AND date = ? AND time = ?",
                (record["email"], record["name"], record["title"], record["date"], record["time"]),
            ).fetchone()
        return _row_to_lead(row), created

    def list(self, limit: int = 100) -> List[Dict[str, Any]]:
        with closing(self._connect()) as con:
            rows = con.execute(
                "SELECT * FROM leads ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [_row_to_lead(r) for r in rows]


def open_lead_store(path: str) -> Optional[LeadStore]:
    """LeadStore for `path`, or None when no path is configured."""
    if not (path or "").strip():
        return None
    return LeadStore(path)


class LeadService:
    """Validation + persistence shared by the API and the console client."""

    def __init__(self, store: Optional[LeadStore], *, default_timezone: str, list_limit: int = 100) -> None:
        self.store = store
        self.default_timezone = default_timezone
        self.list_limit = int(list_limit)

    def validate(self, payload: Any) -> LeadSubmission:
        if not isinstance(payload, Mapping):
            raise LeadValidationError("Invalid lead payload")
        missing = [f for f in REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
        if missing:
            raise LeadValidationError(
                "Missing required fields: email, name, title", details={"missing": missing}
            )
        try:
            return LeadSubmission.model_validate(
                {k: payload.get(k) for k in LeadSubmission.model_fields}
            )
        except ValidationError as e:
            raise LeadValidationError(
                "Invalid lead data", details=[err["msg"] for err in e.errors()]
            ) from e

    def submit(self, payload: Any) -> Tuple[Dict[str, Any], bool]:
        """Validate and persist; returns (lead, duplicate)."""
        data = self.validate(payload).model_dump()
        data["timezone"] = data.get("timezone") or self.default_timezone
        if self.store is None:
            logger.error("lead submitted but no lead store is configured")
            raise LeadStoreUnavailable("Failed to process lead", details="Database not configured")
        try:
            lead, created = self.store.add(data)
        except sqlite3.Error as e:
            logger.error("saving lead failed: %s", e)
            raise LeadStoreUnavailable("Failed to process lead", details=str(e)) from e
        logger.info("lead %s for %s", "saved" if created else "already stored", lead["email"])
        return lead, not created

    def list(self) -> List[Dict[str, Any]]:
        if self.store is None:
            raise LeadStoreUnavailable("Database not configured")
        try:
            return self.store.list(self.list_limit)
        except sqlite3.Error as e:
            logger.error("fetching leads failed: %s", e)
            raise LeadStoreUnavailable("Failed to fetch leads", details=str(e)) from e
