"""SQLite-backed directory store for local and single-node deployments."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from usage_insights.domain.exceptions import DirectoryLookupError
from usage_insights.domain.interfaces import IDirectoryStore
from usage_insights.domain.models import DirectoryEntry

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,
    name TEXT,
    team TEXT,
    role TEXT NOT NULL DEFAULT 'member'
);
"""

_CREATE_EMAIL_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_users_email ON users (lower(email));
"""

_UPSERT_SQL = """
INSERT INTO users (id, email, name, team, role)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    email=excluded.email,
    name=excluded.name,
    team=excluded.team,
    role=excluded.role;
"""

_SELECT_BY_IDS_SQL = """
SELECT id, email, name FROM users
WHERE id IN ({placeholders})
ORDER BY id;
"""

_SELECT_BY_EMAILS_SQL = """
SELECT id, email, name FROM users
WHERE lower(email) IN ({placeholders})
ORDER BY id;
"""

# Stay well below SQLite's bound-parameter limit.
_MAX_PARAMS = 500


class SQLiteDirectoryStore(IDirectoryStore):
    """Lightweight directory focused on name lookups only."""

    def __init__(self, db_path: str | Path):
        self._db_path = str(db_path)
        self._ensure_schema()

    def save(
        self,
        entry: DirectoryEntry,
        *,
        team: Optional[str] = None,
        role: str = "member",
    ) -> None:
        try:
            with sqlite3.connect(self._db_path) as conn:
                conn.execute(
                    _UPSERT_SQL, (entry.id, entry.email, entry.name, team, role)
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise DirectoryLookupError(
                "Failed to save directory entry", context={"id": entry.id}
            ) from exc

    def find_by_ids(self, ids: Iterable[str]) -> List[DirectoryEntry]:
        keys = sorted({key for key in ids if key})
        return self._select(_SELECT_BY_IDS_SQL, keys)

    def find_by_emails(self, emails: Iterable[str]) -> List[DirectoryEntry]:
        keys = sorted(
            {email.strip().lower() for email in emails if email and email.strip()}
        )
        return self._select(_SELECT_BY_EMAILS_SQL, keys)

    def _ensure_schema(self) -> None:
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(_CREATE_TABLE_SQL)
            conn.execute(_CREATE_EMAIL_INDEX_SQL)
            conn.commit()

    def _select(self, template: str, keys: Sequence[str]) -> List[DirectoryEntry]:
        entries: List[DirectoryEntry] = []
        try:
            with sqlite3.connect(self._db_path) as conn:
                for start in range(0, len(keys), _MAX_PARAMS):
                    chunk = keys[start : start + _MAX_PARAMS]
                    sql = template.format(placeholders=",".join("?" for _ in chunk))
                    rows = conn.execute(sql, chunk).fetchall()
                    entries.extend(self._row_to_entry(row) for row in rows)
        except sqlite3.Error as exc:
            raise DirectoryLookupError(
                "Directory query failed", context={"db_path": self._db_path}
            ) from exc
        return entries

    @staticmethod
    def _row_to_entry(row: Tuple[str, Optional[str], Optional[str]]) -> DirectoryEntry:
        id_, email, name = row
        return DirectoryEntry(id=id_, email=email, name=name)
