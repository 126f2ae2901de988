"""SQLite-backed mirror of indexed emails."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .models import CanonicalEmailDocument, SearchFilters


SCHEMA = """
CREATE TABLE IF NOT EXISTS emails (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    folder TEXT NOT NULL,
    subject TEXT NOT NULL DEFAULT '',
    sender TEXT NOT NULL DEFAULT '',
    recipients TEXT NOT NULL DEFAULT '[]',
    date TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_emails_account_folder
ON emails(account_id, folder);

CREATE INDEX IF NOT EXISTS idx_emails_date
ON emails(date);
"""

_COLUMNS = "id, account_id, folder, subject, sender, recipients, date, body, category"


class SqliteEmailIndex:
    """Persistent :class:`~mailmirror.index.sink.IndexingSink`.

    One connection is shared by all account tasks. Sync writes arrive from
    worker threads via ``asyncio.to_thread`` and are serialised with an
    ``RLock``.
    """

    def __init__(self, path: Path) -> None:
        """Open (or create) the mirror database.

        Args:
            path: Path to SQLite database file
        """
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.commit()
            self._conn.close()

    def put(self, document: CanonicalEmailDocument) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                f"""
                INSERT INTO emails({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    account_id=excluded.account_id,
                    folder=excluded.folder,
                    subject=excluded.subject,
                    sender=excluded.sender,
                    recipients=excluded.recipients,
                    date=excluded.date,
                    body=excluded.body,
                    category=excluded.category
                """,
                (
                    document.id,
                    document.account_id,
                    document.folder,
                    document.subject,
                    document.from_address,
                    json.dumps(document.to),
                    document.date,
                    document.text,
                    document.category,
                ),
            )

    def get(self, document_id: str) -> Optional[CanonicalEmailDocument]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM emails WHERE id = ?",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def update_category(self, document_id: str, category: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE emails SET category = ? WHERE id = ?",
                (category, document_id),
            )
            return cur.rowcount > 0

    def clear_all(self) -> int:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM emails")
            return cur.rowcount

    def search(self, filters: Optional[SearchFilters] = None) -> List[CanonicalEmailDocument]:
        filters = filters or SearchFilters()
        where, params = _build_where(filters)
        sql = f"SELECT {_COLUMNS} FROM emails{where} ORDER BY date DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(sql, (*params, filters.limit)).fetchall()
        return [_row_to_document(row) for row in rows]

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM emails").fetchone()[0]


def _build_where(filters: SearchFilters) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if filters.account_id:
        clauses.append("account_id = ?")
        params.append(filters.account_id)
    if filters.folder:
        clauses.append("folder = ?")
        params.append(filters.folder)
    if filters.category:
        clauses.append("category = ?")
        params.append(filters.category)
    if filters.q:
        pattern = "%" + filters.q.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        clauses.append(
            "(" + " OR ".join(
                f"lower({column}) LIKE ? ESCAPE '\\'"
                for column in ("subject", "body", "sender", "recipients")
            ) + ")"
        )
        params.extend([pattern] * 4)
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _row_to_document(row: Tuple[Any, ...]) -> CanonicalEmailDocument:
    return CanonicalEmailDocument(
        id=row[0],
        account_id=row[1],
        folder=row[2],
        subject=row[3],
        from_address=row[4],
        to=json.loads(row[5]),
        date=row[6],
        text=row[7],
        category=row[8],
    )


__all__ = ["SqliteEmailIndex"]
