from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .claims import PendingClaim, SavedClaim, utc_timestamp

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """A round trip to the claim store failed."""


class ClaimStore(Protocol):
    def list_claims(self) -> List[SavedClaim]: ...

    def insert_claims(self, claims: Sequence[PendingClaim]) -> int: ...

    def delete_claims(self, ids: Sequence[int]) -> int: ...

    def clear(self) -> int: ...


def sanitize_ids(ids: Iterable[Any]) -> List[int]:
    clean: List[int] = []
    for raw in ids:
        if isinstance(raw, bool):
            continue
        try:
            clean.append(int(raw))
        except (TypeError, ValueError):
            continue
    return clean


class InMemoryClaimStore:
    """Process-local store, mostly for tests and offline sessions."""

    def __init__(self, claims: Iterable[SavedClaim] = (), *, fail_on: Iterable[str] = ()) -> None:
        self._claims: Dict[int, SavedClaim] = {c.id: c for c in claims}
        self._next_id = max(self._claims, default=0) + 1
        self.fail_on = set(fail_on)
        self.calls: List[str] = []

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail_on:
            raise StoreUnavailable(f"{op} failed (injected)")

    def list_claims(self) -> List[SavedClaim]:
        self._check("list")
        return [self._claims[k] for k in sorted(self._claims)]

    def insert_claims(self, claims: Sequence[PendingClaim]) -> int:
        self._check("insert")
        for claim in claims:
            saved = SavedClaim(
                id=self._next_id,
                x=float(claim.x),
                y=float(claim.y),
                timestamp=claim.timestamp or utc_timestamp(),
                team=claim.team,
                color=claim.color,
                owner_id=claim.owner_id,
            )
            self._claims[saved.id] = saved
            self._next_id += 1
        return len(claims)

    def delete_claims(self, ids: Sequence[int]) -> int:
        self._check("delete")
        deleted = 0
        for claim_id in sanitize_ids(ids):
            if self._claims.pop(claim_id, None) is not None:
                deleted += 1
        return deleted

    def clear(self) -> int:
        self._check("clear")
        count = len(self._claims)
        self._claims.clear()
        return count


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS claims (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    x REAL NOT NULL,
    y REAL NOT NULL,
    date TEXT NOT NULL,
    team TEXT,
    color TEXT,
    owner TEXT
)
"""

_MIGRATED_COLUMNS = ("color", "owner")


class SqliteClaimStore:
    """Claims table in a SQLite file; every error surfaces as StoreUnavailable."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._migrate()
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailable(f"Cannot open claim database {self.path}: {exc}") from exc
        logger.info("Opened claim database %s", self.path)

    def _migrate(self) -> None:
        with self._conn:
            self._conn.execute(_CREATE_TABLE)
            cols = {row["name"] for row in self._conn.execute("PRAGMA table_info(claims)")}
            for col in _MIGRATED_COLUMNS:
                if col not in cols:
                    logger.info("Migrating DB: adding %r column to claims table", col)
                    self._conn.execute(f"ALTER TABLE claims ADD COLUMN {col} TEXT")

    def close(self) -> None:
        self._conn.close()

    def list_claims(self, limit: Optional[int] = None) -> List[SavedClaim]:
        sql = "SELECT id, x, y, date, team, color, owner FROM claims ORDER BY id ASC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (int(limit),)
        try:
            with self._lock:
                rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"DB read failed: {exc}") from exc
        return [SavedClaim.from_row(dict(row)) for row in rows]

    def insert_claims(self, claims: Sequence[PendingClaim]) -> int:
        rows = [
            (float(c.x), float(c.y), c.timestamp or utc_timestamp(), c.team, c.color, c.owner_id)
            for c in claims
        ]
        try:
            with self._lock, self._conn:
                self._conn.executemany(
                    "INSERT INTO claims (x, y, date, team, color, owner) VALUES (?, ?, ?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"DB insert failed: {exc}") from exc
        return len(rows)

    def delete_claims(self, ids: Sequence[int]) -> int:
        clean = sanitize_ids(ids)
        if not clean:
            return 0
        try:
            with self._lock, self._conn:
                cur = self._conn.executemany("DELETE FROM claims WHERE id = ?", [(i,) for i in clean])
                deleted = cur.rowcount
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"DB delete failed: {exc}") from exc
        return max(deleted, 0)

    def clear(self) -> int:
        try:
            with self._lock:
                with self._conn:
                    deleted = self._conn.execute("DELETE FROM claims").rowcount
                self._conn.execute("VACUUM")
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"DB clear failed: {exc}") from exc
        return max(deleted, 0)
