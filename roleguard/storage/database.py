"""Async SQLite principal store.

Uses aiosqlite for async access. Holds principal snapshots and their
delegated role records, and implements the atomic conditional decrement
that charges delegated role budget. Designed for dev/testing and single
node deployments.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from roleguard.config import settings
from roleguard.core.models import DelegatedRole, Principal
from roleguard.exceptions import StorageError

DEFAULT_DB_PATH = Path(settings.db_path)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS principals (
    id TEXT PRIMARY KEY,
    role TEXT,
    email TEXT,
    has_valid_subscription INTEGER NOT NULL DEFAULT 0,
    office_has_valid_subscription INTEGER NOT NULL DEFAULT 0,
    office TEXT
);

CREATE TABLE IF NOT EXISTS delegated_roles (
    principal_id TEXT PRIMARY KEY REFERENCES principals (id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    expires TEXT NOT NULL,
    n INTEGER NOT NULL,
    granted_by TEXT NOT NULL DEFAULT '',
    team TEXT NOT NULL DEFAULT '',
    limit_to_resources TEXT
);

CREATE INDEX IF NOT EXISTS idx_delegated_roles_expires
    ON delegated_roles (expires);

CREATE TABLE IF NOT EXISTS delegated_usage_ledger (
    request_id TEXT PRIMARY KEY,
    principal_id TEXT NOT NULL,
    applied INTEGER NOT NULL,
    consumed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_delegated_usage_ledger_consumed_at
    ON delegated_usage_ledger (consumed_at);
"""

#: How long usage ledger rows are kept for retry deduplication.
LEDGER_RETENTION = timedelta(days=1)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime) -> str:
    # Fixed width so stored timestamps order correctly as text.
    return value.isoformat(timespec="microseconds")


def _utcnow_iso() -> str:
    return _iso(datetime.now(timezone.utc))


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        # Serializes multi-statement write transactions on the shared connection.
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db


    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """One write transaction, serialized on the shared connection.

        Commits on success. Any exception, cancellation by a timeout
        included, rolls back before it propagates, so no statement of a
        failed transaction stays pending on the connection.
        """
        async with self._write_lock:
            try:
                yield self.db
                await self.db.commit()
            except sqlite3.Error as exc:
                await self.db.rollback()
                raise StorageError(f"Failed to {action}: {exc}") from exc
            except BaseException:
                await self.db.rollback()
                raise

    # --- Principal ---

    async def upsert_principal(self, principal: Principal) -> None:
        """Insert or update a principal snapshot and its delegated role."""
        if principal.id is None:
            raise StorageError("Cannot store a principal without an id")
        async with self._transaction(f"store principal {principal.id}") as db:
            await db.execute(
                """INSERT INTO principals
                   (id, role, email, has_valid_subscription, office_has_valid_subscription, office)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT (id) DO UPDATE SET
                     role = excluded.role,
                     email = excluded.email,
                     has_valid_subscription = excluded.has_valid_subscription,
                     office_has_valid_subscription = excluded.office_has_valid_subscription,
                     office = excluded.office""",
                (
                    principal.id,
                    principal.role.value if principal.role else None,
                    principal.email,
                    int(principal.has_valid_subscription),
                    int(principal.office_has_valid_subscription),
                    json.dumps(principal.office) if principal.office is not None else None,
                ),
            )
            if principal.delegated_role is not None:
                await self._write_delegated_role(db, principal.id, principal.delegated_role)

    async def get_principal(self, principal_id: str) -> Principal | None:
        cursor = await self.db.execute("SELECT * FROM principals WHERE id = ?", (principal_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return Principal(
            id=row["id"],
            role=row["role"],
            email=row["email"],
            has_valid_subscription=bool(row["has_valid_subscription"]),
            office_has_valid_subscription=bool(row["office_has_valid_subscription"]),
            office=json.loads(row["office"]) if row["office"] else None,
            delegated_role=await self.get_delegated_role(principal_id),
        )

    # --- DelegatedRole ---

    async def set_delegated_role(self, principal_id: str, delegated: DelegatedRole) -> None:
        """Attach (or replace) the delegated role record of a principal."""
        async with self._transaction(f"store delegated role for {principal_id}") as db:
            await self._write_delegated_role(db, principal_id, delegated)

    async def _write_delegated_role(
        self, db: aiosqlite.Connection, principal_id: str, delegated: DelegatedRole
    ) -> None:
        limit = delegated.limit_to_resources
        await db.execute(
            """INSERT OR REPLACE INTO delegated_roles
               (principal_id, role, expires, n, granted_by, team, limit_to_resources)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                principal_id,
                delegated.role.value,
                delegated.expires.isoformat(),
                delegated.n,
                delegated.granted_by,
                delegated.team,
                json.dumps(limit) if limit is not None else None,
            ),
        )

    async def get_delegated_role(self, principal_id: str) -> DelegatedRole | None:
        cursor = await self.db.execute(
            "SELECT * FROM delegated_roles WHERE principal_id = ?", (principal_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_delegated_role(row)

    async def decrement_delegated_role_usage(
        self, principal_id: str, *, request_id: str | None = None
    ) -> bool:
        """Charge one use of the principal's delegated role.

        The conditional ``UPDATE ... WHERE n > 0`` is a single atomic
        statement, so concurrent callers cannot both spend the last use.
        With a *request_id*, the outcome is written to the usage ledger in
        the same transaction, and a repeat call with that id returns the
        recorded outcome without touching the counter.
        """
        async with self._transaction(f"decrement delegated role usage for {principal_id}") as db:
            if request_id is not None:
                cursor = await db.execute(
                    "SELECT applied FROM delegated_usage_ledger WHERE request_id = ?",
                    (request_id,),
                )
                row = await cursor.fetchone()
                if row is not None:
                    return bool(row["applied"])
            cursor = await db.execute(
                "UPDATE delegated_roles SET n = n - 1 WHERE principal_id = ? AND n > 0",
                (principal_id,),
            )
            decremented = cursor.rowcount > 0
            if request_id is not None:
                await db.execute(
                    """INSERT INTO delegated_usage_ledger
                       (request_id, principal_id, applied, consumed_at) VALUES (?, ?, ?, ?)""",
                    (request_id, principal_id, int(decremented), _utcnow_iso()),
                )
        return decremented

    # --- Housekeeping ---

    async def purge_inactive_delegated_roles(self, now: datetime | None = None) -> int:
        """Delete exhausted or expired delegated role records. Returns count removed."""
        now = _as_utc(now or datetime.now(timezone.utc))
        removed = 0
        async with self._transaction("purge delegated roles") as db:
            cursor = await db.execute("SELECT principal_id, expires, n FROM delegated_roles")
            rows = await cursor.fetchall()
            for row in rows:
                if row["n"] > 0 and datetime.fromisoformat(row["expires"]) > now:
                    continue
                cursor = await db.execute(
                    "DELETE FROM delegated_roles WHERE principal_id = ?", (row["principal_id"],)
                )
                removed += cursor.rowcount
        return removed

    async def purge_usage_ledger(self, older_than: datetime | None = None) -> int:
        """Delete ledger rows written before *older_than*. Returns count removed.

        Defaults to ``LEDGER_RETENTION`` ago. The cutoff must stay older than
        any retry of a consumption still in flight.
        """
        cutoff = _as_utc(older_than or datetime.now(timezone.utc) - LEDGER_RETENTION)
        async with self._transaction("purge usage ledger") as db:
            cursor = await db.execute(
                "DELETE FROM delegated_usage_ledger WHERE consumed_at < ?",
                (_iso(cutoff),),
            )
            removed = cursor.rowcount
        return removed

    def _row_to_delegated_role(self, row: aiosqlite.Row) -> DelegatedRole:
        limit: Any = json.loads(row["limit_to_resources"]) if row["limit_to_resources"] else None
        return DelegatedRole(
            role=row["role"],
            expires=datetime.fromisoformat(row["expires"]),
            n=row["n"],
            granted_by=row["granted_by"],
            team=row["team"],
            limit_to_resources=limit,
        )
