"""Tests for the async SQLite principal store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from roleguard.core.models import Principal
from roleguard.exceptions import StorageError
from roleguard.rbac import Role


class TestPrincipalStorage:
    async def test_insert_and_get(self, db, make_delegated):
        principal = Principal(
            id="u1",
            role=Role.STAFF,
            email="sam@example.com",
            office_has_valid_subscription=True,
            office={"name": "Acme", "custom": {"trial": "Extended"}},
            delegated_role=make_delegated(Role.ADMIN, n=3),
        )
        await db.upsert_principal(principal)
        loaded = await db.get_principal("u1")

        assert loaded is not None
        assert loaded.role is Role.STAFF
        assert loaded.office == {"name": "Acme", "custom": {"trial": "Extended"}}
        assert loaded.office_has_valid_subscription is True
        assert loaded.has_valid_subscription is False
        assert loaded.delegated_role.role is Role.ADMIN
        assert loaded.delegated_role.n == 3
        assert loaded.delegated_role.expires == principal.delegated_role.expires

    async def test_missing(self, db):
        assert await db.get_principal("nobody") is None
        assert await db.get_delegated_role("nobody") is None

    async def test_upsert_updates_role(self, db):
        await db.upsert_principal(Principal(id="u1", role=Role.CLIENT))
        await db.upsert_principal(Principal(id="u1", role=Role.ADMIN))
        assert (await db.get_principal("u1")).role is Role.ADMIN

    async def test_principal_without_id_rejected(self, db):
        with pytest.raises(StorageError):
            await db.upsert_principal(Principal(role=Role.CLIENT))

    async def test_anonymous_snapshot(self, db):
        await db.upsert_principal(Principal(id="anon"))
        loaded = await db.get_principal("anon")
        assert loaded.role is None
        assert loaded.delegated_role is None

    async def test_limit_to_resources_stored(self, db, make_delegated):
        await db.upsert_principal(Principal(id="u1", role=Role.CLIENT))
        grant = make_delegated(Role.ADMIN).model_copy(
            update={"limit_to_resources": {"billing": ["read"]}}
        )
        await db.set_delegated_role("u1", grant)
        assert (await db.get_delegated_role("u1")).limit_to_resources == {"billing": ["read"]}

    async def test_not_connected(self, tmp_path):
        from roleguard.storage.database import Database

        with pytest.raises(RuntimeError, match="not connected"):
            Database(tmp_path / "x.db").db


class TestDecrement:
    async def test_decrements_to_zero_then_noop(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=2))
        )
        assert await db.decrement_delegated_role_usage("u1") is True
        assert await db.decrement_delegated_role_usage("u1") is True
        assert await db.decrement_delegated_role_usage("u1") is False
        assert (await db.get_delegated_role("u1")).n == 0

    async def test_no_delegated_role(self, db):
        await db.upsert_principal(Principal(id="u1", role=Role.CLIENT))
        assert await db.decrement_delegated_role_usage("u1") is False

    async def test_same_request_id_applied_once(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=5))
        )
        assert await db.decrement_delegated_role_usage("u1", request_id="req-1") is True
        # A repeat reports the first outcome without charging again
        assert await db.decrement_delegated_role_usage("u1", request_id="req-1") is True
        assert await db.decrement_delegated_role_usage("u1", request_id="req-2") is True
        assert (await db.get_delegated_role("u1")).n == 3

    async def test_repeat_of_uncharged_request_stays_uncharged(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=0))
        )
        assert await db.decrement_delegated_role_usage("u1", request_id="req-1") is False
        await db.set_delegated_role("u1", make_delegated(n=2))
        assert await db.decrement_delegated_role_usage("u1", request_id="req-1") is False
        assert (await db.get_delegated_role("u1")).n == 2

    async def test_cancelled_write_is_rolled_back(self, db, make_delegated, monkeypatch):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=2))
        )
        execute = db.db.execute
        stalled = []

        async def stall_after_update(sql, *args, **kwargs):
            cursor = await execute(sql, *args, **kwargs)
            if sql.startswith("UPDATE delegated_roles") and not stalled:
                stalled.append(sql)
                await asyncio.sleep(0.5)
            return cursor

        monkeypatch.setattr(db.db, "execute", stall_after_update)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(
                db.decrement_delegated_role_usage("u1", request_id="req-1"), timeout=0.1
            )
        assert (await db.get_delegated_role("u1")).n == 2

        assert await db.decrement_delegated_role_usage("u1", request_id="req-1") is True
        assert (await db.get_delegated_role("u1")).n == 1

    async def test_concurrent_decrements_never_overspend(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=3))
        )
        results = await asyncio.gather(
            *(db.decrement_delegated_role_usage("u1", request_id=f"r{i}") for i in range(8))
        )
        assert sum(results) == 3
        assert (await db.get_delegated_role("u1")).n == 0


class TestPurge:
    async def test_removes_exhausted_and_expired(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="live", role=Role.CLIENT, delegated_role=make_delegated(n=1))
        )
        await db.upsert_principal(
            Principal(id="spent", role=Role.CLIENT, delegated_role=make_delegated(n=0))
        )
        await db.upsert_principal(
            Principal(id="old", role=Role.CLIENT, delegated_role=make_delegated(n=4, hours=-2))
        )

        assert await db.purge_inactive_delegated_roles() == 2
        assert await db.get_delegated_role("live") is not None
        assert await db.get_delegated_role("spent") is None
        assert await db.get_delegated_role("old") is None
        # The principal rows themselves are kept
        assert await db.get_principal("old") is not None

    async def test_explicit_now(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=1, hours=1))
        )
        later = datetime.now(timezone.utc) + timedelta(hours=2)
        assert await db.purge_inactive_delegated_roles(now=later) == 1

    async def test_naive_now_is_utc(self, db, make_delegated):
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=1, hours=1))
        )
        later = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=2)
        assert await db.purge_inactive_delegated_roles(now=later) == 1


class TestPurgeUsageLedger:
    async def _charge(self, db, make_delegated, count: int) -> None:
        await db.upsert_principal(
            Principal(id="u1", role=Role.CLIENT, delegated_role=make_delegated(n=count))
        )
        for i in range(count):
            await db.decrement_delegated_role_usage("u1", request_id=f"req-{i}")

    async def test_default_keeps_recent_rows(self, db, make_delegated):
        await self._charge(db, make_delegated, 2)
        assert await db.purge_usage_ledger() == 0
        # Recent ids still deduplicate
        assert await db.decrement_delegated_role_usage("u1", request_id="req-0") is True
        assert (await db.get_delegated_role("u1")).n == 0

    async def test_removes_rows_older_than_cutoff(self, db, make_delegated):
        await self._charge(db, make_delegated, 3)
        cutoff = datetime.now(timezone.utc) + timedelta(seconds=1)
        assert await db.purge_usage_ledger(older_than=cutoff) == 3
        cursor = await db.db.execute("SELECT COUNT(*) FROM delegated_usage_ledger")
        assert (await cursor.fetchone())[0] == 0

    async def test_naive_cutoff_is_utc(self, db, make_delegated):
        await self._charge(db, make_delegated, 1)
        cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
        assert await db.purge_usage_ledger(older_than=cutoff) == 0
