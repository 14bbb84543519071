"""Shared fixtures for roleguard tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from roleguard.core.conditions import ConditionEvaluator
from roleguard.core.evaluator import PermissionEvaluator
from roleguard.core.models import DelegatedRole
from roleguard.core.registry import RoleRegistry, default_registry
from roleguard.core.resolver import RoleResolver
from roleguard.rbac import Role
from roleguard.storage.database import Database

#: Fixed local time inside business hours, used by condition checks.
NOON = datetime(2024, 6, 3, 12, 0, 0)


@pytest.fixture
def make_delegated():
    """Factory for delegated roles; negative *hours* gives an expired grant."""

    def _make(role: Role = Role.ADMIN, *, n: int = 1, hours: int = 1) -> DelegatedRole:
        return DelegatedRole(
            role=role,
            n=n,
            expires=datetime.now(timezone.utc) + timedelta(hours=hours),
            granted_by="owner-1",
            team="team-1",
        )

    return _make


@pytest.fixture
def registry() -> RoleRegistry:
    """Strict registry built from the shipped role table."""
    return default_registry()


@pytest.fixture
def resolver(registry) -> RoleResolver:
    return RoleResolver(registry, app_domain="example.com", super_app_admins=["erik"])


@pytest.fixture
def evaluator(registry, resolver) -> PermissionEvaluator:
    return PermissionEvaluator(
        registry,
        resolver=resolver,
        conditions=ConditionEvaluator(clock=lambda: NOON),
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database for each test."""
    database = Database(tmp_path / "roleguard_test.db")
    await database.connect()
    yield database
    await database.close()
