"""Tests for the FastAPI route guards.

The session layer is simulated by a middleware that reads a JSON principal
snapshot from the ``X-Principal`` header.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from roleguard.api.guards import check_permission, install_access_control, require_permission
from roleguard.core.consumer import DelegatedGrantConsumer
from roleguard.core.models import Principal, Verdict
from roleguard.exceptions import InvalidRequirementError, UnknownResourceError
from roleguard.rbac import Role


def build_app(evaluator, db) -> FastAPI:
    app = FastAPI()
    install_access_control(
        app, evaluator, DelegatedGrantConsumer(evaluator, db, timeout=1.0, retries=0)
    )

    @app.middleware("http")
    async def session_layer(request: Request, call_next):
        raw = request.headers.get("X-Principal")
        if raw:
            request.state.principal = Principal.model_validate_json(raw)
        return await call_next(request)

    @app.get("/billing")
    async def billing(verdict: Verdict = Depends(require_permission({"billing": "read"}))):
        return {"used_delegated_role": verdict.used_delegated_role}

    @app.post("/errors")
    async def log_error(verdict: Verdict = Depends(require_permission({"logErrors": "create"}))):
        return {"ok": True}

    @app.get("/features")
    async def features(
        billing: Verdict = Depends(check_permission({"billing": "read"})),
        teams: Verdict = Depends(check_permission({"teams": "read"})),
    ):
        return {"billing": billing.granted, "teams": teams.granted}

    @app.get("/broken")
    async def broken(request: Request):
        request.app.state.evaluator.evaluate(None, "rockets")

    return app


def header(principal: Principal) -> dict[str, str]:
    return {"X-Principal": principal.model_dump_json(by_alias=True)}


@pytest_asyncio.fixture
async def client(evaluator, db):
    transport = ASGITransport(app=build_app(evaluator, db))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestRequirePermission:
    async def test_primary_role_allowed(self, client):
        resp = await client.get("/billing", headers=header(Principal(id="a", role=Role.ADMIN)))
        assert resp.status_code == 200
        assert resp.json() == {"used_delegated_role": False}

    async def test_denied(self, client):
        resp = await client.get("/billing", headers=header(Principal(id="c", role=Role.CLIENT)))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Permission denied."

    async def test_anonymous_denied(self, client):
        resp = await client.get("/billing")
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Not authenticated."

    async def test_anonymous_allowed_where_un_authed_may(self, client):
        resp = await client.post("/errors")
        assert resp.status_code == 200

    async def test_delegated_access_consumes_budget(self, client, db, make_delegated):
        principal = Principal(id="c1", role=Role.CLIENT, delegated_role=make_delegated(n=1))
        await db.upsert_principal(principal)

        resp = await client.get("/billing", headers=header(principal))
        assert resp.status_code == 200
        assert resp.json() == {"used_delegated_role": True}
        assert (await db.get_delegated_role("c1")).n == 0

        # Session layer reloads the principal on the next request.
        reloaded = await db.get_principal("c1")
        resp = await client.get("/billing", headers=header(reloaded))
        assert resp.status_code == 403


class TestCheckPermission:
    async def test_reports_without_consuming(self, client, db, make_delegated):
        principal = Principal(id="c2", role=Role.CLIENT, delegated_role=make_delegated(n=1))
        await db.upsert_principal(principal)

        for _ in range(2):
            resp = await client.get("/features", headers=header(principal))
            assert resp.status_code == 200
            assert resp.json() == {"billing": True, "teams": True}
        assert (await db.get_delegated_role("c2")).n == 1

    async def test_anonymous(self, client):
        resp = await client.get("/features")
        assert resp.json() == {"billing": False, "teams": False}


class TestErrors:
    async def test_programmer_error_rendered(self, client):
        resp = await client.get("/broken")
        assert resp.status_code == 500
        assert resp.json()["error"] == "unknown_resource"

    def test_malformed_requirement_fails_at_definition(self):
        with pytest.raises(UnknownResourceError):
            require_permission("rockets")
        with pytest.raises(InvalidRequirementError):
            check_permission({"docs": "launch"})
