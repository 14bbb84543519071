"""FastAPI dependencies that gate routes on a permission requirement.

The session layer is expected to have placed a ``Principal`` on
``request.state.principal`` (absent means anonymous). The app provides the
evaluator and consumer through ``install_access_control``.

Usage::

    install_access_control(app, evaluator, consumer)

    @app.get("/billing", dependencies=[Depends(require_permission({"billing": "read"}))])
    async def billing(): ...
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from roleguard.core.consumer import DelegatedGrantConsumer
from roleguard.core.evaluator import PermissionEvaluator, normalize_requirement
from roleguard.core.models import PermissionRequirement, Principal, Verdict
from roleguard.exceptions import RoleGuardError

_audit_logger = logging.getLogger("roleguard.audit")


def install_access_control(
    app: FastAPI,
    evaluator: PermissionEvaluator,
    consumer: DelegatedGrantConsumer,
) -> None:
    """Attach the decision engine to *app* and register the error handler."""
    app.state.evaluator = evaluator
    app.state.consumer = consumer

    @app.exception_handler(RoleGuardError)
    async def roleguard_error_handler(request: Request, exc: RoleGuardError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_type, "message": exc.message},
        )


def _principal(request: Request) -> Principal | None:
    return getattr(request.state, "principal", None)


def _deny(request: Request, principal: Principal | None) -> HTTPException:
    _audit_logger.warning(
        "Permission denied: %s %s",
        request.method,
        request.url.path,
        extra={
            "event_category": "audit",
            "action": "permission_denied",
            "principal_id": principal.id if principal else None,
            "granted": False,
        },
    )
    if principal is None:
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authenticated.")
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied.")


def require_permission(requirement: PermissionRequirement):
    """Dependency factory for server-side route guards.

    Charges delegated role budget when the delegated channel granted access.
    """
    # Malformed requirements fail at import time, not per request.
    normalize_requirement(requirement)

    async def _check(request: Request) -> Verdict:
        consumer: DelegatedGrantConsumer = request.app.state.consumer
        principal = _principal(request)
        verdict = await consumer.consume(principal, requirement)
        if not verdict:
            raise _deny(request, principal)
        request.state.verdict = verdict
        return verdict

    return _check


def check_permission(requirement: PermissionRequirement):
    """Dependency factory returning the verdict without consuming budget.

    For read-only contexts such as feature flags sent to the UI.
    """
    normalize_requirement(requirement)

    async def _check(request: Request) -> Verdict:
        evaluator: PermissionEvaluator = request.app.state.evaluator
        return evaluator.evaluate(_principal(request), requirement)

    return _check
