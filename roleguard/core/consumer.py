"""Server-side permission check that charges delegated role budget.

This is the only component with a side effect. It calls the pure
evaluator and, only when the delegated channel produced the grant,
decrements the grant's remaining-use counter in the principal store.

A failed write never revokes the grant already computed for the current
request. The failure is logged on the audit logger and the counter is left
unchanged. Retries reuse one idempotency key per consumption, so a write
that succeeded but reported failure is not applied twice.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from roleguard.config import settings
from roleguard.core.evaluator import PermissionEvaluator
from roleguard.core.models import PermissionRequirement, Principal, Verdict
from roleguard.exceptions import StorageError
from roleguard.storage.base import DelegatedUsageStore

logger = logging.getLogger("roleguard.consumer")
_audit_logger = logging.getLogger("roleguard.audit")


class DelegatedGrantConsumer:
    """Evaluate, then persist one delegated use when that channel was used."""

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        store: DelegatedUsageStore,
        *,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.store = store
        self.timeout = timeout if timeout is not None else settings.persist_timeout_seconds
        self.retries = retries if retries is not None else settings.persist_retries

    async def consume(
        self,
        principal: Principal | None,
        requirement: PermissionRequirement,
    ) -> Verdict:
        verdict = self.evaluator.evaluate(principal, requirement)
        if not verdict.granted or not verdict.used_delegated_role or principal is None:
            return verdict

        if principal.id is None:
            logger.warning(
                "Delegated role used by a principal without an id; usage not recorded",
                extra={"used_delegated_role": True},
            )
            return verdict

        await self._record_usage(principal.id)
        return verdict

    async def _record_usage(self, principal_id: str) -> bool:
        """Persist one delegated use. Returns True if the counter was decremented."""
        request_id = str(uuid4())
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                decremented = await asyncio.wait_for(
                    self.store.decrement_delegated_role_usage(
                        principal_id, request_id=request_id
                    ),
                    timeout=self.timeout,
                )
            except (StorageError, TimeoutError) as exc:
                logger.warning(
                    "Delegated usage write failed (attempt %d/%d): %r",
                    attempt,
                    attempts,
                    exc,
                    extra={"principal_id": principal_id, "request_id": request_id},
                )
                continue

            if decremented:
                _audit_logger.info(
                    "Delegated role use recorded for %s",
                    principal_id,
                    extra={
                        "event_category": "audit",
                        "action": "delegated_role_consumed",
                        "principal_id": principal_id,
                        "request_id": request_id,
                        "used_delegated_role": True,
                    },
                )
            else:
                # Budget was spent between evaluation and the write.
                _audit_logger.warning(
                    "Delegated role use by %s not charged; no remaining uses in store",
                    principal_id,
                    extra={
                        "event_category": "audit",
                        "action": "delegated_role_budget_exhausted",
                        "principal_id": principal_id,
                        "request_id": request_id,
                        "used_delegated_role": True,
                    },
                )
            return decremented

        _audit_logger.error(
            "Delegated usage not recorded for %s after %d attempts; access already granted",
            principal_id,
            attempts,
            extra={
                "event_category": "audit",
                "action": "delegated_role_consume_failed",
                "principal_id": principal_id,
                "request_id": request_id,
            },
        )
        return False
