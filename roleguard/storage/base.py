"""Outbound persistence boundary for delegated grant consumption."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class DelegatedUsageStore(Protocol):
    """Protocol that principal stores must implement to charge delegated budget."""

    async def decrement_delegated_role_usage(
        self, principal_id: str, *, request_id: str | None = None
    ) -> bool:
        """Atomically decrement the remaining-use counter by one.

        Must be a no-op when the counter is already ``<= 0``. When
        *request_id* is given, a repeated call with the same id must not
        decrement again and returns the outcome of the first call. Returns
        ``True`` if the use was charged.
        """
        ...
