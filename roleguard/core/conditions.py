"""Business-rule conditions gating roles and individual grants.

Only the fixed condition set is supported: subscription, office
subscription, and a half-open window of local hours. Every key that is set
must hold; keys left unset never fail.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from roleguard.core.models import ConditionSet, Principal

Clock = Callable[[], datetime]


def office_has_extended_trial(office: dict[str, Any] | None) -> bool:
    if not office:
        return False
    custom = office.get("custom") or {}
    return custom.get("trial") == "Extended"


def office_has_external_payment_subscription(office: dict[str, Any] | None) -> bool:
    """Paid outside the platform, or on an enterprise contract."""
    if not office:
        return False
    custom = office.get("custom") or {}
    return bool(custom.get("externalPaymentSubscription")) or bool(custom.get("enterprise"))


def office_has_trial_or_enterprise(office: dict[str, Any] | None) -> bool:
    return office_has_extended_trial(office) or office_has_external_payment_subscription(office)


def user_has_subscription(principal: Principal | None) -> bool:
    """Explicit subscription flag, or membership in a trial/enterprise office."""
    if principal is None:
        return False
    if principal.has_valid_subscription:
        return True
    return office_has_trial_or_enterprise(principal.office)


def user_has_office_subscription(principal: Principal | None) -> bool:
    # No trial fallback here, unlike user_has_subscription.
    if principal is None:
        return False
    return principal.office_has_valid_subscription


def meets_conditions(
    conditions: ConditionSet | None,
    principal: Principal | None,
    *,
    now: datetime | None = None,
) -> bool:
    """Return True if every condition that is set holds for *principal*.

    The hour window is evaluated against *now* (default: the current local
    time), read on every call.
    """
    if conditions is None:
        return True
    if conditions.has_subscription and not user_has_subscription(principal):
        return False
    if conditions.has_office_subscription and not user_has_office_subscription(principal):
        return False
    if conditions.allowed_between_hours is not None:
        start, end = conditions.allowed_between_hours
        hour = (now or datetime.now()).hour
        if hour < start or hour >= end:
            return False
    return True


class ConditionEvaluator:
    """``meets_conditions`` bound to an injectable clock."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or datetime.now

    def __call__(self, conditions: ConditionSet | None, principal: Principal | None) -> bool:
        if conditions is None:
            return True
        return meets_conditions(conditions, principal, now=self._clock())
