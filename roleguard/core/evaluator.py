"""Permission decision function.

Combines a principal's primary role closure and, as a fallback, the closure
of a still-valid delegated role, and decides whether every requested
``(resource, actions)`` pair is allowed.

Ordering rules:
    1. Primary roles are tried first, with role-level conditions enforced.
    2. The delegated channel is tried only for resources the primary roles
       could not satisfy. It skips role-level and grant-level conditions
       (the delegation itself was the explicit decision) but not the
       conditions attached to the requirement.
    3. Every requested resource must pass; the first failure denies.

The evaluator is pure: it never consumes delegated budget. Server-side
callers that must charge the budget go through ``DelegatedGrantConsumer``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone

from pydantic import ValidationError

from roleguard.core.conditions import ConditionEvaluator
from roleguard.core.models import (
    DENIED,
    PermissionGrant,
    PermissionRequirement,
    Principal,
    Verdict,
)
from roleguard.core.registry import RoleRegistry
from roleguard.core.resolver import RoleResolver
from roleguard.exceptions import InvalidRequirementError, UnknownResourceError
from roleguard.rbac import CRUDAction, Resource, Role

logger = logging.getLogger("roleguard.evaluator")


def _parse_resource(name: str) -> Resource:
    try:
        return Resource(name)
    except ValueError:
        msg = f"Unknown resource '{name}'"
        raise UnknownResourceError(msg) from None


def normalize_requirement(
    requirement: PermissionRequirement,
) -> dict[Resource, PermissionGrant]:
    """Turn a call-site requirement into ``{resource: grant}``.

    A bare resource name becomes ``{resource: "*"}``; ``None`` or an empty
    mapping becomes an empty dict (vacuously satisfied).
    """
    if requirement is None or requirement == "":
        return {}
    if isinstance(requirement, str):
        return {_parse_resource(requirement): PermissionGrant(actions=(CRUDAction.WILDCARD,))}
    if not isinstance(requirement, Mapping):
        msg = (
            "Permission requirement must be a resource name or a mapping of "
            f"resource to actions, got {type(requirement).__name__}"
        )
        raise InvalidRequirementError(msg)
    normalized: dict[Resource, PermissionGrant] = {}
    for name, spec in requirement.items():
        resource = _parse_resource(name)
        try:
            normalized[resource] = PermissionGrant.model_validate(spec)
        except ValidationError as exc:
            msg = f"Invalid required actions for resource '{name}': {exc}"
            raise InvalidRequirementError(msg) from exc
    return normalized


class PermissionEvaluator:
    """Decides allow/deny for a principal against a permission requirement."""

    def __init__(
        self,
        registry: RoleRegistry,
        *,
        resolver: RoleResolver | None = None,
        conditions: ConditionEvaluator | None = None,
        utcnow: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.resolver = resolver or RoleResolver(registry)
        self.conditions = conditions or ConditionEvaluator()
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    def delegated_roles(self, principal: Principal) -> frozenset[Role]:
        """Closure of the delegated role, or empty if it is missing or inert."""
        delegated = principal.delegated_role
        if delegated is None or not delegated.is_active(self._utcnow()):
            return frozenset()
        return self.resolver.expand(delegated.role)

    def check_role_set(
        self,
        roles: Iterable[Role],
        resource: Resource,
        required: Sequence[CRUDAction],
        principal: Principal,
        *,
        enforce_role_conditions: bool,
    ) -> bool:
        """True if any role in *roles* grants every *required* action on *resource*."""
        for role in roles:
            config = self.registry.get_config(role)
            if enforce_role_conditions and not self.conditions(config.conditions, principal):
                continue
            grant = config.permissions.get(resource)
            if grant is None:
                continue
            if enforce_role_conditions and not self.conditions(grant.conditions, principal):
                continue
            if not grant.allows(required):
                continue
            check = self.registry.get_dynamic_check(role)
            if check is not None and not all(
                check(principal, resource, action) for action in required
            ):
                continue
            return True
        return False

    def evaluate(
        self,
        principal: Principal | None,
        requirement: PermissionRequirement,
    ) -> Verdict:
        required = normalize_requirement(requirement)
        if not required:
            return Verdict(granted=True, used_delegated_role=False)

        if principal is None:
            principal = Principal.anonymous()

        primary = self.resolver.resolve_principal_roles(principal)
        delegated = self.delegated_roles(principal)
        if not primary and not delegated:
            self._log_denial(principal, None, "no roles")
            return DENIED

        used_delegated_role = False
        for resource, grant in required.items():
            allowed = self.check_role_set(
                primary, resource, grant.actions, principal, enforce_role_conditions=True
            )
            if not allowed and delegated:
                allowed = self.check_role_set(
                    delegated, resource, grant.actions, principal, enforce_role_conditions=False
                )
                if allowed:
                    used_delegated_role = True

            if not allowed:
                self._log_denial(principal, resource, "no role grants the requested actions")
                return DENIED

            if grant.conditions is not None and not self.conditions(grant.conditions, principal):
                self._log_denial(principal, resource, "requirement conditions not met")
                return DENIED

        logger.debug(
            "Access granted",
            extra={
                "principal_id": principal.id,
                "resource": ",".join(r.value for r in required),
                "granted": True,
                "used_delegated_role": used_delegated_role,
            },
        )
        return Verdict(granted=True, used_delegated_role=used_delegated_role)

    def has_permission(
        self,
        principal: Principal | None,
        requirement: PermissionRequirement,
    ) -> bool:
        return bool(self.evaluate(principal, requirement))

    def _log_denial(self, principal: Principal, resource: Resource | None, reason: str) -> None:
        logger.debug(
            "Access denied: %s",
            reason,
            extra={
                "principal_id": principal.id,
                "resource": resource.value if resource else None,
                "granted": False,
            },
        )
