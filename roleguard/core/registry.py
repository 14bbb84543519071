"""Immutable role table with startup-time completeness validation.

The registry is built once at process start and passed explicitly into the
resolver and evaluator. Every configuration mistake (unknown role, resource
or action literal, dangling ``allOf`` edge, missing role entry) surfaces as a
``RegistryError`` during construction rather than mid-request.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from roleguard.core.models import Principal, RoleConfig
from roleguard.exceptions import RegistryError, UnknownRoleError
from roleguard.rbac import ROLES_CONFIG, CRUDAction, Resource, Role

logger = logging.getLogger("roleguard.registry")


@runtime_checkable
class DynamicCheck(Protocol):
    """Runtime hook attached to a role for logic the static table cannot express.

    Called once per required action after the role's static grant matched;
    the role only satisfies the resource if every call returns ``True``.
    """

    def __call__(self, principal: Principal, resource: Resource, action: CRUDAction) -> bool: ...


class RoleRegistry:
    """Read-only mapping from each role to its configuration."""

    def __init__(
        self,
        configs: Mapping[Role, RoleConfig],
        *,
        dynamic_checks: Mapping[Role, DynamicCheck] | None = None,
        strict: bool = True,
    ) -> None:
        self._configs: Mapping[Role, RoleConfig] = MappingProxyType(dict(configs))
        self._dynamic_checks: Mapping[Role, DynamicCheck] = MappingProxyType(
            dict(dynamic_checks or {})
        )
        self.strict = strict
        self.validate()

    @classmethod
    def from_mapping(
        cls,
        raw: Mapping[str, Mapping[str, Any]],
        *,
        dynamic_checks: Mapping[Role, DynamicCheck] | None = None,
        strict: bool = True,
    ) -> RoleRegistry:
        """Parse a literal role table (``ROLES_CONFIG`` format)."""
        configs: dict[Role, RoleConfig] = {}
        for name, body in raw.items():
            try:
                role = Role(name)
            except ValueError:
                msg = f"Role table has an entry for unknown role '{name}'"
                raise UnknownRoleError(msg) from None
            try:
                configs[role] = RoleConfig.model_validate(body)
            except ValidationError as exc:
                msg = f"Invalid configuration for role '{name}': {exc}"
                raise RegistryError(msg) from exc
        return cls(configs, dynamic_checks=dynamic_checks, strict=strict)

    # --- Queries ---

    @property
    def roles(self) -> frozenset[Role]:
        return frozenset(self._configs)

    @property
    def dynamic_checks(self) -> Mapping[Role, DynamicCheck]:
        return self._dynamic_checks

    def __contains__(self, role: object) -> bool:
        return role in self._configs

    def get_config(self, role: Role) -> RoleConfig:
        try:
            return self._configs[role]
        except KeyError:
            msg = f"Role '{role}' has no entry in the role registry"
            raise UnknownRoleError(msg) from None

    def get_dynamic_check(self, role: Role) -> DynamicCheck | None:
        return self._dynamic_checks.get(role)

    # --- Validation ---

    def validate(self) -> None:
        """Check the table is complete and internally consistent.

        With ``strict`` every member of the closed ``Role`` enumeration must
        have an entry. In all modes, every ``allOf`` target and every
        dynamic-check key must name a configured role.
        """
        if self.strict:
            missing = [role.value for role in Role if role not in self._configs]
            if missing:
                msg = f"Role registry is missing entries for: {', '.join(missing)}"
                raise RegistryError(msg)

        for role, config in self._configs.items():
            for target in config.all_of:
                if target not in self._configs:
                    msg = f"Role '{role}' composes '{target}', which has no registry entry"
                    raise UnknownRoleError(msg)

        for role, check in self._dynamic_checks.items():
            if role not in self._configs:
                msg = f"Dynamic check attached to unconfigured role '{role}'"
                raise UnknownRoleError(msg)
            if not callable(check):
                msg = f"Dynamic check for role '{role}' is not callable"
                raise RegistryError(msg)

        logger.debug(
            "Role registry validated: %d roles, %d dynamic checks",
            len(self._configs),
            len(self._dynamic_checks),
        )


def default_registry(
    dynamic_checks: Mapping[Role, DynamicCheck] | None = None,
) -> RoleRegistry:
    """Build the strict registry from the static ``ROLES_CONFIG`` table."""
    return RoleRegistry.from_mapping(ROLES_CONFIG, dynamic_checks=dynamic_checks, strict=True)
