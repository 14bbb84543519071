"""Transitive role expansion over ``allOf`` composition edges."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from roleguard.config import settings
from roleguard.core.models import Principal
from roleguard.core.registry import RoleRegistry
from roleguard.rbac import Role


def email_is_super_app_admin(
    email: str | None,
    domain: str | None,
    allow_list: Sequence[str],
) -> bool:
    """Check *email* against the domain-scoped super admin allow-list.

    The domain part must equal *domain* exactly, and the local part, with
    any ``+alias`` suffix stripped, must be on *allow_list*.
    """
    if not email or not domain or not allow_list:
        return False
    parts = email.strip().lower().split("@")
    if len(parts) != 2:
        return False
    local, email_domain = parts
    if email_domain != domain.lower():
        return False
    local = local.split("+", 1)[0]
    if not local:
        return False
    return local in {entry.lower() for entry in allow_list}


class RoleResolver:
    """Expands roles into their closure under the registry's ``allOf`` edges."""

    def __init__(
        self,
        registry: RoleRegistry,
        *,
        app_domain: str | None = None,
        super_app_admins: Sequence[str] | None = None,
    ) -> None:
        self.registry = registry
        self.app_domain = app_domain if app_domain is not None else settings.app_domain
        self.super_app_admins = (
            list(super_app_admins)
            if super_app_admins is not None
            else settings.super_app_admin_list
        )

    def expand(self, role: Role) -> frozenset[Role]:
        """Return *role* plus every role reachable through ``allOf``.

        Each role is expanded at most once, so cyclic tables terminate.
        """
        visited: set[Role] = set()
        stack = [role]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            config = self.registry.get_config(current)
            stack.extend(r for r in reversed(config.all_of) if r not in visited)
        return frozenset(visited)

    def expand_all(self, roles: Iterable[Role]) -> frozenset[Role]:
        closure: set[Role] = set()
        for role in roles:
            if role not in closure:
                closure |= self.expand(role)
        return frozenset(closure)

    def resolve_principal_roles(self, principal: Principal) -> frozenset[Role]:
        """Closure of the principal's primary role, plus SuperAppAdmin by e-mail."""
        roles: list[Role] = [principal.role] if principal.role else []
        if email_is_super_app_admin(principal.email, self.app_domain, self.super_app_admins):
            roles.append(Role.SUPER_APP_ADMIN)
        return self.expand_all(roles)

    def has_role(self, principal: Principal | None, role: Role) -> bool:
        """True if *role* is in the principal's primary closure."""
        if principal is None:
            return False
        return role in self.resolve_principal_roles(principal)
