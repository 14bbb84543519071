"""Domain models for the access-control decision engine.

- ConditionSet: business-rule predicates gating a role or a single grant
- PermissionGrant: the actions a role may perform on one resource
- RoleConfig: one entry of the static role table
- DelegatedRole: temporary, usage-budgeted elevation attached to a principal
- Principal: the per-request snapshot being evaluated
- Verdict: the evaluator's answer
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from roleguard.rbac import CRUDAction, Resource, Role

#: What call sites pass in: nothing, a bare resource name, or a map of
#: resource -> required actions (same literal forms as a grant).
PermissionRequirement = str | Mapping[str, Any] | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Conditions and grants
# ---------------------------------------------------------------------------


class ConditionSet(BaseModel):
    """Implicit AND over the keys that are set; unset keys never fail."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    has_subscription: bool | None = Field(default=None, alias="hasSubscription")
    has_office_subscription: bool | None = Field(default=None, alias="hasOfficeSubscription")
    allowed_between_hours: tuple[int, int] | None = Field(
        default=None,
        alias="allowedBetweenHours",
        description="Half-open [start, end) window of local hours",
    )

    @field_validator("allowed_between_hours")
    @classmethod
    def validate_hours(cls, v: tuple[int, int] | None) -> tuple[int, int] | None:
        if v is None:
            return v
        start, end = v
        if not 0 <= start <= end <= 24:
            msg = f"allowedBetweenHours must satisfy 0 <= start <= end <= 24, got {list(v)}"
            raise ValueError(msg)
        return v


class PermissionGrant(BaseModel):
    """Actions allowed (or required) on one resource, with optional conditions.

    Parses the three literal forms used in the role table and in
    requirements: ``"read"``, ``["create", "read"]`` and
    ``{"permissions": [...], "conditions": {...}}``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    actions: tuple[CRUDAction, ...]
    conditions: ConditionSet | None = None

    @model_validator(mode="before")
    @classmethod
    def _parse_literal(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"actions": (data,)}
        if isinstance(data, (list, tuple)):
            return {"actions": tuple(data)}
        if isinstance(data, Mapping) and "permissions" in data:
            perms = data["permissions"]
            if isinstance(perms, str):
                perms = (perms,)
            return {"actions": tuple(perms), "conditions": data.get("conditions")}
        return data

    def allows(self, required: Iterable[CRUDAction]) -> bool:
        """True if every required action is listed, or the grant is a wildcard."""
        if CRUDAction.WILDCARD in self.actions:
            return True
        return all(action in self.actions for action in required)


ResourcePermissions = dict[Resource, PermissionGrant]


class RoleConfig(BaseModel):
    """Static configuration of one role."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    all_of: tuple[Role, ...] = Field(default=(), alias="allOf")
    permissions: ResourcePermissions = Field(default_factory=dict)
    # Reserved: stored and validated, not applied by the evaluator.
    excluded_permissions: ResourcePermissions = Field(
        default_factory=dict, alias="excludedPermissions"
    )
    conditions: ConditionSet | None = None
    # Reserved: per-context overrides, stored and validated only.
    contextual_permissions: dict[str, ResourcePermissions] = Field(
        default_factory=dict, alias="contextualPermissions"
    )

    @field_validator("all_of", mode="before")
    @classmethod
    def _wrap_single_role(cls, v: Any) -> Any:
        if isinstance(v, str):
            return (v,)
        return v


# ---------------------------------------------------------------------------
# Principal snapshot
# ---------------------------------------------------------------------------


class DelegatedRole(BaseModel):
    """A time-boxed, usage-budgeted role grant independent of the primary role."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Role
    expires: datetime
    n: int = Field(description="Remaining uses")
    granted_by: str = Field(default="", alias="grantedBy")
    team: str = ""
    # Stored only; the evaluator does not narrow grants by it.
    limit_to_resources: str | dict[str, Any] | None = Field(
        default=None, alias="limitToResources"
    )

    @field_validator("expires")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        return now >= self.expires

    def is_active(self, now: datetime | None = None) -> bool:
        """Usable only while budget remains and the expiry has not passed."""
        return self.n > 0 and not self.is_expired(now)


class Principal(BaseModel):
    """Already-authenticated (or anonymous) subject handed in by the session layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str | None = None
    role: Role | None = None
    email: str | None = None
    delegated_role: DelegatedRole | None = Field(default=None, alias="delegatedRole")
    has_valid_subscription: bool = Field(default=False, alias="hasValidSubscription")
    office_has_valid_subscription: bool = Field(
        default=False, alias="officeHasValidSubscription"
    )
    office: dict[str, Any] | None = None

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(role=Role.UN_AUTHED)


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Verdict:
    """Outcome of a permission check. Truthy iff access is granted."""

    granted: bool
    used_delegated_role: bool = False

    def __bool__(self) -> bool:
        return self.granted


DENIED = Verdict(granted=False)
