"""Custom exception hierarchy for roleguard.

Ordinary access denial is a return value, never one of these. These types
cover configuration mistakes (fatal, raised at startup) and persistence
failures (recoverable, handled by the delegated grant consumer).
"""

from __future__ import annotations


class RoleGuardError(Exception):
    """Base exception for all roleguard errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class RegistryError(RoleGuardError):
    """The static role table is incomplete or malformed."""

    error_type = "registry_error"


class UnknownRoleError(RegistryError):
    """A role was referenced that has no registry entry."""

    error_type = "unknown_role"


class UnknownResourceError(RegistryError):
    """A resource name outside the closed resource enumeration was used."""

    error_type = "unknown_resource"


class StorageError(RoleGuardError):
    """Database or storage layer failure."""

    status_code = 503
    error_type = "storage_error"


class InvalidRequirementError(RoleGuardError):
    """A call site passed a malformed permission requirement."""

    status_code = 400
    error_type = "invalid_requirement"
