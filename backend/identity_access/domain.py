"""
Identity domain constants, records and the error taxonomy.

Why:
- Centralize the closed role set to avoid drift between the registrar, the
  reconciler and the web layer.
- Keep the records the reconciliation engine passes around small, immutable
  and free of any Supabase SDK types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Keep roles explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset(
    {
        "student",
        "vendor",
        "admin",
        "super_admin",
        "vendor_manager",
        "marketplace_moderator",
        "user_support_admin",
        "analytics_manager",
        "content_manager",
        "cashier",
    }
)

# Roles a signup or the privileged update route may declare.
DECLARABLE_ROLES = frozenset({"student", "vendor", "admin"})

# Role the materialization trigger assigns to fresh profile rows.
DEFAULT_ROLE = "student"

# Roles permitted to reassign other users' roles.
ROLE_ADMINS = frozenset({"admin", "super_admin"})

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    created_at: Optional[str] = None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str
    identity: Identity
    expires_at: Optional[int] = None


@dataclass(frozen=True)
class Profile:
    id: str
    email: str
    role: str
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        known = {"id", "email", "role", "updated_at"}
        return cls(
            id=str(row["id"]),
            email=str(row.get("email") or ""),
            role=str(row.get("role") or DEFAULT_ROLE),
            updated_at=row.get("updated_at"),
            extra={k: v for k, v in row.items() if k not in known},
        )


class ConvergenceOutcome(str, Enum):
    CONVERGED = "converged"
    DIVERGED = "diverged"
    PROFILE_MISSING = "profile_missing"


@dataclass(frozen=True)
class ReconcileResult:
    identity_id: str
    declared_role: str
    outcome: ConvergenceOutcome
    strategy: Optional[str] = None
    writes: int = 0
    attempted: Tuple[str, ...] = ()
    profile: Optional[Profile] = None

    @property
    def converged(self) -> bool:
        return self.outcome is ConvergenceOutcome.CONVERGED


class IdentityAccessError(Exception):
    """Base class for identity provisioning failures."""


class IdentityCreationError(IdentityAccessError):
    """Signup failed; surfaced to the user, no pending intent is recorded.

    `code` is a stable machine-readable reason (e.g. ``duplicate_email``).
    """

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class AuthenticationError(IdentityAccessError):
    """Sign-in or token refresh was rejected by the identity provider."""


class ProfileNotYetCreated(IdentityAccessError):
    """The materialization trigger has not produced the profile row yet."""


class WritePermissionDenied(IdentityAccessError):
    """A write strategy was rejected by ownership or row-level rules."""


class UnknownPersistenceError(IdentityAccessError):
    """Any other I/O failure against the profile store."""


def is_valid_role(role: object) -> bool:
    return isinstance(role, str) and role in ALLOWED_ROLES


__all__ = [
    "ALLOWED_ROLES",
    "DECLARABLE_ROLES",
    "DEFAULT_ROLE",
    "ROLE_ADMINS",
    "MIN_PASSWORD_LENGTH",
    "Identity",
    "AuthSession",
    "Profile",
    "ConvergenceOutcome",
    "ReconcileResult",
    "IdentityAccessError",
    "IdentityCreationError",
    "AuthenticationError",
    "ProfileNotYetCreated",
    "WritePermissionDenied",
    "UnknownPersistenceError",
    "is_valid_role",
]
