"""
IdentityRegistrar: create an account and start role reconciliation.

Why:
    "Signup succeeded" is what the user sees; "role reconciled" is a
    background concern. The registrar returns as soon as the identity exists
    and the pending intent is durable, and leaves convergence to the
    reconciler and later session bootstraps.

Security: Never log passwords or tokens.
"""
from __future__ import annotations

import re

import structlog

from .background import BackgroundRunner
from .domain import (
    DECLARABLE_ROLES,
    MIN_PASSWORD_LENGTH,
    Identity,
    IdentityCreationError,
)
from .intents import PendingIntentStore
from .ports import IdentityProvider, ProfileStoreFactory
from .reconciler import ProfileReconciler

logger = structlog.get_logger("campus.identity_access.registrar")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_registration(email: str, password: str, declared_role: str) -> str:
    """Return the normalized email or raise `IdentityCreationError`."""
    normalized = normalize_email(email)
    if not _EMAIL_RE.match(normalized):
        raise IdentityCreationError("invalid_email", "Please enter a valid email address")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise IdentityCreationError(
            "weak_password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if declared_role not in DECLARABLE_ROLES:
        raise IdentityCreationError("invalid_role", "Unsupported account type")
    return normalized


class IdentityRegistrar:
    def __init__(
        self,
        *,
        identities: IdentityProvider,
        intents: PendingIntentStore,
        reconciler: ProfileReconciler,
        profiles_for: ProfileStoreFactory,
        runner: BackgroundRunner,
    ) -> None:
        self._identities = identities
        self._intents = intents
        self._reconciler = reconciler
        self._profiles_for = profiles_for
        self._runner = runner

    async def register(self, email: str, password: str, declared_role: str) -> Identity:
        normalized = validate_registration(email, password, declared_role)
        identity, session = await self._identities.create_identity(
            email=normalized, password=password, metadata={"role": declared_role}
        )
        logger.info("identity_created", identity_id=identity.id, declared_role=declared_role)

        # Durable before we return: a closed tab must not lose the declaration.
        try:
            self._intents.set(identity.id, declared_role)
        except Exception as exc:
            # The identity exists; the immediate pass below still carries the role.
            logger.error("pending_intent_record_failed", identity_id=identity.id, error=str(exc))

        profiles = self._profiles_for(session)
        self._runner.spawn(
            self._reconciler.reconcile_eventually(identity.id, declared_role, profiles=profiles),
            name=f"reconcile:{identity.id}",
        )
        return identity


__all__ = ["IdentityRegistrar", "validate_registration", "normalize_email"]
