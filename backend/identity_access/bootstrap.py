"""
SessionBootstrapper: load the profile for a new session and repair roles.

Runs on every session establishment (sign-in, token refresh, app start with an
existing session). When a pending role intent exists for the identity, a
repair pass is run so a divergent role converges without user action.

Session-scoped state:
    `ActiveProfile` holds the profile a client currently shows. Each session
    gets a `SessionScope` token; results produced for a scope that has since
    been closed (sign-out) or replaced (another sign-in) are discarded.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

import structlog

from .domain import AuthenticationError, AuthSession, Identity, Profile, ReconcileResult
from .intents import PendingIntentStore
from .ports import IdentityProvider, ProfileStoreFactory
from .reconciler import ProfileReconciler

logger = structlog.get_logger("campus.identity_access.bootstrap")


class SessionScope:
    """Cancellation token keyed by session id and identity id."""

    def __init__(self, *, session_id: str, identity_id: str) -> None:
        self.session_id = session_id
        self.identity_id = identity_id
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return f"SessionScope(session_id={self.session_id!r}, identity_id={self.identity_id!r}, active={self.active})"


class ActiveProfile:
    """The in-memory profile of the current session."""

    def __init__(self) -> None:
        self.scope: Optional[SessionScope] = None
        self.profile: Optional[Profile] = None

    def begin(self, session: AuthSession, *, session_id: str | None = None) -> SessionScope:
        if self.scope is not None:
            self.scope.close()
        self.scope = SessionScope(
            session_id=session_id or secrets.token_urlsafe(16), identity_id=session.identity.id
        )
        self.profile = None
        return self.scope

    def apply(self, scope: Optional[SessionScope], profile: Optional[Profile]) -> bool:
        if scope is None or scope is not self.scope or not scope.active:
            logger.info(
                "stale_profile_discarded",
                identity_id=scope.identity_id if scope else None,
            )
            return False
        if profile is not None and profile.id != scope.identity_id:
            logger.warning("profile_identity_mismatch", identity_id=scope.identity_id)
            return False
        self.profile = profile
        return True

    def end(self) -> None:
        """Sign-out: forget the profile; pending intents are not touched."""
        if self.scope is not None:
            self.scope.close()
        self.scope = None
        self.profile = None


@dataclass(frozen=True)
class BootstrapResult:
    identity: Identity
    profile: Optional[Profile]
    repair: Optional[ReconcileResult] = None
    applied: bool = True


class SessionBootstrapper:
    def __init__(
        self,
        *,
        identities: IdentityProvider,
        intents: PendingIntentStore,
        reconciler: ProfileReconciler,
        profiles_for: ProfileStoreFactory,
    ) -> None:
        self._identities = identities
        self._intents = intents
        self._reconciler = reconciler
        self._profiles_for = profiles_for

    async def bootstrap(self, session: AuthSession, *, view: ActiveProfile | None = None) -> BootstrapResult:
        scope = view.scope if view is not None else None
        identity = await self._identities.get_current_user(session.access_token)
        if identity is None:
            raise AuthenticationError("session_invalid")
        log = logger.bind(identity_id=identity.id)

        profiles = self._profiles_for(session)
        try:
            profile = await profiles.read_profile(identity.id)
        except Exception as exc:
            log.error("bootstrap_profile_read_failed", error=str(exc))
            profile = None

        repair: Optional[ReconcileResult] = None
        try:
            pending = self._intents.get(identity.id)
        except Exception as exc:
            log.error("pending_intent_read_failed", error=str(exc))
            pending = None
        if pending:
            log.info("repair_pass_started", declared_role=pending)
            repair = await self._reconciler.reconcile(identity.id, pending, profiles=profiles)
            if repair.profile is not None:
                profile = repair.profile

        applied = True
        if view is not None:
            applied = view.apply(scope, profile)
        return BootstrapResult(identity=identity, profile=profile, repair=repair, applied=applied)


__all__ = ["SessionScope", "ActiveProfile", "BootstrapResult", "SessionBootstrapper"]
