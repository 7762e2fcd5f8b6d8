"""
Ports consumed by the identity provisioning engine.

Keep these small and framework-agnostic so tests can supply simple fakes and
the Supabase adapters stay the only place that knows about the SDK.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Protocol

from .domain import AuthSession, Identity, Profile


class IdentityProvider(Protocol):
    """External auth subsystem (accounts, credentials, sessions).

    Implementations raise `IdentityCreationError` from `create_identity` and
    `AuthenticationError` from `sign_in`/`refresh`.
    """

    async def create_identity(
        self, *, email: str, password: str, metadata: Mapping[str, Any]
    ) -> tuple[Identity, Optional[AuthSession]]: ...

    async def sign_in(self, *, email: str, password: str) -> AuthSession: ...

    async def refresh(self, refresh_token: str) -> AuthSession: ...

    async def sign_out(self, access_token: str) -> None: ...

    async def get_current_user(self, access_token: str) -> Optional[Identity]: ...


class ProfileStore(Protocol):
    """Profile rows as seen by one session (row-level rules apply).

    Writes raise `WritePermissionDenied` when rejected by ownership rules and
    `UnknownPersistenceError` for any other failure. A write that silently
    affects no row is not an error; callers verify by reading back.
    """

    async def read_profile(self, identity_id: str) -> Optional[Profile]: ...

    async def update_role(self, identity_id: str, role: str) -> None: ...

    async def upsert_profile(self, *, identity_id: str, email: str, role: str) -> None: ...


class PrivilegedRoleAssigner(Protocol):
    """Trusted role assignment that bypasses row-level rules.

    Permissions:
        Backed by the service role; never expose to untrusted callers.
    """

    async def assign_role(self, identity_id: str, role: str) -> None: ...


# Builds the profile store a session sees (anonymous when the session is None).
ProfileStoreFactory = Callable[[Optional[AuthSession]], "ProfileStore"]


class IntentBackend(Protocol):
    """Durable string key-value medium used by `PendingIntentStore`."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


__all__ = [
    "IdentityProvider",
    "ProfileStore",
    "ProfileStoreFactory",
    "PrivilegedRoleAssigner",
    "IntentBackend",
]
