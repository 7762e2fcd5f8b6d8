"""
Supabase adapters for the identity provisioning ports.

Design:
- Auth calls use a short-lived anon client per operation, closed on exit, so
  no session state leaks between requests through a shared client.
- Profile reads/writes run as the signed-in user (PostgREST authorised with
  the user's access token) so row-level rules apply exactly as they would for
  the dashboard client.
- Privileged role assignment uses the service-role client (bypasses RLS).

Security:
- Do not log credentials or tokens.
- The service role key must only be configured server-side.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from .domain import (
    AuthenticationError,
    AuthSession,
    Identity,
    IdentityCreationError,
    Profile,
    UnknownPersistenceError,
    WritePermissionDenied,
)

logger = structlog.get_logger("campus.identity_access.supabase")

PROFILES_TABLE = "profiles"

# insufficient_privilege (RLS rejection) and PostgREST JWT errors.
_DENIED_CODES = {"42501", "PGRST301", "PGRST302", "401", "403"}


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _options() -> AsyncClientOptions:
    return AsyncClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        postgrest_client_timeout=30,
    )


def _identity_from_user(user: Any) -> Identity:
    created = getattr(user, "created_at", None)
    return Identity(
        id=str(user.id),
        email=str(getattr(user, "email", "") or ""),
        created_at=created.isoformat() if hasattr(created, "isoformat") else (str(created) if created else None),
    )


def _session_from_response(response: Any) -> Optional[AuthSession]:
    session = getattr(response, "session", None)
    user = getattr(response, "user", None) or getattr(session, "user", None)
    if session is None or user is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        identity=_identity_from_user(user),
        expires_at=getattr(session, "expires_at", None),
    )


def _map_signup_error(message: str) -> IdentityCreationError:
    """Map provider messages to stable codes for the web layer."""
    low = (message or "").lower()
    if "already registered" in low or "already exists" in low:
        return IdentityCreationError("duplicate_email", "This email address is already registered")
    if "password" in low and ("weak" in low or "at least" in low or "short" in low):
        return IdentityCreationError("weak_password", "Password does not meet the minimum requirements")
    if "rate limit" in low:
        return IdentityCreationError("rate_limited", "Too many signup attempts. Please try again later")
    if "invalid" in low and "email" in low:
        return IdentityCreationError("invalid_email", "Please enter a valid email address")
    return IdentityCreationError("unavailable", "Registration is currently unavailable")


def _translate_api_error(exc: Exception, *, action: str) -> Exception:
    code = str(getattr(exc, "code", "") or "")
    if isinstance(exc, APIError) and code in _DENIED_CODES:
        return WritePermissionDenied(f"{action}_denied:{code}")
    return UnknownPersistenceError(f"{action}_failed:{code or type(exc).__name__}")


async def _close_quietly(closer: Callable[[], Awaitable[Any]], *, part: str) -> None:
    try:
        await closer()
    except Exception as exc:
        logger.warning("supabase_client_close_failed", part=part, error=str(exc))


class SupabaseGateway:
    """Creates Supabase clients for the configured project.

    Per-call clients are scoped with ``async with`` and closed on exit; only
    the service-role client is cached, and ``aclose()`` releases it.
    """

    def __init__(self, *, url: str, anon_key: str, service_role_key: str | None = None) -> None:
        self.url = url
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._service_client: Optional[AsyncClient] = None

    @property
    def has_service_role(self) -> bool:
        return bool(self._service_role_key)

    @asynccontextmanager
    async def anon(self) -> AsyncIterator[AsyncClient]:
        client = await acreate_client(self.url, self._anon_key, options=_options())
        try:
            yield client
        finally:
            await _close_quietly(client.auth.close, part="auth")

    @asynccontextmanager
    async def as_user(self, access_token: str | None) -> AsyncIterator[AsyncClient]:
        async with self.anon() as client:
            if access_token:
                client.postgrest.auth(access_token)
            try:
                yield client
            finally:
                await _close_quietly(client.postgrest.aclose, part="postgrest")

    async def service_client(self) -> AsyncClient:
        if not self._service_role_key:
            raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY is not configured")
        if self._service_client is None:
            self._service_client = await acreate_client(self.url, self._service_role_key, options=_options())
            logger.info("supabase_client_created", type="service")
        return self._service_client

    async def aclose(self) -> None:
        client, self._service_client = self._service_client, None
        if client is None:
            return
        await _close_quietly(client.auth.close, part="auth")
        await _close_quietly(client.postgrest.aclose, part="postgrest")
        logger.info("supabase_client_closed", type="service")

    def profiles(self, session: Optional[AuthSession]) -> "SupabaseProfileStore":
        return SupabaseProfileStore(self, session.access_token if session else None)


class SupabaseIdentityProvider:
    def __init__(self, gateway: SupabaseGateway) -> None:
        self._gw = gateway

    async def create_identity(
        self, *, email: str, password: str, metadata: Mapping[str, Any]
    ) -> tuple[Identity, Optional[AuthSession]]:
        async with self._gw.anon() as client:
            try:
                response = await client.auth.sign_up(
                    {"email": email, "password": password, "options": {"data": dict(metadata)}}
                )
            except Exception as exc:
                logger.error("sign_up_failed", error=str(exc))
                raise _map_signup_error(str(exc)) from exc
        if not response.user:
            raise IdentityCreationError("unavailable", "Registration failed")
        # Session is None until the email is confirmed when confirmations are on.
        return _identity_from_user(response.user), _session_from_response(response)

    async def sign_in(self, *, email: str, password: str) -> AuthSession:
        async with self._gw.anon() as client:
            try:
                response = await client.auth.sign_in_with_password({"email": email, "password": password})
            except Exception as exc:
                logger.warning("sign_in_failed", error=str(exc))
                raise AuthenticationError("invalid_credentials") from exc
        session = _session_from_response(response)
        if session is None:
            raise AuthenticationError("invalid_credentials")
        return session

    async def refresh(self, refresh_token: str) -> AuthSession:
        async with self._gw.anon() as client:
            try:
                response = await client.auth.refresh_session(refresh_token)
            except Exception as exc:
                logger.warning("token_refresh_failed", error=str(exc))
                raise AuthenticationError("refresh_failed") from exc
        session = _session_from_response(response)
        if session is None:
            raise AuthenticationError("refresh_failed")
        return session

    async def sign_out(self, access_token: str) -> None:
        async with self._gw.anon() as client:
            try:
                await client.auth.admin.sign_out(access_token)
            except Exception as exc:
                # Local session is gone either way; the provider token simply expires.
                logger.warning("sign_out_failed", error=str(exc))

    async def get_current_user(self, access_token: str) -> Optional[Identity]:
        async with self._gw.anon() as client:
            try:
                response = await client.auth.get_user(access_token)
            except Exception as exc:
                logger.warning("token_verification_failed", error=str(exc))
                return None
        if not response or not response.user:
            return None
        return _identity_from_user(response.user)


class SupabaseProfileStore:
    """`profiles` rows as one session sees them."""

    def __init__(self, gateway: SupabaseGateway, access_token: str | None) -> None:
        self._gw = gateway
        self._access_token = access_token

    async def read_profile(self, identity_id: str) -> Optional[Profile]:
        async with self._gw.as_user(self._access_token) as client:
            try:
                response = await client.table(PROFILES_TABLE).select("*").eq("id", identity_id).limit(1).execute()
            except Exception as exc:
                raise _translate_api_error(exc, action="profile_read") from exc
        rows = response.data or []
        return Profile.from_row(rows[0]) if rows else None

    async def update_role(self, identity_id: str, role: str) -> None:
        async with self._gw.as_user(self._access_token) as client:
            try:
                await client.table(PROFILES_TABLE).update({"role": role, "updated_at": _utcnow_iso()}).eq(
                    "id", identity_id
                ).execute()
            except Exception as exc:
                raise _translate_api_error(exc, action="role_update") from exc

    async def upsert_profile(self, *, identity_id: str, email: str, role: str) -> None:
        row = {"id": identity_id, "role": role, "updated_at": _utcnow_iso()}
        # An unknown email must not overwrite the one the trigger stored.
        if email:
            row["email"] = email
        async with self._gw.as_user(self._access_token) as client:
            try:
                await client.table(PROFILES_TABLE).upsert(row, on_conflict="id", ignore_duplicates=False).execute()
            except Exception as exc:
                raise _translate_api_error(exc, action="profile_upsert") from exc


class SupabaseRoleAssigner:
    """Service-role role assignment (bypasses row-level security)."""

    def __init__(self, gateway: SupabaseGateway) -> None:
        self._gw = gateway

    async def assign_role(self, identity_id: str, role: str) -> None:
        client = await self._gw.service_client()
        try:
            await client.table(PROFILES_TABLE).update({"role": role, "updated_at": _utcnow_iso()}).eq(
                "id", identity_id
            ).execute()
        except Exception as exc:
            raise _translate_api_error(exc, action="privileged_role_update") from exc
        logger.info("privileged_role_assigned", identity_id=identity_id, role=role)


__all__ = [
    "SupabaseGateway",
    "SupabaseIdentityProvider",
    "SupabaseProfileStore",
    "SupabaseRoleAssigner",
]
