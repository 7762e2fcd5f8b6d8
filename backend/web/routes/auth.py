"""
Authentication routes: register, login, refresh, me, logout.

Why:
    These are the call sites of the provisioning engine. Registration returns
    as soon as the identity exists; every session establishment (login,
    refresh, app start via /auth/me) runs the session bootstrap, which repairs
    a divergent role when a pending intent exists.

Notes:
    - Only identity creation and credential errors reach the user.
    - Reconciliation problems are logged by the engine and never fail a
      request.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request

from backend.identity_access.domain import AuthenticationError, IdentityCreationError
from backend.identity_access.stores import SessionRecord
from backend.web.auth_utils import cookie_opts, current_session, error_response, private_response
from backend.web.models.auth import LoginRequest, LogoutResponse, RegisterRequest, RegisterResponse, SessionResponse

auth_router = APIRouter(tags=["Auth"])
logger = structlog.get_logger("campus.web.auth")

_CREATION_STATUS = {
    "duplicate_email": 409,
    "rate_limited": 429,
    "unavailable": 503,
}


def _creation_error_response(exc: IdentityCreationError):
    status = _CREATION_STATUS.get(exc.code, 400)
    return error_response(exc.code, status_code=status, detail=exc.message)


def _session_body(request: Request, rec: SessionRecord) -> dict:
    services = request.app.state.services
    try:
        pending = services.intents.get(rec.identity_id)
    except Exception as exc:
        logger.warning("pending_intent_read_failed", identity_id=rec.identity_id, error=str(exc))
        pending = None
    body = SessionResponse(
        user_id=rec.identity_id,
        email=rec.auth.identity.email,
        role=rec.role,
        pending_role=pending,
    )
    return body.model_dump()


async def _bootstrap(request: Request, rec: SessionRecord) -> None:
    services = request.app.state.services
    result = await services.bootstrapper.bootstrap(rec.auth, view=rec.view)
    if result.repair is not None:
        logger.info(
            "session_repair_pass",
            identity_id=result.identity.id,
            outcome=result.repair.outcome.value,
            applied=result.applied,
        )


@auth_router.post("/auth/register", status_code=201)
async def register(request: Request, payload: RegisterRequest):
    """Create an account with a declared role.

    Returns 201 once the identity exists; the role is reconciled in the
    background and on later sessions.
    """
    services = request.app.state.services
    try:
        identity = await services.registrar.register(payload.email, payload.password, payload.role)
    except IdentityCreationError as exc:
        logger.warning("registration_rejected", code=exc.code)
        return _creation_error_response(exc)
    body = RegisterResponse(user_id=identity.id, email=identity.email, role=payload.role)
    return private_response(body.model_dump(), status_code=201)


@auth_router.post("/auth/login")
async def login(request: Request, payload: LoginRequest):
    services = request.app.state.services
    settings = request.app.state.settings
    try:
        auth = await services.identities.sign_in(email=payload.email.strip().lower(), password=payload.password)
    except AuthenticationError:
        return error_response("invalid_credentials", status_code=401)

    rec = services.sessions.create(auth=auth, ttl_seconds=services.session_ttl_seconds)
    try:
        await _bootstrap(request, rec)
    except AuthenticationError:
        services.sessions.delete(rec.session_id)
        return error_response("invalid_credentials", status_code=401)

    logger.info("user_signed_in", identity_id=rec.identity_id)
    resp = private_response(_session_body(request, rec))
    resp.set_cookie(settings.session_cookie_name, rec.session_id, **cookie_opts(settings))
    return resp


@auth_router.post("/auth/refresh")
async def refresh(request: Request):
    """Exchange the refresh token and bootstrap the new provider session."""
    services = request.app.state.services
    rec = current_session(request)
    if rec is None:
        return error_response("unauthenticated", status_code=401)
    try:
        auth = await services.identities.refresh(rec.auth.refresh_token)
    except AuthenticationError:
        services.sessions.delete(rec.session_id)
        return error_response("refresh_failed", status_code=401)
    rec = services.sessions.replace_auth(rec.session_id, auth, ttl_seconds=services.session_ttl_seconds)
    if rec is None:
        return error_response("unauthenticated", status_code=401)
    try:
        await _bootstrap(request, rec)
    except AuthenticationError:
        services.sessions.delete(rec.session_id)
        return error_response("unauthenticated", status_code=401)
    return private_response(_session_body(request, rec))


@auth_router.get("/auth/me")
async def me(request: Request):
    """Current identity and profile (app start with an existing session)."""
    services = request.app.state.services
    rec = current_session(request)
    if rec is None:
        return error_response("unauthenticated", status_code=401)
    try:
        await _bootstrap(request, rec)
    except AuthenticationError:
        services.sessions.delete(rec.session_id)
        return error_response("unauthenticated", status_code=401)
    return private_response(_session_body(request, rec))


@auth_router.post("/auth/logout")
async def logout(request: Request):
    """End the session; pending role intents are kept for the next sign-in."""
    services = request.app.state.services
    settings = request.app.state.settings
    rec = current_session(request)
    if rec is not None:
        await services.identities.sign_out(rec.auth.access_token)
        services.sessions.delete(rec.session_id)
        logger.info("user_signed_out", identity_id=rec.identity_id)
    resp = private_response(LogoutResponse().model_dump())
    resp.delete_cookie(settings.session_cookie_name, path="/")
    return resp
