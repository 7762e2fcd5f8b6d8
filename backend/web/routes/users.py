"""
Users API routes: privileged role assignment.

Why:
    Operators need to fix a user's role when self-service reconciliation
    cannot (e.g. the service role was not configured at signup time). The
    assignment runs through the same service-role routine the reconciler uses
    as its last strategy.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Request

from backend.identity_access.domain import (
    DECLARABLE_ROLES,
    ROLE_ADMINS,
    UnknownPersistenceError,
    WritePermissionDenied,
)
from backend.web.auth_utils import current_session, error_response, private_response
from backend.web.models.auth import UpdateRoleRequest

users_router = APIRouter(tags=["Users"])  # explicit path below
logger = structlog.get_logger("campus.web.users")


@users_router.post("/api/update-role")
async def update_role(request: Request, payload: UpdateRoleRequest):
    """Assign a declarable role to a user (admins only).

    Validation:
        - `role` in DECLARABLE_ROLES (student, vendor, admin)

    Permissions:
        Caller's profile role must be `admin` or `super_admin`.
    """
    rec = current_session(request)
    if rec is None:
        return error_response("unauthenticated", status_code=401)
    if rec.role not in ROLE_ADMINS:
        return error_response("forbidden", status_code=403)
    if payload.role not in DECLARABLE_ROLES:
        return error_response("bad_request", status_code=400, detail="invalid_role")

    privileged = request.app.state.services.privileged
    if privileged is None:
        return error_response("privileged_unavailable", status_code=500)
    try:
        await privileged.assign_role(payload.user_id, payload.role)
    except (WritePermissionDenied, UnknownPersistenceError) as exc:
        logger.error("admin_role_update_failed", target=payload.user_id, error=str(exc))
        return error_response("update_failed", status_code=500)
    logger.info("admin_role_updated", actor=rec.identity_id, target=payload.user_id, role=payload.role)
    return private_response({"success": True})
