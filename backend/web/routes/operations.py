"""Operations endpoints (liveness for load balancers and operators)."""

from __future__ import annotations

from fastapi import APIRouter, Request

from backend.web.auth_utils import private_response

operations_router = APIRouter(tags=["Operations"])


@operations_router.get("/health")
async def health(request: Request):
    """Liveness plus the number of in-flight background reconciliations."""
    services = request.app.state.services
    body = {
        "status": "healthy",
        "backgroundTasks": services.runner.pending,
        "privilegedStrategy": services.privileged is not None,
    }
    return private_response(body)
