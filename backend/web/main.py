"Campus dashboard backend"
from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from backend.web.config import Settings, ensure_secure_config_on_startup, get_settings
from backend.web.logging_setup import configure_logging
from backend.web.routes.auth import auth_router
from backend.web.routes.operations import operations_router
from backend.web.routes.users import users_router
from backend.web.services import IdentityServices, build_services

logger = structlog.get_logger("campus.web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting_backend", environment=app.state.settings.campus_env)
    yield
    # Let in-flight reconciliations finish; their intents stay durable anyway.
    services: IdentityServices = app.state.services
    if services.runner.pending:
        logger.info("draining_background_tasks", pending=services.runner.pending)
    await services.runner.drain()
    if services.gateway is not None:
        await services.gateway.aclose()
    logger.info("backend_shutdown_complete")


def create_app(*, settings: Settings | None = None, services: IdentityServices | None = None) -> FastAPI:
    """Build the app; tests pass in-memory services, production wires Supabase."""
    settings = settings or get_settings()
    # Minimal production safety checks (fail-fast on insecure config)
    ensure_secure_config_on_startup(settings)
    configure_logging(settings)

    app = FastAPI(
        title="Campus Dashboard",
        description="Administrative dashboard backend for the campus marketplace",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings)

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(operations_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.web.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not app.state.settings.is_prod_like,
    )
