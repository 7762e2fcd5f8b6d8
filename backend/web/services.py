"""
Wiring of the identity provisioning engine for the web app.

Why: Routes receive one explicit container instead of module globals, so the
full app and tests (with in-memory fakes) share the same construction path.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog

from backend.identity_access.background import BackgroundRunner
from backend.identity_access.bootstrap import SessionBootstrapper
from backend.identity_access.intents import PendingIntentStore, build_intent_backend
from backend.identity_access.ports import (
    IdentityProvider,
    PrivilegedRoleAssigner,
    ProfileStoreFactory,
)
from backend.identity_access.reconciler import MaterializationPolicy, ProfileReconciler
from backend.identity_access.registrar import IdentityRegistrar
from backend.identity_access.stores import SessionStore
from backend.identity_access.supabase_gateway import (
    SupabaseGateway,
    SupabaseIdentityProvider,
    SupabaseRoleAssigner,
)

from .config import Settings

logger = structlog.get_logger("campus.web")


@dataclass
class IdentityServices:
    identities: IdentityProvider
    intents: PendingIntentStore
    profiles_for: ProfileStoreFactory
    privileged: Optional[PrivilegedRoleAssigner] = None
    policy: MaterializationPolicy = field(default_factory=MaterializationPolicy)
    sessions: SessionStore = field(default_factory=SessionStore)
    runner: BackgroundRunner = field(default_factory=BackgroundRunner)
    session_ttl_seconds: int = 3600
    gateway: Optional[SupabaseGateway] = None

    def __post_init__(self) -> None:
        self.reconciler = ProfileReconciler(
            intents=self.intents, privileged=self.privileged, policy=self.policy
        )
        self.registrar = IdentityRegistrar(
            identities=self.identities,
            intents=self.intents,
            reconciler=self.reconciler,
            profiles_for=self.profiles_for,
            runner=self.runner,
        )
        self.bootstrapper = SessionBootstrapper(
            identities=self.identities,
            intents=self.intents,
            reconciler=self.reconciler,
            profiles_for=self.profiles_for,
        )


def build_services(settings: Settings) -> IdentityServices:
    """Build the Supabase-backed services from settings."""
    gateway = SupabaseGateway(
        url=settings.supabase_url,
        anon_key=settings.supabase_anon_key,
        service_role_key=settings.supabase_service_role_key or None,
    )
    backend = build_intent_backend(
        settings.intents_backend, path=settings.intents_file, dsn=settings.database_url or None
    )
    privileged = SupabaseRoleAssigner(gateway) if gateway.has_service_role else None
    if privileged is None:
        logger.warning("privileged_role_strategy_disabled", reason="no_service_role_key")
    policy = MaterializationPolicy(
        attempts=settings.materialization_attempts,
        initial_delay=settings.materialization_initial_delay,
        max_delay=settings.materialization_max_delay,
    )
    logger.info("identity_services_wired", intents_backend=settings.intents_backend)
    return IdentityServices(
        identities=SupabaseIdentityProvider(gateway),
        intents=PendingIntentStore(backend),
        profiles_for=gateway.profiles,
        privileged=privileged,
        policy=policy,
        session_ttl_seconds=settings.session_ttl_seconds,
        gateway=gateway,
    )
