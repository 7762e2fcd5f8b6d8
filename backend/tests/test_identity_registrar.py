"""
IdentityRegistrar: signup returns as soon as the identity exists.

Why:
    Role reconciliation runs in the background and must neither delay nor
    fail registration. Only identity creation errors reach the caller.
"""
from __future__ import annotations

import asyncio

import pytest

from backend.identity_access.background import BackgroundRunner
from backend.identity_access.domain import IdentityCreationError
from backend.identity_access.intents import MemoryIntentBackend, PendingIntentStore
from backend.identity_access.reconciler import MaterializationPolicy, ProfileReconciler
from backend.identity_access.registrar import IdentityRegistrar, normalize_email, validate_registration
from backend.tests.utils.identity_fakes import (
    ALL_STRATEGIES,
    FakeIdentityProvider,
    FakeProfileDB,
    FakeProfileStore,
    FakeRoleAssigner,
)

pytestmark = pytest.mark.anyio


class _BrokenIntentBackend(MemoryIntentBackend):
    def set(self, key: str, value: str) -> None:
        raise OSError("disk full")


class _Harness:
    def __init__(self, *, backend=None, **provider_opts) -> None:
        self.db = FakeProfileDB()
        self.provider = FakeIdentityProvider(self.db, **provider_opts)
        self.intents = PendingIntentStore(backend or MemoryIntentBackend())
        self.runner = BackgroundRunner()
        self.sessions_seen = []
        self.reconciler = ProfileReconciler(
            intents=self.intents,
            privileged=FakeRoleAssigner(self.db),
            policy=MaterializationPolicy(attempts=4, initial_delay=0, max_delay=0),
        )
        self.registrar = IdentityRegistrar(
            identities=self.provider,
            intents=self.intents,
            reconciler=self.reconciler,
            profiles_for=self._profiles_for,
            runner=self.runner,
        )

    def _profiles_for(self, session):
        self.sessions_seen.append(session)
        return FakeProfileStore(self.db, session)


@pytest.fixture
def harness() -> _Harness:
    return _Harness()


async def test_register_returns_before_reconciliation_finishes(harness: _Harness):
    """Given slow profile writes, When a vendor registers, Then signup completes and the role follows later."""
    harness.db.hold_writes = asyncio.Event()

    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")

    assert identity.email == "vendor@example.com"
    assert harness.intents.get(identity.id) == "vendor"
    assert harness.runner.pending == 1
    assert harness.db.role_of(identity.id) == "student"

    harness.db.hold_writes.set()
    await harness.runner.drain()

    assert harness.runner.pending == 0
    assert harness.db.role_of(identity.id) == "vendor"
    assert harness.intents.get(identity.id) is None


async def test_register_passes_declared_role_as_identity_metadata(harness: _Harness):
    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    await harness.runner.drain()
    assert harness.provider.metadata[identity.id] == {"role": "vendor"}


async def test_register_normalizes_email(harness: _Harness):
    identity = await harness.registrar.register("  Vendor@Example.COM ", "secret1", "vendor")
    await harness.runner.drain()
    assert identity.email == "vendor@example.com"
    assert "vendor@example.com" in harness.provider.accounts


async def test_register_succeeds_when_every_strategy_is_denied(harness: _Harness):
    """Reconciliation failure is not a signup failure; the intent waits for the next session."""
    harness.db.deny(*ALL_STRATEGIES)

    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    await harness.runner.drain()

    assert harness.db.role_of(identity.id) == "student"
    assert harness.intents.get(identity.id) == "vendor"


async def test_register_succeeds_when_reconciliation_errors(harness: _Harness):
    harness.db.failing.add("read")

    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    await harness.runner.drain()

    assert harness.intents.get(identity.id) == "vendor"


async def test_register_waits_for_delayed_profile_row():
    harness = _Harness(auto_materialize=False)

    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    harness.db.materialize_after(identity.id, identity.email, reads=2)
    await harness.runner.drain()

    assert harness.db.role_of(identity.id) == "vendor"
    assert harness.intents.get(identity.id) is None


async def test_register_without_session_still_reconciles():
    """With email confirmation on there is no session yet; the pass runs with an unauthenticated store."""
    harness = _Harness(email_confirmation=True)

    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    await harness.runner.drain()

    assert harness.sessions_seen == [None]
    assert harness.intents.get(identity.id) is None
    assert harness.db.role_of(identity.id) == "vendor"


async def test_register_survives_intent_write_failure():
    harness = _Harness(backend=_BrokenIntentBackend())

    identity = await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    await harness.runner.drain()

    assert harness.provider.created == 1
    assert harness.db.role_of(identity.id) == "vendor"


async def test_duplicate_email_is_rejected_without_second_identity(harness: _Harness):
    await harness.registrar.register("vendor@example.com", "secret1", "vendor")

    with pytest.raises(IdentityCreationError) as err:
        await harness.registrar.register("vendor@example.com", "another1", "admin")

    assert err.value.code == "duplicate_email"
    assert harness.provider.created == 1
    await harness.runner.drain()


async def test_provider_outage_is_reported(harness: _Harness):
    harness.provider.outage = True
    with pytest.raises(IdentityCreationError) as err:
        await harness.registrar.register("vendor@example.com", "secret1", "vendor")
    assert err.value.code == "unavailable"
    assert harness.runner.pending == 0


@pytest.mark.parametrize(
    "email,password,role,code",
    [
        ("not-an-email", "secret1", "vendor", "invalid_email"),
        ("", "secret1", "vendor", "invalid_email"),
        ("vendor@example.com", "short", "vendor", "weak_password"),
        ("vendor@example.com", "secret1", "super_admin", "invalid_role"),
        ("vendor@example.com", "secret1", "wizard", "invalid_role"),
    ],
)
async def test_invalid_registration_creates_nothing(harness: _Harness, email, password, role, code):
    with pytest.raises(IdentityCreationError) as err:
        await harness.registrar.register(email, password, role)

    assert err.value.code == code
    assert harness.provider.created == 0
    assert harness.runner.pending == 0


async def test_validate_registration_returns_normalized_email():
    assert validate_registration(" A@B.io ", "123456", "student") == "a@b.io"
    assert normalize_email(None) == ""
