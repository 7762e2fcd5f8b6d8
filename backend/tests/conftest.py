"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
"""
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and the test helpers are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _force_dev_env(monkeypatch: pytest.MonkeyPatch):
    """Keep every test in dev semantics unless it opts into prod explicitly.

    Why:
        The startup guard reads CAMPUS_ENV and Supabase keys from the
        environment. A developer shell exporting production values must not
        turn unrelated tests into SystemExit failures.
    """
    for var in (
        "CAMPUS_ENV",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "INTENTS_BACKEND",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    try:
        from backend.web.config import get_settings
    except Exception:
        yield
        return
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
