"""
Logging configuration.

Every rendered line must name the logger it came from so reconciliation
events can be told apart from web events in aggregated output.
"""
from __future__ import annotations

import json
import logging

import pytest
import structlog

from backend.web.config import Settings
from backend.web.logging_setup import configure_logging


@pytest.fixture
def json_logging(caplog: pytest.LogCaptureFixture):
    configure_logging(Settings(LOG_FORMAT="json", LOG_LEVEL="INFO"))
    caplog.set_level(logging.INFO, logger="campus")
    try:
        yield caplog
    finally:
        structlog.reset_defaults()


def _events(caplog: pytest.LogCaptureFixture) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name.startswith("campus")]


def test_json_lines_carry_logger_name(json_logging):
    structlog.get_logger("campus.identity_access.reconciler").info("profile_converged", strategy="upsert")

    (event,) = _events(json_logging)
    assert event["logger"] == "campus.identity_access.reconciler"
    assert event["event"] == "profile_converged"
    assert event["strategy"] == "upsert"
    assert event["level"] == "info"
    assert "timestamp" in event


def test_module_loggers_keep_their_own_names(json_logging):
    structlog.get_logger("campus.web").warning("draining_background_tasks", pending=2)
    structlog.get_logger("campus.identity_access.supabase").warning("sign_in_failed")

    names = [e["logger"] for e in _events(json_logging)]
    assert names == ["campus.web", "campus.identity_access.supabase"]


def test_level_filter_drops_debug(json_logging):
    structlog.get_logger("campus.web").debug("noisy")
    assert _events(json_logging) == []
