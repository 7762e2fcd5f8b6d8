"""
Lightweight psycopg stand-in for unit tests.

Provides ``install_fake_psycopg`` which monkeypatches a target module so that
``psycopg.connect`` returns an in-memory key-value table. Supports the subset
of SQL used by DBIntentBackend (INSERT ... ON CONFLICT / SELECT / DELETE).
"""
from __future__ import annotations

import types
from typing import Dict, List, Tuple


class _FakeCursor:
    def __init__(self, store: Dict[str, str], log: List[Tuple[str, tuple]]) -> None:
        self._store = store
        self._log = log
        self._row = None

    def execute(self, sql: str, params: tuple | list) -> None:
        sql_low = (sql or "").lower().strip()
        self._log.append((sql_low, tuple(params)))
        if sql_low.startswith("insert into"):
            assert "on conflict (intent_key)" in sql_low
            key, value = params
            self._store[str(key)] = str(value)
            self._row = None
        elif sql_low.startswith("select"):
            value = self._store.get(str(params[0]))
            self._row = (value,) if value is not None else None
        elif sql_low.startswith("delete"):
            self._store.pop(str(params[0]), None)
            self._row = None
        else:
            raise AssertionError(f"Unexpected SQL in fake psycopg: {sql}")

    def fetchone(self):
        return self._row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, store: Dict[str, str], log: List[Tuple[str, tuple]]) -> None:
        self._store = store
        self._log = log

    def cursor(self):
        return _FakeCursor(self._store, self._log)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def install_fake_psycopg(monkeypatch, target_module):
    """
    Patch ``target_module`` so psycopg operations go against an in-memory store.

    Returns ``(store, log)``: the backing dictionary and the executed SQL.
    """
    fake_store: Dict[str, str] = {}
    log: List[Tuple[str, tuple]] = []

    def fake_connect(dsn: str, autocommit: bool | None = None):
        return _FakeConn(fake_store, log)

    fake_psycopg = types.SimpleNamespace(connect=fake_connect)
    monkeypatch.setattr(target_module, "psycopg", fake_psycopg, raising=False)
    return fake_store, log


__all__ = ["install_fake_psycopg"]
