"""
PendingIntentStore: durable record of a declared role awaiting convergence.

Why: The role a user picks at signup must survive reloads, sign-outs and
process restarts until a read-back confirms it on the profile row. The store
is a narrow interface over any durable key-value medium; business logic never
special-cases the storage mechanism.

Backends:
- `MemoryIntentBackend` for tests and single-process development.
- `JsonFileIntentBackend` keeps entries in a local JSON file (atomic replace).
- `DBIntentBackend` persists entries in Postgres via psycopg3.
"""
from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

import psycopg
import structlog

from .domain import is_valid_role
from .ports import IntentBackend

logger = structlog.get_logger("campus.identity_access.intents")

KEY_PREFIX = "intended_role:"


class MemoryIntentBackend:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileIntentBackend:
    """File-backed key-value store.

    Every write rewrites the whole file through a temp file and `os.replace`
    so a crash never leaves a half-written document behind. A missing or
    unreadable file reads as empty. The lock only serialises writers within
    one process; production startup rejects this backend.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("intent_file_unreadable", path=str(self._path))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _dump(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self._path.parent), prefix=".intents-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._dump(data)


_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class DBIntentBackend:
    """Postgres-backed key-value store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Falls back to `DATABASE_URL`.
    table:
        Table with columns `intent_key text primary key`, `value text`,
        `updated_at timestamptz`. Defaults to `public.pending_role_intents`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.pending_role_intents") -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBIntentBackend")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def get(self, key: str) -> Optional[str]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select value from {self._table} where intent_key = %s", (key,))
                row = cur.fetchone()
        return str(row[0]) if row else None

    def set(self, key: str, value: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into {self._table} (intent_key, value, updated_at) values (%s, %s, now()) "
                    f"on conflict (intent_key) do update set value = excluded.value, updated_at = now()",
                    (key, value),
                )

    def delete(self, key: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from {self._table} where intent_key = %s", (key,))


class PendingIntentStore:
    """At most one declared role per identity id; `set` overwrites."""

    def __init__(self, backend: IntentBackend) -> None:
        self._backend = backend

    @staticmethod
    def _key(identity_id: str) -> str:
        return f"{KEY_PREFIX}{identity_id}"

    def get(self, identity_id: str) -> Optional[str]:
        value = self._backend.get(self._key(identity_id))
        if value is None:
            return None
        if not is_valid_role(value):
            # Unknown roles can never converge; drop them instead of retrying forever.
            logger.warning("pending_intent_invalid_dropped", identity_id=identity_id)
            self._backend.delete(self._key(identity_id))
            return None
        return value

    def set(self, identity_id: str, role: str) -> None:
        if not is_valid_role(role):
            raise ValueError("invalid role")
        self._backend.set(self._key(identity_id), role)
        logger.info("pending_intent_recorded", identity_id=identity_id, role=role)

    def clear(self, identity_id: str) -> None:
        self._backend.delete(self._key(identity_id))
        logger.info("pending_intent_cleared", identity_id=identity_id)


def build_intent_backend(kind: str, *, path: str | None = None, dsn: str | None = None) -> IntentBackend:
    """Select a backend by name (`memory`, `file`, `db`)."""
    kind_l = (kind or "memory").strip().lower()
    if kind_l == "memory":
        return MemoryIntentBackend()
    if kind_l == "file":
        return JsonFileIntentBackend(path or ".campus/pending_intents.json")
    if kind_l == "db":
        return DBIntentBackend(dsn)
    raise ValueError(f"unknown intents backend: {kind}")


__all__ = [
    "MemoryIntentBackend",
    "JsonFileIntentBackend",
    "DBIntentBackend",
    "PendingIntentStore",
    "build_intent_backend",
]
