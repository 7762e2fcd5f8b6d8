"""
In-memory SessionStore for the web layer.

Why: Keep provider tokens server-side and the cookie opaque. Each record owns
the `ActiveProfile` of its session so reconciliation results can be applied
to, or discarded from, exactly the session they were issued for.

Security: Cookies carry only an opaque session id. Tokens stay server-side.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
import secrets
import time

from .bootstrap import ActiveProfile
from .domain import AuthSession


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    auth: AuthSession
    expires_at: int
    view: ActiveProfile = field(default_factory=ActiveProfile)

    @property
    def identity_id(self) -> str:
        return self.auth.identity.id

    @property
    def role(self) -> Optional[str]:
        return self.view.profile.role if self.view.profile else None


class SessionStore:
    def __init__(self) -> None:
        self._data: Dict[str, SessionRecord] = {}

    def create(self, *, auth: AuthSession, ttl_seconds: int = 3600) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(session_id=sid, auth=auth, expires_at=_now() + ttl_seconds)
        rec.view.begin(auth, session_id=sid)
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at < _now():
            self.delete(session_id)
            return None
        return rec

    def replace_auth(self, session_id: str, auth: AuthSession, *, ttl_seconds: int = 3600) -> Optional[SessionRecord]:
        """Token refresh: same cookie, new provider session and a fresh scope."""
        rec = self.get(session_id)
        if not rec:
            return None
        rec.auth = auth
        rec.expires_at = _now() + ttl_seconds
        rec.view.begin(auth, session_id=session_id)
        return rec

    def delete(self, session_id: str) -> None:
        rec = self._data.pop(session_id, None)
        if rec is not None:
            rec.view.end()
