"""
Request/response models for the auth and role endpoints.

Validation of emails, password length and declarable roles lives in the
registrar so the web layer and the engine share one set of rules; the models
only enforce shape.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)
    role: str = "vendor"

    def __repr__(self) -> str:
        """Never expose the password in logs or tracebacks."""
        return f"RegisterRequest(email={self.email!r}, password=***, role={self.role!r})"

    __str__ = __repr__


class RegisterResponse(BaseModel):
    user_id: str
    email: str
    role: str
    reconciliation: str = "scheduled"


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)

    def __repr__(self) -> str:
        return f"LoginRequest(email={self.email!r}, password=***)"

    __str__ = __repr__


class SessionResponse(BaseModel):
    user_id: str
    email: str
    role: Optional[str] = None
    pending_role: Optional[str] = None


class LogoutResponse(BaseModel):
    message: str = "Logged out successfully"


class UpdateRoleRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: str


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
