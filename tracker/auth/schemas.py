"""
schemas.py — Auth Pydantic v2 data contracts.

Defines:
  - UserRole, SessionType enums
  - User           (profile carried by an authenticated session)
  - AuthGrant      (what the identity provider returns for login / refresh)
  - AuthSession    (token + expiry + user + session type — the persisted record)

Timestamps are epoch seconds (float). The provider's wire format uses epoch
milliseconds for expiresAt; provider.py converts at the boundary.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class UserRole(str, Enum):
    admin = "admin"
    employee = "employee"


class SessionType(str, Enum):
    persistent = "persistent"   # "remember me", survives an app restart
    temporary = "temporary"     # cleared when the process ends


class User(BaseModel):
    id: str
    email: str
    display_name: str
    role: UserRole = UserRole.employee


class AuthGrant(BaseModel):
    token: str
    expires_at: float
    user: Optional[User] = None


class AuthSession(BaseModel):
    token: str
    token_expiration: float
    user: User
    session_type: SessionType = SessionType.temporary


__all__ = ["UserRole", "SessionType", "User", "AuthGrant", "AuthSession"]
