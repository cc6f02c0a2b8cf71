# Overview: Boundary to the external identity/session provider.
"""
Identity is owned by an external provider (authentication, sessions and
role storage live there). This module only defines what the application
consumes: an Identity with an opaque user id and a role.

The provider is a callable ``request -> Identity | None`` selected by the
IDENTITY_PROVIDER config key. The default trusts headers set by an
authenticating gateway in front of the app.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"
ROLES = (ROLE_STAFF, ROLE_ADMIN)

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = ROLE_STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "role": self.role}


def normalize_role(role: str | None) -> str:
    """Unknown or missing roles fall back to staff."""
    role = (role or "").strip().lower()
    return role if role in ROLES else ROLE_STAFF


def header_identity_provider(req) -> Identity | None:
    user_id = (req.headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        return None
    return Identity(user_id=user_id, role=normalize_role(req.headers.get(USER_ROLE_HEADER)))
