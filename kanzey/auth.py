"""Caller identity.

Authentication happens upstream (gateway / session service); it forwards
the authenticated user in headers. This module only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from .errors import Forbidden, Unauthenticated

ROLES = ("customer", "organizer", "admin")
STAFF_ROLES = ("organizer", "admin")


@dataclass(frozen=True)
class Identity:
    id: str
    role: str
    email: str = ""
    name: str = ""
    phone: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


async def current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_phone: Optional[str] = Header(default=None),
) -> Identity:
    if not x_user_id:
        raise Unauthenticated("Authentication required")
    role = (x_user_role or "customer").strip().lower()
    if role not in ROLES:
        raise Forbidden(f"Unknown role: {role}")
    return Identity(
        id=x_user_id.strip(),
        role=role,
        email=(x_user_email or "").strip(),
        name=(x_user_name or "").strip(),
        phone=(x_user_phone or "").strip(),
    )


async def require_staff(user: Identity = Depends(current_user)) -> Identity:
    if not user.is_staff:
        raise Forbidden("Staff access required")
    return user


async def require_admin(user: Identity = Depends(current_user)) -> Identity:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user
