"""Bearer-token access control.

Static tokens are configured: one grants the admin role, the others the
member role. Each entry of ``AUTH_MEMBER_TOKENS`` carries its own identity,
which is what the uploader check on edits and deletes compares against; the
shared ``AUTH_MEMBER_TOKEN`` maps to the identity "member". Members can search
and read; admins also upload, edit, and delete.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    identity: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _matches(token: str, expected: str) -> bool:
    return bool(expected) and secrets.compare_digest(token.encode(), expected.encode())


def resolve_principal(token: str) -> Principal | None:
    """Map a bearer token to a principal, or ``None`` if it is not recognized."""
    if _matches(token, settings.auth.admin_token):
        return Principal(identity="admin", role=Role.ADMIN)
    for identity, member_token in settings.auth.member_tokens.items():
        if _matches(token, member_token):
            return Principal(identity=identity, role=Role.MEMBER)
    if _matches(token, settings.auth.member_token):
        return Principal(identity="member", role=Role.MEMBER)
    return None


async def require_member(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Principal:
    """Any authenticated caller."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    principal = resolve_principal(credentials.credentials)
    if principal is None:
        logger.warning("Rejected request with unknown bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, token failed",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


async def require_admin(principal: Principal = Depends(require_member)) -> Principal:
    """Admin callers only."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied. Admin access required.",
        )
    return principal
