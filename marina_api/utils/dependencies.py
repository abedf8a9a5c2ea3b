"""
FastAPI dependencies for caller identity.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from .errors import PermissionDenied, Unauthenticated
from .logging_config import user_id_var
from .security import verify_access_token


@dataclass
class CallerIdentity:
    uid: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_optional_identity(request: Request) -> Optional[CallerIdentity]:
    """
    Identity from the bearer token, or None for anonymous callers.
    A token that is present but invalid is rejected, not downgraded.
    """
    token = _bearer_token(request)
    if token is None:
        return None

    payload = verify_access_token(token)
    if payload is None:
        raise Unauthenticated("Invalid or expired token")

    identity = CallerIdentity(
        uid=str(payload["sub"]),
        email=payload.get("email"),
        role=payload.get("role") or "user"
    )
    user_id_var.set(identity.uid)
    return identity


def get_current_identity(
    identity: Optional[CallerIdentity] = Depends(get_optional_identity)
) -> CallerIdentity:
    if identity is None:
        raise Unauthenticated("Authentication required")
    return identity


def require_admin(identity: CallerIdentity = Depends(get_current_identity)) -> CallerIdentity:
    if not identity.is_admin:
        raise PermissionDenied("Admin role required")
    return identity
