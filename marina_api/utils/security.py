"""
Bearer token verification.

Tokens are issued by the external auth service; this backend only checks
them. Claims used: sub (uid), email, role.
"""

from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

from ..config import settings


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT token"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict]:
    """Verify an access token and return payload"""
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        return None
    # Tokens without a type claim are accepted; refresh tokens are not
    if payload.get("type", "access") != "access":
        return None
    return payload


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token (used by tests and local tooling)"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
