"""
Rate Limiter Configuration

Coarse per-IP request limiting for every route (slowapi). The per-identity
abuse budgets for reservations live in services/rate_limit_service.py and
are stored in the database so they hold across instances.

Supports both in-memory and Redis storage for the slowapi limiter.
"""

import hashlib
import logging
import os
from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    # Check X-Forwarded-For header (set by proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def hash_identity(value: Optional[str]) -> Optional[str]:
    """
    SHA-256 of a normalized identifier (IP, email, device fingerprint).
    Raw identifiers are never stored in counter keys.
    """
    if not value:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def get_storage_uri() -> Optional[str]:
    """
    Redis storage URI for the limiter if configured.
    Returns None to use in-memory storage.
    """
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None
    if not redis_url.startswith(("redis://", "rediss://")):
        logger.warning("REDIS_URL is not a redis:// URI, using in-memory rate limiter storage")
        return None
    return redis_url


def create_limiter() -> Limiter:
    """
    Create a rate limiter with appropriate storage backend.
    Uses Redis if configured, otherwise in-memory.
    """
    storage_uri = get_storage_uri()

    if storage_uri:
        logger.info("Using Redis rate limiter storage")
        return Limiter(
            key_func=get_real_client_ip,
            storage_uri=storage_uri,
            default_limits=["100/minute"]
        )

    # In-memory storage (for development or single instance)
    logger.info("Using in-memory rate limiter storage")
    return Limiter(
        key_func=get_real_client_ip,
        default_limits=["100/minute"]
    )


# Global rate limiter instance
limiter = create_limiter()


# Different rate limits for different operations
RATE_LIMITS = {
    "reservation_create": "20/minute",
    "availability": "120/minute",
    "my_bookings": "60/minute",
    "webhook": "100/minute",
    "admin": "60/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
