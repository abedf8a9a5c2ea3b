"""
Multi-key abuse rate limiter.

Every reservation attempt is charged against several independent identity
dimensions at once. The check and all increments commit together: either
every key is incremented or (when any key is over budget) none is.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings, parse_budget
from ..models.rate_limit import RateLimitCounter
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.errors import ResourceExhausted
from ..utils.rate_limiter import hash_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitKey:
    key: str
    max_attempts: int
    window_seconds: int


@dataclass
class RateLimitDecision:
    allowed: bool
    counts: Dict[str, int]
    blocked_key: Optional[str] = None


def default_budgets() -> Dict[str, tuple]:
    return {
        "user": parse_budget(settings.rate_limit_user),
        "ip": parse_budget(settings.rate_limit_ip),
        "email": parse_budget(settings.rate_limit_email),
        "device": parse_budget(settings.rate_limit_device),
        "slot": parse_budget(settings.rate_limit_slot),
    }


def build_keys(
    uid: Optional[str] = None,
    ip: Optional[str] = None,
    email: Optional[str] = None,
    device: Optional[str] = None,
    unit_id: Optional[str] = None,
    start_date: Optional[str] = None,
    budgets: Optional[Dict[str, tuple]] = None
) -> List[RateLimitKey]:
    """
    Keys for one reservation attempt. Missing dimensions are skipped;
    IP, email and device are stored hashed.
    """
    budgets = budgets or default_budgets()
    keys = []

    def add(dimension: str, value: Optional[str]):
        if value:
            max_attempts, window = budgets[dimension]
            keys.append(RateLimitKey(f"{dimension}:{value}", max_attempts, window))

    add("user", uid)
    add("ip", hash_identity(ip))
    add("email", hash_identity(email))
    add("device", hash_identity(device))
    if unit_id and start_date:
        add("slot", f"{unit_id}:{start_date}")

    return keys


class RateLimitService:
    """Check-and-increment for a set of keys in one transaction."""

    def __init__(self, db: Session):
        self.db = db

    def check_and_increment(self, keys: List[RateLimitKey], now: Optional[datetime] = None) -> RateLimitDecision:
        """
        Raises:
            ResourceExhausted: some key is at or over its budget; nothing
                was incremented
        """
        now = now or datetime.utcnow()
        # Stable order keeps concurrent requests locking rows the same way
        unique = sorted({k.key: k for k in keys}.values(), key=lambda k: k.key)
        if not unique:
            return RateLimitDecision(allowed=True, counts={})

        def work(db: Session) -> RateLimitDecision:
            rows = {}
            for limit in unique:
                rows[limit.key] = acquire_row_lock(db, RateLimitCounter, RateLimitCounter.key == limit.key)

            # Check every key before touching any of them
            for limit in unique:
                row = rows[limit.key]
                effective = row.effective_count(now, limit.window_seconds) if row else 0
                if effective >= limit.max_attempts:
                    return RateLimitDecision(allowed=False, counts={}, blocked_key=limit.key)

            counts = {}
            for limit in unique:
                row = rows[limit.key]
                if row is None:
                    row = RateLimitCounter(key=limit.key, window_start=now, count=0)
                    db.add(row)
                elif row.effective_count(now, limit.window_seconds) == 0:
                    # Window rolled over
                    row.window_start = now
                    row.count = 0
                row.count = (row.count or 0) + 1
                row.expires_at = row.window_start + timedelta(seconds=limit.window_seconds)
                row.updated_at = now
                counts[limit.key] = row.count
            return RateLimitDecision(allowed=True, counts=counts)

        decision = run_in_transaction(self.db, work, label="rate-limit")

        if not decision.allowed:
            dimension = decision.blocked_key.split(":", 1)[0]
            logger.warning(f"Rate limit exceeded on {dimension} key")
            raise ResourceExhausted("Too many reservation attempts, please try again later", field=dimension)

        return decision
