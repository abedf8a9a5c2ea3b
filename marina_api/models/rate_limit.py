"""
Rate Limit Counter Model

One fixed-window counter per abuse key (user, hashed IP, hashed email,
hashed device, unit+start-date slot). Rows are ephemeral: expires_at is the
end of the current window and the hourly purge removes stale rows.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Index
from ..database import Base


class RateLimitCounter(Base):
    __tablename__ = "rate_limit_counters"

    key = Column(String(200), primary_key=True)
    window_start = Column(DateTime, nullable=False)
    count = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_rate_limit_expires", "expires_at"),
    )

    def effective_count(self, now: datetime, window_seconds: int) -> int:
        """Count inside the current window; 0 once the window has rolled over."""
        if (now - self.window_start).total_seconds() >= window_seconds:
            return 0
        return self.count or 0

    def __repr__(self):
        return f"<RateLimitCounter {self.key} count={self.count} since={self.window_start}>"
