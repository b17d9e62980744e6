from datetime import datetime, timedelta
from typing import Tuple

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError

from models import db
from models.rate_limit import RateLimitBucket


def bucket_key(scope: str, ip: str, email: str) -> str:
    return f"{scope}:{ip or 'unknown'}:{(email or 'unknown').strip().lower()}"[:400]


class RateLimiter:
    """
    Fixed-window request counter per (source address, email) key.

    Independent from account lockout: this one throttles request volume,
    lockout throttles authentication failures.
    """

    def __init__(self, max_requests: int = 20, window_seconds: int = 900, database=db):
        self.max_requests = max_requests
        self.window = timedelta(seconds=window_seconds)
        self.db = database

    @classmethod
    def from_config(cls, config) -> "RateLimiter":
        return cls(
            max_requests=int(config.get("RATE_LIMIT_MAX_REQUESTS", 20)),
            window_seconds=int(config.get("RATE_LIMIT_WINDOW_SECONDS", 900)),
        )

    def _ensure_bucket(self, key: str, now: datetime) -> None:
        exists = self.db.session.execute(
            select(RateLimitBucket.id).where(RateLimitBucket.key == key)
        ).first()
        if exists:
            return
        try:
            self.db.session.add(RateLimitBucket(key=key, window_start=now, count=0))
            self.db.session.commit()
        except IntegrityError:
            # another request created it first
            self.db.session.rollback()

    def hit(self, key: str, now: datetime) -> Tuple[bool, int]:
        """
        Counts one request. Returns (allowed, retry_after_seconds).
        """
        self._ensure_bucket(key, now)

        expired = RateLimitBucket.window_start <= now - self.window
        self.db.session.execute(
            update(RateLimitBucket)
            .where(RateLimitBucket.key == key)
            .values(
                count=case((expired, 1), else_=RateLimitBucket.count + 1),
                window_start=case((expired, now), else_=RateLimitBucket.window_start),
            )
            .execution_options(synchronize_session=False)
        )
        row = self.db.session.execute(
            select(RateLimitBucket.count, RateLimitBucket.window_start)
            .where(RateLimitBucket.key == key)
        ).one()
        self.db.session.commit()

        if row.count > self.max_requests:
            window_end = row.window_start + self.window
            retry_after = int((window_end - now).total_seconds())
            return False, max(retry_after, 1)

        return True, 0

    def refund(self, key: str) -> None:
        """Gives back the slot of a request that succeeded."""
        self.db.session.execute(
            update(RateLimitBucket)
            .where(RateLimitBucket.key == key, RateLimitBucket.count > 0)
            .values(count=RateLimitBucket.count - 1)
            .execution_options(synchronize_session=False)
        )
        self.db.session.commit()
