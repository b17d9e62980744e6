from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, null

from models.account import Account


class LockoutPolicy:
    """
    Per-account lockout state machine:

        Unlocked --(max_attempts consecutive failures)--> Locked(until T)
        Locked   --(T elapses, or a successful login/reset)--> Unlocked

    The policy only describes the transitions. The store applies them as a
    single UPDATE so concurrent failures can neither under-count nor
    over-lock.
    """

    def __init__(self, max_attempts: int = 5, lockout_duration: timedelta = timedelta(minutes=30)):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration

    @classmethod
    def from_config(cls, config) -> "LockoutPolicy":
        return cls(
            max_attempts=int(config.get("MAX_FAILED_ATTEMPTS", 5)),
            lockout_duration=timedelta(minutes=int(config.get("LOCKOUT_MINUTES", 30))),
        )

    def locked_until(self, account: Account, now: datetime) -> Optional[datetime]:
        """Returns the unlock time if the account is locked right now."""
        if account.locked_until and account.locked_until > now:
            return account.locked_until
        return None

    def failure_values(self, now: datetime) -> dict:
        """
        Column values for one failed attempt, as SQL expressions over the
        row's current state.
        """
        lock_expired = and_(Account.locked_until.isnot(None), Account.locked_until <= now)
        # a lapsed lock starts a fresh run of failures
        new_count = case((lock_expired, 1), else_=Account.failed_login_attempts + 1)
        return {
            "failed_login_attempts": new_count,
            "locked_until": case(
                (new_count >= self.max_attempts, now + self.lockout_duration),
                (lock_expired, null()),
                else_=Account.locked_until,
            ),
            "updated_at": now,
        }

    @staticmethod
    def cleared_values() -> dict:
        return {"failed_login_attempts": 0, "locked_until": None}
