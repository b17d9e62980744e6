"""
Credential store: the only code that writes accounts, sessions and login
attempts.

Per-account mutations are issued as single conditional UPDATE statements and
report whether they matched, so two racing requests cannot both consume the
same token or lose a failed-attempt increment.
"""

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import delete, or_, select, update

from models import db
from models.account import Account
from models.login_attempt import LoginAttempt
from models.session import Session
from security.lockout import LockoutPolicy


class CredentialStore:
    def __init__(self, database=db):
        self.db = database

    # ---------- transactions ----------
    def commit(self) -> None:
        self.db.session.commit()

    def rollback(self) -> None:
        self.db.session.rollback()

    def _update(self, stmt) -> int:
        result = self.db.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    # ---------- accounts ----------
    def get_by_email(self, email: str) -> Optional[Account]:
        return Account.query.filter_by(email=email).first()

    def get_by_id(self, account_id: str) -> Optional[Account]:
        return self.db.session.get(Account, account_id)

    def email_exists(self, email: str) -> bool:
        return self.db.session.execute(
            select(Account.id).where(Account.email == email)
        ).first() is not None

    def add_account(self, account: Account) -> Account:
        """Stages a new account; flushed so a duplicate email fails here."""
        self.db.session.add(account)
        self.db.session.flush()
        return account

    def delete_unverified(self, account_id: str, token_hash: str) -> bool:
        """
        Removes an account whose verification link never went out. Matches
        only while it is still unverified with that same pending token.
        """
        stmt = (
            delete(Account)
            .where(
                Account.id == account_id,
                Account.verification_token_hash == token_hash,
                Account.is_verified.is_(False),
            )
        )
        removed = self._update(stmt) == 1
        self.commit()
        return removed

    def unlock(self, email: str) -> bool:
        stmt = (
            update(Account)
            .where(Account.email == email)
            .values(**LockoutPolicy.cleared_values())
        )
        matched = self._update(stmt)
        self.commit()
        return matched == 1

    # ---------- login attempts ----------
    def record_attempt(self, email: str, ip: str, user_agent: Optional[str], now: datetime) -> int:
        row = LoginAttempt(
            email=email[:255],
            ip=(ip or "unknown")[:64],
            user_agent=user_agent[:255] if user_agent else None,
            success=False,
            attempted_at=now,
        )
        self.db.session.add(row)
        self.commit()
        return row.id

    def mark_attempt_succeeded(self, attempt_id: int) -> None:
        self._update(
            update(LoginAttempt).where(LoginAttempt.id == attempt_id).values(success=True)
        )

    # ---------- lockout accounting ----------
    def register_failure(self, account_id: str, policy: LockoutPolicy,
                         now: datetime) -> Tuple[int, Optional[datetime]]:
        """
        Counts one failed attempt and locks the account when the threshold is
        reached, in one statement. Returns (fail_count, locked_until).
        """
        self._update(
            update(Account)
            .where(Account.id == account_id)
            .values(**policy.failure_values(now))
        )
        row = self.db.session.execute(
            select(Account.failed_login_attempts, Account.locked_until)
            .where(Account.id == account_id)
        ).one()
        self.commit()
        return row.failed_login_attempts, row.locked_until

    def complete_login(self, account_id: str, now: datetime,
                       totp_counter: Optional[int] = None) -> bool:
        """
        Clears lockout state and stamps last_login. With a TOTP counter the
        update only matches if that time-step has not been used before, which
        rejects replayed codes. Not committed: the caller adds the session row
        in the same transaction.
        """
        stmt = update(Account).where(Account.id == account_id)
        values = dict(LockoutPolicy.cleared_values(), last_login=now, updated_at=now)
        if totp_counter is not None:
            stmt = stmt.where(or_(
                Account.two_factor_last_counter.is_(None),
                Account.two_factor_last_counter < totp_counter,
            ))
            values["two_factor_last_counter"] = totp_counter
        return self._update(stmt.values(**values)) == 1

    # ---------- email verification ----------
    def find_by_verification_token(self, token_hash: str) -> Optional[Account]:
        return Account.query.filter_by(verification_token_hash=token_hash).first()

    def consume_verification_token(self, account_id: str, token_hash: str, now: datetime) -> bool:
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.verification_token_hash == token_hash,
                Account.is_verified.is_(False),
                or_(Account.verification_token_expires.is_(None),
                    Account.verification_token_expires > now),
            )
            .values(
                is_verified=True,
                verification_token_hash=None,
                verification_token_expires=None,
                updated_at=now,
            )
        )
        consumed = self._update(stmt) == 1
        self.commit()
        return consumed

    # ---------- password reset ----------
    def set_reset_token(self, account_id: str, token_hash: str, expires_at: datetime, now: datetime) -> None:
        self._update(
            update(Account)
            .where(Account.id == account_id)
            .values(reset_token_hash=token_hash, reset_token_expires=expires_at, updated_at=now)
        )
        self.commit()

    def find_by_reset_token(self, token_hash: str, now: datetime) -> Optional[Account]:
        return (
            Account.query
            .filter(Account.reset_token_hash == token_hash, Account.reset_token_expires > now)
            .first()
        )

    def complete_password_reset(self, account_id: str, token_hash: str,
                                new_password_hash: str, now: datetime) -> bool:
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.reset_token_hash == token_hash,
                Account.reset_token_expires > now,
            )
            .values(
                password_hash=new_password_hash,
                reset_token_hash=None,
                reset_token_expires=None,
                updated_at=now,
                **LockoutPolicy.cleared_values(),
            )
        )
        done = self._update(stmt) == 1
        self.commit()
        return done

    # ---------- two-factor ----------
    def store_pending_two_factor_secret(self, account_id: str, secret: str, now: datetime) -> bool:
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.two_factor_enabled.is_(False))
            .values(two_factor_secret=secret, two_factor_last_counter=None, updated_at=now)
        )
        stored = self._update(stmt) == 1
        self.commit()
        return stored

    def enable_two_factor(self, account_id: str, secret: str, counter: int, now: datetime) -> bool:
        # matches only if the secret was not replaced by a concurrent setup
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.two_factor_secret == secret,
                Account.two_factor_enabled.is_(False),
            )
            .values(two_factor_enabled=True, two_factor_last_counter=counter, updated_at=now)
        )
        enabled = self._update(stmt) == 1
        self.commit()
        return enabled

    def disable_two_factor(self, account_id: str, now: datetime) -> None:
        self._update(
            update(Account)
            .where(Account.id == account_id)
            .values(
                two_factor_enabled=False,
                two_factor_secret=None,
                two_factor_last_counter=None,
                updated_at=now,
            )
        )
        self.commit()

    # ---------- sessions ----------
    def add_session(self, session_row: Session) -> Session:
        self.db.session.add(session_row)
        return session_row

    def get_session(self, jti: str) -> Optional[Session]:
        return Session.query.filter_by(jti=jti).first()

    def revoke_session(self, jti: str) -> bool:
        revoked = self._update(
            update(Session).where(Session.jti == jti, Session.revoked.is_(False)).values(revoked=True)
        ) == 1
        self.commit()
        return revoked
