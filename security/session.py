import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from models.session import Session
from services.errors import NotAuthenticated

ALG = "HS256"


def _ts(dt: datetime) -> int:
    # naive datetimes in this codebase are UTC
    return int(dt.replace(tzinfo=timezone.utc).timestamp())


@dataclass
class IssuedSession:
    token: str
    jti: str
    expires_at: datetime
    max_age: int


class SessionManager:
    """
    Issues self-expiring JWT session credentials and keeps an audit row per
    session. The row's ``revoked`` flag is the revocation hook consulted on
    every authenticated request.
    """

    def __init__(self, store, secret: str, lifetime_seconds: int = 24 * 60 * 60,
                 remember_lifetime_seconds: int = 30 * 24 * 60 * 60):
        self.store = store
        self.secret = secret
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self.remember_lifetime = timedelta(seconds=remember_lifetime_seconds)

    @classmethod
    def from_config(cls, store, config) -> "SessionManager":
        return cls(
            store,
            secret=config["JWT_SECRET"],
            lifetime_seconds=int(config.get("SESSION_LIFETIME_SECONDS", 24 * 60 * 60)),
            remember_lifetime_seconds=int(config.get("REMEMBER_ME_LIFETIME_SECONDS", 30 * 24 * 60 * 60)),
        )

    def issue(self, account_id: str, email: str, now: datetime, ip=None, user_agent=None,
              remember: bool = False) -> IssuedSession:
        """
        Signs a token and stages its session row. The caller commits, so the
        row lands in the same transaction as the login bookkeeping.
        """
        lifetime = self.remember_lifetime if remember else self.lifetime
        expires_at = now + lifetime
        jti = uuid.uuid4().hex

        payload = {
            "sub": account_id,
            "email": email,
            "jti": jti,
            "iat": _ts(now),
            "exp": _ts(expires_at),
        }
        token = jwt.encode(payload, self.secret, algorithm=ALG)

        self.store.add_session(Session(
            account_id=account_id,
            jti=jti,
            issued_at=now,
            expires_at=expires_at,
            ip=ip[:64] if ip else None,
            user_agent=user_agent[:255] if user_agent else None,
        ))
        return IssuedSession(token=token, jti=jti, expires_at=expires_at,
                             max_age=int(lifetime.total_seconds()))

    def decode(self, token: str, now: datetime) -> dict:
        # expiry is checked against the service clock below, not wall time
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[ALG],
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "jti", "exp"]},
            )
        except jwt.InvalidTokenError:
            raise NotAuthenticated("Invalid token")

        if claims["exp"] <= _ts(now):
            raise NotAuthenticated("Token expired")
        return claims

    def is_revoked(self, jti: str) -> bool:
        row = self.store.get_session(jti)
        return row is None or row.revoked

    def revoke(self, jti: str) -> bool:
        return self.store.revoke_session(jti)
