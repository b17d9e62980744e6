"""
Authentication service: registration, login, email verification, password
reset and two-factor enrollment.

All account state transitions go through here. Expected failures are raised
as ``AuthError`` subclasses; database failures are rolled back and surface
as ``ServiceError``.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.account import Account
from security import totp
from security.lockout import LockoutPolicy
from security.password import burn_password_check, hash_password, verify_password
from security.password_policy import validate_password
from security.session import IssuedSession, SessionManager
from security.tokens import generate_token, hash_token
from services.errors import (
    AccountLocked,
    AccountNotFound,
    AuthError,
    DeliveryError,
    DuplicateAccount,
    EmailNotVerified,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
    NotAuthenticated,
    ServiceError,
    TwoFactorRequired,
    ValidationError,
)
from services.notifications import (
    NotificationDispatcher,
    password_reset_email,
    two_factor_enabled_email,
    verification_email,
)
from services.store import CredentialStore
from utils.audit import log_event
from utils.auth_context import AuthContext

logger = structlog.get_logger(__name__)

REGISTERED_MESSAGE = "Account created successfully. Please check your email to verify your account."
RESET_REQUESTED_MESSAGE = "If an account with this email exists, you will receive a password reset link."
INVALID_TOTP_MESSAGE = "Invalid two-factor authentication code"


@dataclass
class AuthSettings:
    bcrypt_rounds: int = 12
    reset_token_ttl: timedelta = timedelta(hours=1)
    reset_min_response_seconds: float = 0.0
    verification_token_ttl: Optional[timedelta] = None
    reveal_unverified_on_login: bool = True
    totp_valid_window: int = totp.DEFAULT_VALID_WINDOW
    totp_issuer: str = "Weather App"
    frontend_url: str = "http://localhost:5173"

    @classmethod
    def from_config(cls, config) -> "AuthSettings":
        verification_ttl = config.get("VERIFICATION_TOKEN_TTL_SECONDS")
        return cls(
            bcrypt_rounds=int(config.get("BCRYPT_ROUNDS", 12)),
            reset_token_ttl=timedelta(seconds=int(config.get("RESET_TOKEN_TTL_SECONDS", 3600))),
            reset_min_response_seconds=float(config.get("RESET_MIN_RESPONSE_SECONDS", 0)),
            verification_token_ttl=timedelta(seconds=int(verification_ttl)) if verification_ttl else None,
            reveal_unverified_on_login=bool(config.get("REVEAL_UNVERIFIED_ON_LOGIN", True)),
            totp_valid_window=int(config.get("TOTP_VALID_WINDOW", totp.DEFAULT_VALID_WINDOW)),
            totp_issuer=config.get("TOTP_ISSUER", "Weather App"),
            frontend_url=config.get("FRONTEND_URL", "http://localhost:5173"),
        )


@dataclass
class LoginResult:
    user: dict
    session: IssuedSession


@dataclass
class TwoFactorSetup:
    secret: str
    otpauth_url: str
    qr_code: str


class AuthService:
    def __init__(self, store: CredentialStore, lockout: LockoutPolicy, sessions: SessionManager,
                 dispatcher: NotificationDispatcher, settings: AuthSettings = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.lockout = lockout
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.settings = settings or AuthSettings()
        self.clock = clock

    @contextmanager
    def _guard(self, operation: str):
        """
        Rolls back anything staged when the operation fails and turns
        unexpected failures into a generic ServiceError.
        """
        try:
            yield
        except AuthError:
            self.store.rollback()
            raise
        except SQLAlchemyError:
            self.store.rollback()
            logger.exception("database_error", operation=operation)
            raise ServiceError()

    # ---------- registration ----------
    def register(self, email: str, password: str, first_name: str, last_name: str) -> str:
        email = (email or "").strip().lower()
        valid, errors = validate_password(password)
        if not valid:
            raise ValidationError([{"field": "password", "message": e} for e in errors])

        with self._guard("register"):
            if self.store.email_exists(email):
                log_event("REGISTER_FAIL_EMAIL_EXISTS", email=email)
                raise DuplicateAccount()

            now = self.clock()
            token = generate_token()
            ttl = self.settings.verification_token_ttl
            account = Account(
                email=email,
                password_hash=hash_password(password, rounds=self.settings.bcrypt_rounds),
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                is_verified=False,
                verification_token_hash=hash_token(token),
                verification_token_expires=now + ttl if ttl else None,
                created_at=now,
                updated_at=now,
            )
            try:
                self.store.add_account(account)
            except IntegrityError:
                # lost a race with a concurrent registration for the same email
                raise DuplicateAccount()

            account_id, first_name = account.id, account.first_name
            token_hash = account.verification_token_hash
            # no transaction may stay open across the mail round trip
            self.store.commit()

        try:
            delivered = self.dispatcher.send_required(
                verification_email(email, first_name, token, self.settings.frontend_url)
            )
        except DeliveryError:
            with self._guard("register_undo"):
                self.store.delete_unverified(account_id, token_hash)
            log_event("REGISTER_FAIL_EMAIL_TRANSPORT", level="error", email=email)
            raise ServiceError("Failed to create account. Please try again.")

        log_event("REGISTER_SUCCESS", account_id=account_id, email_delivered=delivered)
        return REGISTERED_MESSAGE

    # ---------- login ----------
    def login(self, email: str, password: str, two_factor_code: Optional[str] = None,
              ip: str = "unknown", user_agent: Optional[str] = None,
              remember: bool = False) -> LoginResult:
        email = (email or "").strip().lower()

        with self._guard("login"):
            now = self.clock()
            attempt_id = self.store.record_attempt(email, ip, user_agent, now)

            account = self.store.get_by_email(email)
            if account is None:
                burn_password_check(password, rounds=self.settings.bcrypt_rounds)
                log_event("LOGIN_FAIL", email=email, reason="unknown_email")
                raise InvalidCredentials()

            locked_until = self.lockout.locked_until(account, now)
            if locked_until:
                log_event("LOGIN_LOCKED", account_id=account.id, locked_until=locked_until.isoformat())
                raise AccountLocked(locked_until, now)

            if not verify_password(password, account.password_hash):
                self._register_failure(account.id, now, reason="bad_password")
                raise InvalidCredentials()

            if not account.is_verified:
                log_event("LOGIN_UNVERIFIED", account_id=account.id)
                if self.settings.reveal_unverified_on_login:
                    raise EmailNotVerified()
                raise InvalidCredentials()

            counter = None
            if account.two_factor_enabled:
                if not two_factor_code:
                    log_event("LOGIN_TWO_FACTOR_REQUIRED", account_id=account.id)
                    raise TwoFactorRequired()

                counter = totp.match_counter(
                    account.two_factor_secret, str(two_factor_code).strip(), now,
                    self.settings.totp_valid_window,
                )
                if counter is None:
                    self._register_failure(account.id, now, reason="bad_totp")
                    raise InvalidCredentials(INVALID_TOTP_MESSAGE)

            account_id, account_email = account.id, account.email
            if not self.store.complete_login(account_id, now, totp_counter=counter):
                # the time-step was already used: a replayed code
                self.store.rollback()
                self._register_failure(account_id, now, reason="replayed_totp")
                raise InvalidCredentials(INVALID_TOTP_MESSAGE)

            self.store.mark_attempt_succeeded(attempt_id)
            issued = self.sessions.issue(
                account_id, account_email, now, ip=ip, user_agent=user_agent, remember=remember,
            )
            self.store.commit()

            user = self.store.get_by_id(account_id).to_public_dict()

        log_event("LOGIN_SUCCESS", account_id=account_id, remember=remember)
        return LoginResult(user=user, session=issued)

    def _register_failure(self, account_id: str, now: datetime, reason: str) -> None:
        fail_count, locked_until = self.store.register_failure(account_id, self.lockout, now)
        locked_now = bool(locked_until and locked_until > now)
        log_event(
            "LOGIN_FAIL",
            level="warning" if locked_now else "info",
            account_id=account_id,
            reason=reason,
            fail_count=fail_count,
            locked_now=locked_now,
        )

    # ---------- sessions ----------
    def authenticate(self, token: str, via_cookie: bool = False) -> AuthContext:
        with self._guard("authenticate"):
            claims = self.sessions.decode(token, self.clock())
            if self.sessions.is_revoked(claims["jti"]):
                raise NotAuthenticated("Session has been revoked")

            account = self.store.get_by_id(claims["sub"])
            if account is None:
                raise NotAuthenticated("Invalid token - user not found")
            if not account.is_verified:
                raise NotAuthenticated("Account not verified")

            return AuthContext(
                account_id=account.id,
                email=account.email,
                session_id=claims["jti"],
                via_cookie=via_cookie,
            )

    def logout(self, auth: AuthContext) -> None:
        with self._guard("logout"):
            self.sessions.revoke(auth.session_id)
        log_event("LOGOUT", account_id=auth.account_id)

    def get_account(self, account_id: str) -> dict:
        with self._guard("get_account"):
            account = self.store.get_by_id(account_id)
            if account is None:
                raise AccountNotFound()
            return account.to_public_dict()

    # ---------- email verification ----------
    def verify_email(self, token: str) -> str:
        if not token:
            raise InvalidToken("Verification token is required")

        with self._guard("verify_email"):
            now = self.clock()
            token_hash = hash_token(token)
            account = self.store.find_by_verification_token(token_hash)
            if account is None:
                raise InvalidToken()
            if account.is_verified:
                raise InvalidToken("Email address is already verified")
            if account.verification_token_expires and account.verification_token_expires <= now:
                raise InvalidToken()

            account_id = account.id
            if not self.store.consume_verification_token(account_id, token_hash, now):
                raise InvalidToken()

        log_event("EMAIL_VERIFIED", account_id=account_id)
        return "Email address verified successfully"

    # ---------- password reset ----------
    def initiate_password_reset(self, email: str) -> str:
        email = (email or "").strip().lower()
        started = time.monotonic()
        try:
            self._initiate_password_reset(email)
        finally:
            # known and unknown emails answer after the same minimum delay
            remaining = self.settings.reset_min_response_seconds - (time.monotonic() - started)
            if remaining > 0:
                time.sleep(remaining)
        return RESET_REQUESTED_MESSAGE

    def _initiate_password_reset(self, email: str) -> None:
        with self._guard("initiate_password_reset"):
            account = self.store.get_by_email(email)
            if account is None:
                log_event("PASSWORD_RESET_UNKNOWN_EMAIL", email=email)
                return

            now = self.clock()
            token = generate_token()
            ttl = self.settings.reset_token_ttl
            account_id, first_name = account.id, account.first_name
            self.store.set_reset_token(account_id, hash_token(token), now + ttl, now)

        try:
            self.dispatcher.send_required(password_reset_email(
                email, first_name, token, self.settings.frontend_url,
                ttl_minutes=int(ttl.total_seconds() // 60),
            ))
        except DeliveryError:
            log_event("PASSWORD_RESET_EMAIL_TRANSPORT", level="error", account_id=account_id)
            raise ServiceError("Failed to initiate password reset. Please try again.")

        log_event("PASSWORD_RESET_REQUESTED", account_id=account_id)

    def complete_password_reset(self, token: str, new_password: str) -> str:
        if not token:
            raise InvalidOrExpiredToken()
        valid, errors = validate_password(new_password)
        if not valid:
            raise ValidationError([{"field": "password", "message": e} for e in errors])

        with self._guard("complete_password_reset"):
            now = self.clock()
            token_hash = hash_token(token)
            account = self.store.find_by_reset_token(token_hash, now)
            if account is None:
                raise InvalidOrExpiredToken()

            account_id = account.id
            new_hash = hash_password(new_password, rounds=self.settings.bcrypt_rounds)
            if not self.store.complete_password_reset(account_id, token_hash, new_hash, now):
                raise InvalidOrExpiredToken()

        log_event("PASSWORD_RESET_COMPLETED", account_id=account_id)
        return "Password reset successfully"

    # ---------- two-factor ----------
    def _require_account(self, account_id: str) -> Account:
        account = self.store.get_by_id(account_id)
        if account is None:
            raise AccountNotFound()
        return account

    def setup_two_factor(self, account_id: str) -> TwoFactorSetup:
        with self._guard("setup_two_factor"):
            account = self._require_account(account_id)
            if account.two_factor_enabled:
                raise ValidationError.single("twoFactor", "Two-factor authentication is already enabled")

            secret = totp.new_secret()
            email = account.email
            if not self.store.store_pending_two_factor_secret(account_id, secret, self.clock()):
                raise ValidationError.single("twoFactor", "Two-factor authentication is already enabled")

        uri = totp.provisioning_uri(secret, email, self.settings.totp_issuer)
        log_event("TWO_FACTOR_SETUP_STARTED", account_id=account_id)
        return TwoFactorSetup(secret=secret, otpauth_url=uri, qr_code=totp.qr_data_uri(uri))

    def enable_two_factor(self, account_id: str, verification_code: str) -> str:
        with self._guard("enable_two_factor"):
            account = self._require_account(account_id)
            if account.two_factor_enabled:
                raise ValidationError.single("verificationCode", "Two-factor authentication is already enabled")
            if not account.two_factor_secret:
                raise ValidationError.single("verificationCode", "Two-factor setup not found")

            now = self.clock()
            secret, email, first_name = account.two_factor_secret, account.email, account.first_name
            counter = totp.match_counter(
                secret, str(verification_code or "").strip(), now, self.settings.totp_valid_window,
            )
            if counter is None:
                log_event("TWO_FACTOR_ENABLE_FAIL", account_id=account_id)
                raise ValidationError.single("verificationCode", "Invalid verification code")

            if not self.store.enable_two_factor(account_id, secret, counter, now):
                raise ValidationError.single("verificationCode", "Two-factor setup not found")

        log_event("TWO_FACTOR_ENABLED", account_id=account_id)
        self._notify_quietly(two_factor_enabled_email(email, first_name))
        return "Two-factor authentication enabled successfully"

    def disable_two_factor(self, account_id: str, password: str) -> str:
        with self._guard("disable_two_factor"):
            account = self._require_account(account_id)
            if not verify_password(password, account.password_hash):
                log_event("TWO_FACTOR_DISABLE_FAIL", account_id=account_id)
                raise ValidationError.single("password", "Invalid password")

            self.store.disable_two_factor(account_id, self.clock())

        log_event("TWO_FACTOR_DISABLED", account_id=account_id)
        return "Two-factor authentication disabled successfully"

    def _notify_quietly(self, email) -> None:
        try:
            self.dispatcher.notify(email)
        except RuntimeError:
            # executor already shut down; the notification is optional
            logger.warning("notification_dropped", kind=email.kind, exc_info=True)

    # ---------- support ----------
    def unlock_account(self, email: str) -> bool:
        with self._guard("unlock_account"):
            unlocked = self.store.unlock((email or "").strip().lower())
        if unlocked:
            log_event("ACCOUNT_UNLOCKED", email=email)
        return unlocked
