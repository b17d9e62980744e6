"""
Outbound account emails and the bounded dispatcher that sends them.

Required emails (verification link, reset link) are awaited by the caller,
because the user cannot proceed without them. Notification-only emails are
queued and the caller moves on; their failures are logged and dropped.
"""

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from urllib.parse import urlencode

import structlog

from services.errors import DeliveryError

logger = structlog.get_logger(__name__)

APP_NAME = "Weather App"


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    body: str
    kind: str


def verification_email(to: str, first_name: str, token: str, frontend_url: str) -> OutgoingEmail:
    link = f"{frontend_url.rstrip('/')}/verify-email?{urlencode({'token': token})}"
    body = (
        f"Hi {first_name}!\n\n"
        f"Thank you for creating an account with {APP_NAME}. To complete your registration, "
        "please verify your email address by opening the link below:\n\n"
        f"{link}\n\n"
        "If you didn't create this account, please ignore this email.\n\n"
        f"Best regards,\nThe {APP_NAME} Team"
    )
    return OutgoingEmail(to=to, subject=f"Verify Your {APP_NAME} Account", body=body, kind="verification")


def password_reset_email(to: str, first_name: str, token: str, frontend_url: str,
                         ttl_minutes: int) -> OutgoingEmail:
    link = f"{frontend_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"
    body = (
        f"Hi {first_name}!\n\n"
        f"We received a request to reset your {APP_NAME} password. "
        "If you made this request, open the link below to choose a new password:\n\n"
        f"{link}\n\n"
        f"This link expires in {ttl_minutes} minutes and can be used once. "
        "If you didn't request a reset, ignore this email; your password stays unchanged.\n\n"
        f"Best regards,\nThe {APP_NAME} Team"
    )
    return OutgoingEmail(to=to, subject=f"Reset Your {APP_NAME} Password", body=body, kind="password_reset")


def two_factor_enabled_email(to: str, first_name: str) -> OutgoingEmail:
    body = (
        f"Hi {first_name}!\n\n"
        "Two-factor authentication is now enabled on your account. From now on you'll need "
        "a code from your authenticator app when logging in.\n\n"
        "If you didn't enable two-factor authentication, please contact our support team immediately.\n\n"
        f"Best regards,\nThe {APP_NAME} Team"
    )
    return OutgoingEmail(to=to, subject="Two-Factor Authentication Enabled", body=body, kind="two_factor_enabled")


class NotificationDispatcher:
    def __init__(self, mailer, max_workers: int = 4, send_timeout: float = 15):
        self.mailer = mailer
        self.send_timeout = send_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mail")

    @classmethod
    def from_config(cls, mailer, config) -> "NotificationDispatcher":
        return cls(
            mailer,
            max_workers=int(config.get("MAIL_MAX_WORKERS", 4)),
            send_timeout=float(config.get("MAIL_SEND_TIMEOUT_SECONDS", 15)),
        )

    def _deliver(self, email: OutgoingEmail):
        return self.mailer.send(email.to, email.subject, email.body)

    def send_required(self, email: OutgoingEmail) -> bool:
        """
        Sends and waits. Returns whether the message went out; raises
        DeliveryError if the transport failed or did not answer in time.
        """
        future = self._executor.submit(self._deliver, email)
        try:
            sent, reason = future.result(timeout=self.send_timeout)
        except FutureTimeout as exc:
            # a send already in flight cannot be cancelled and may still be delivered
            in_flight = not future.cancel()
            logger.error("email_send_timeout", kind=email.kind, timeout=self.send_timeout,
                         send_may_complete=in_flight)
            raise DeliveryError("Timed out sending email") from exc
        except DeliveryError:
            logger.error("email_send_failed", kind=email.kind, exc_info=True)
            raise

        if sent:
            logger.info("email_sent", kind=email.kind)
        else:
            logger.warning("email_not_sent", kind=email.kind, reason=reason)
        return sent

    def notify(self, email: OutgoingEmail) -> Future:
        """Queues a notification-only email and returns immediately."""
        future = self._executor.submit(self._deliver, email)
        future.add_done_callback(lambda f: self._log_notification(email, f))
        return future

    @staticmethod
    def _log_notification(email: OutgoingEmail, future: Future) -> None:
        if future.cancelled():
            logger.warning("notification_cancelled", kind=email.kind)
            return
        exc = future.exception()
        if exc is not None:
            logger.error("notification_failed", kind=email.kind, error=str(exc))
            return
        sent, reason = future.result()
        if sent:
            logger.info("notification_sent", kind=email.kind)
        else:
            logger.warning("notification_not_sent", kind=email.kind, reason=reason)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
