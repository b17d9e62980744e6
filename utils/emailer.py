import smtplib
from email.message import EmailMessage
from typing import Optional, Tuple

from services.errors import DeliveryError


class SmtpMailer:
    def __init__(self, host: Optional[str], port: int = 587, username: Optional[str] = None,
                 password: Optional[str] = None, from_email: Optional[str] = None,
                 use_tls: bool = True, timeout: float = 10):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "SmtpMailer":
        # the socket timeout applies per SMTP step (connect, STARTTLS, send);
        # keep a full exchange within the dispatcher's wait
        send_timeout = float(config.get("MAIL_SEND_TIMEOUT_SECONDS", 15))
        timeout = min(float(config.get("SMTP_TIMEOUT_SECONDS", 10)), send_timeout / 3)
        return cls(
            host=config.get("SMTP_HOST"),
            port=config.get("SMTP_PORT", 587),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            from_email=config.get("SMTP_FROM_EMAIL"),
            use_tls=config.get("SMTP_USE_TLS", True),
            timeout=timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to_email: str, subject: str, body: str) -> Tuple[bool, Optional[str]]:
        """
        Returns (False, reason) when nothing was attempted. Raises
        DeliveryError when the SMTP exchange itself fails.
        """
        if not self.configured:
            return False, "Email not configured"

        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(str(exc)) from exc
        return True, None
