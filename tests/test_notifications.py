import threading

import pytest

from services.errors import DeliveryError
from services.notifications import (
    NotificationDispatcher,
    OutgoingEmail,
    password_reset_email,
    two_factor_enabled_email,
    verification_email,
)
from tests.conftest import RecordingMailer
from utils.emailer import SmtpMailer

MESSAGE = OutgoingEmail(to="a@example.com", subject="Hello", body="Body", kind="test")


class BlockingMailer:
    def __init__(self):
        self.release = threading.Event()

    def send(self, to_email, subject, body):
        self.release.wait(5)
        return True, None


@pytest.fixture
def recording():
    return RecordingMailer()


@pytest.fixture
def dispatcher(recording):
    dispatcher = NotificationDispatcher(recording, max_workers=2, send_timeout=2)
    yield dispatcher
    dispatcher.shutdown()


class TestEmailBuilders:
    def test_verification_link(self):
        email = verification_email("a@example.com", "Ada", "tok-123", "https://weather.example/")
        assert email.kind == "verification"
        assert "https://weather.example/verify-email?token=tok-123" in email.body
        assert "Hi Ada!" in email.body

    def test_reset_link_and_expiry(self):
        email = password_reset_email("a@example.com", "Ada", "tok-456", "https://weather.example", ttl_minutes=60)
        assert "https://weather.example/reset-password?token=tok-456" in email.body
        assert "60 minutes" in email.body

    def test_two_factor_notice(self):
        email = two_factor_enabled_email("a@example.com", "Ada")
        assert email.subject == "Two-Factor Authentication Enabled"


class TestSendRequired:
    def test_delivered(self, dispatcher, recording):
        assert dispatcher.send_required(MESSAGE) is True
        assert recording.messages_to("a@example.com")[0]["subject"] == "Hello"

    def test_transport_failure_raises(self, dispatcher, recording):
        recording.fail_with = DeliveryError("connection refused")
        with pytest.raises(DeliveryError):
            dispatcher.send_required(MESSAGE)

    def test_unconfigured_transport_reports_not_sent(self):
        dispatcher = NotificationDispatcher(SmtpMailer(host=None), max_workers=1)
        try:
            assert dispatcher.send_required(MESSAGE) is False
        finally:
            dispatcher.shutdown()

    def test_timeout_raises(self):
        mailer = BlockingMailer()
        dispatcher = NotificationDispatcher(mailer, max_workers=1, send_timeout=0.05)
        try:
            with pytest.raises(DeliveryError):
                dispatcher.send_required(MESSAGE)
        finally:
            mailer.release.set()
            dispatcher.shutdown()


class TestNotify:
    def test_queued_send(self, dispatcher, recording):
        dispatcher.notify(MESSAGE).result(timeout=2)
        assert len(recording.sent) == 1

    def test_failure_does_not_reach_caller(self, dispatcher, recording):
        recording.fail_with = DeliveryError("connection refused")
        future = dispatcher.notify(MESSAGE)
        assert isinstance(future.exception(timeout=2), DeliveryError)
        assert recording.sent == []


class TestSmtpMailer:
    def test_not_configured(self):
        assert SmtpMailer(host=None).send("a@example.com", "s", "b") == (False, "Email not configured")

    def test_from_config(self):
        mailer = SmtpMailer.from_config({"SMTP_HOST": "smtp.example.com", "SMTP_USERNAME": "bot@example.com"})
        assert mailer.configured
        assert mailer.from_email == "bot@example.com"

    def test_socket_timeout_fits_inside_send_timeout(self):
        mailer = SmtpMailer.from_config({"SMTP_TIMEOUT_SECONDS": 30, "MAIL_SEND_TIMEOUT_SECONDS": 15})
        assert mailer.timeout == 5

    def test_shorter_socket_timeout_kept(self):
        mailer = SmtpMailer.from_config({"SMTP_TIMEOUT_SECONDS": 2, "MAIL_SEND_TIMEOUT_SECONDS": 15})
        assert mailer.timeout == 2

    def test_connection_failure_raises(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr("utils.emailer.smtplib.SMTP", refuse)
        mailer = SmtpMailer(host="smtp.example.com", from_email="bot@example.com")
        with pytest.raises(DeliveryError):
            mailer.send("a@example.com", "s", "b")
