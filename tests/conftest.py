"""
Shared fixtures: an app built from TestConfig with a recording mailer and a
controllable clock injected through the factory.
"""

import re
import threading
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from app import create_app
from config import TestConfig
from models import db
from models.account import Account

STRONG_PASSWORD = "Str0ng!Pass"
API = "/api/auth"

_TOKEN_RE = re.compile(r"token=([A-Za-z0-9_\-]+)")


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime.utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingMailer:
    """Mail transport double that keeps every message in memory."""

    configured = True

    def __init__(self):
        self.sent = []
        self.fail_with = None
        self._lock = threading.Lock()

    def send(self, to_email, subject, body):
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.sent.append({"to": to_email, "subject": subject, "body": body})
        return True, None

    def messages_to(self, email):
        return [m for m in self.sent if m["to"] == email]

    def last_token(self, email, path):
        for message in reversed(self.messages_to(email)):
            if f"/{path}?" in message["body"]:
                return _TOKEN_RE.search(message["body"]).group(1)
        raise AssertionError(f"no {path} email sent to {email}")


def totp_code(secret, when, offset_steps=0):
    aware = when.replace(tzinfo=timezone.utc) + timedelta(seconds=30 * offset_steps)
    return pyotp.TOTP(secret).at(aware)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(clock, mailer):
    app = create_app(TestConfig, mailer=mailer, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    app.extensions["auth_service"].dispatcher.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    return app.extensions["auth_service"]


def fetch_account(email):
    db.session.expire_all()
    return Account.query.filter_by(email=email.lower()).first()


@pytest.fixture
def verified_account(service, mailer):
    """Registers and verifies a@example.com through the service."""
    email = "a@example.com"
    service.register(email, STRONG_PASSWORD, "Ada", "Lovelace")
    service.verify_email(mailer.last_token(email, "verify-email"))
    return fetch_account(email)


@pytest.fixture
def file_app(tmp_path, clock, mailer):
    """Same app on a SQLite file, so separate connections see real locking."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "auth.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 10, "check_same_thread": False}}

    app = create_app(FileConfig, mailer=mailer, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    app.extensions["auth_service"].dispatcher.shutdown()
