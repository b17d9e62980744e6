"""
Behaviour under concurrent requests, on a file-backed SQLite database.
"""

import sqlite3
import threading

import pytest

from services.errors import InvalidCredentials
from tests.conftest import STRONG_PASSWORD, fetch_account


class WriteCheckingMailer:
    """Tries to take the database write lock from inside the send."""

    def __init__(self, db_path):
        self.db_path = db_path
        self.write_lock_free = None

    def send(self, to_email, subject, body):
        conn = sqlite3.connect(self.db_path, timeout=0, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("ROLLBACK")
            self.write_lock_free = True
        except sqlite3.OperationalError:
            self.write_lock_free = False
        finally:
            conn.close()
        return True, None


@pytest.fixture
def service(file_app):
    return file_app.extensions["auth_service"]


def register_verified(service, mailer, email):
    service.register(email, STRONG_PASSWORD, "Ada", "Lovelace")
    service.verify_email(mailer.last_token(email, "verify-email"))


class TestRegistrationTransaction:
    def test_no_write_lock_held_while_sending(self, service, tmp_path):
        checking = WriteCheckingMailer(str(tmp_path / "auth.db"))
        service.dispatcher.mailer = checking

        service.register("a@example.com", STRONG_PASSWORD, "Ada", "Lovelace")

        assert checking.write_lock_free is True
        assert fetch_account("a@example.com") is not None


class TestConcurrentFailures:
    def test_parallel_failures_all_counted(self, file_app, service, mailer):
        register_verified(service, mailer, "b@example.com")
        threads_count = service.lockout.max_attempts
        barrier = threading.Barrier(threads_count)
        unexpected = []

        def attempt():
            with file_app.app_context():
                barrier.wait()
                try:
                    service.login("b@example.com", "Wr0ng!Pass", ip="10.0.0.1")
                except InvalidCredentials:
                    pass
                except Exception as exc:
                    unexpected.append(exc)

        threads = [threading.Thread(target=attempt) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert unexpected == []
        account = fetch_account("b@example.com")
        assert account.failed_login_attempts == threads_count
        assert account.locked_until is not None
