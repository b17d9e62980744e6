from datetime import datetime

import click
import structlog
from flask import Flask
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config, DEV_SECRET
from models import db
from routes import create_auth_blueprint, health_bp, register_error_handlers
from security.lockout import LockoutPolicy
from security.rate_limit import RateLimiter
from security.session import SessionManager
from services.auth_service import AuthService, AuthSettings
from services.notifications import NotificationDispatcher
from services.store import CredentialStore
from utils.emailer import SmtpMailer
from utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def _check_secrets(config) -> None:
    if config.get("APP_ENV") != "production":
        return
    for name in ("SECRET_KEY", "JWT_SECRET"):
        if not config.get(name) or config.get(name) == DEV_SECRET:
            raise RuntimeError(f"Required environment variable {name} is not set")


def create_app(config_object=None, mailer=None, clock=None):
    """
    Builds the app and its collaborators once. The store, dispatcher and
    service are passed explicitly to the blueprint; nothing is a module
    global.
    """
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    _check_secrets(app.config)

    # only trust X-Forwarded-For when a known number of proxies sits in front
    proxies = int(app.config.get("TRUSTED_PROXY_COUNT", 0))
    if proxies > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies, x_proto=proxies)

    setup_logging(app.config.get("LOG_LEVEL", "INFO"), json_logs=app.config.get("LOG_JSON", False))

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    store = CredentialStore(db)
    dispatcher = NotificationDispatcher.from_config(
        mailer or SmtpMailer.from_config(app.config), app.config
    )
    auth_service = AuthService(
        store=store,
        lockout=LockoutPolicy.from_config(app.config),
        sessions=SessionManager.from_config(store, app.config),
        dispatcher=dispatcher,
        settings=AuthSettings.from_config(app.config),
        clock=clock or datetime.utcnow,
    )
    limiter = RateLimiter.from_config(app.config)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(create_auth_blueprint(
        auth_service,
        limiter,
        cookie_name=app.config.get("AUTH_COOKIE_NAME", "authToken"),
        url_prefix=app.config.get("AUTH_URL_PREFIX", "/api/auth"),
    ))
    register_error_handlers(app)

    # handle for the CLI and tests; request handlers get the service via the blueprint factory
    app.extensions["auth_service"] = auth_service

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app, auth_service)

    logger.info("app_created", env=app.config.get("APP_ENV"))
    return app

#-------------------------

def register_cli(app, auth_service: AuthService):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables (use `flask db upgrade` for managed schemas)."""
        db.create_all()
        click.echo("Database initialized")

    @app.cli.command("unlock-account")
    @click.argument("email")
    def unlock_account(email):
        """Clear failed-attempt counter and lockout for an account."""
        if auth_service.unlock_account(email):
            click.echo(f"{email.strip().lower()} unlocked")
        else:
            click.echo("User not found")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
    # Run locally
    app.run(host="127.0.0.1", port=3001)
