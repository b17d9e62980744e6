import os

from dotenv import load_dotenv

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

load_dotenv(os.path.join(BASE_DIR, ".env"))

DEV_SECRET = "dev-only-change-me"


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    APP_ENV = os.getenv("APP_ENV", "development")

    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", DEV_SECRET)
    JWT_SECRET = os.getenv("JWT_SECRET", DEV_SECRET)

    # SQLite database file stored next to the app as weather_auth.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "weather_auth.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # bounded waits on the database: sqlite busy timeout / pool checkout
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": {"timeout": 10}}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else {"pool_timeout": 10, "pool_pre_ping": True}
    )

    AUTH_URL_PREFIX = os.getenv("AUTH_URL_PREFIX", "/api/auth")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "authToken"

    # 1 day by default, 30 days with "remember me"
    SESSION_LIFETIME_SECONDS = int(os.getenv("SESSION_LIFETIME_SECONDS", str(24 * 60 * 60)))
    REMEMBER_ME_LIFETIME_SECONDS = int(os.getenv("REMEMBER_ME_LIFETIME_SECONDS", str(30 * 24 * 60 * 60)))

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Strict"
    SESSION_COOKIE_SECURE = _bool("SESSION_COOKIE_SECURE", "false")  # set true when using HTTPS

    # Brute-force protection
    MAX_FAILED_ATTEMPTS = int(os.getenv("MAX_FAILED_ATTEMPTS", "5"))
    LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", "30"))

    # Request throttle per (ip, email); successful requests are not counted
    RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900"))
    RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "20"))

    # Number of reverse proxies whose X-Forwarded-For is honoured; 0 = use the socket address
    TRUSTED_PROXY_COUNT = int(os.getenv("TRUSTED_PROXY_COUNT", "0"))

    # Password hashing & policy
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    PASSWORD_MIN_LEN = 8
    PASSWORD_MAX_LEN = 128

    # Single-use tokens
    RESET_TOKEN_TTL_SECONDS = int(os.getenv("RESET_TOKEN_TTL_SECONDS", "3600"))
    # forgot-password answers no sooner than this, whether or not the email exists
    RESET_MIN_RESPONSE_SECONDS = float(os.getenv("RESET_MIN_RESPONSE_SECONDS", "1.0"))
    # unset = verification links never expire
    VERIFICATION_TOKEN_TTL_SECONDS = os.getenv("VERIFICATION_TOKEN_TTL_SECONDS")

    # Login reports "email not verified" after a correct password when true;
    # false folds it into the generic invalid-credentials answer
    REVEAL_UNVERIFIED_ON_LOGIN = _bool("REVEAL_UNVERIFIED_ON_LOGIN", "true")

    # TOTP
    TOTP_ISSUER = os.getenv("TOTP_ISSUER", "Weather App")
    TOTP_VALID_WINDOW = int(os.getenv("TOTP_VALID_WINDOW", "2"))

    # Links in emails point here
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _bool("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT_SECONDS = float(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))

    # Mail dispatcher
    MAIL_MAX_WORKERS = int(os.getenv("MAIL_MAX_WORKERS", "4"))
    MAIL_SEND_TIMEOUT_SECONDS = float(os.getenv("MAIL_SEND_TIMEOUT_SECONDS", "15"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = _bool("LOG_JSON", "false")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    APP_ENV = "testing"
    SECRET_KEY = "test-secret"
    JWT_SECRET = "test-jwt-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    BCRYPT_ROUNDS = 4
    RESET_MIN_RESPONSE_SECONDS = 0
    MAX_FAILED_ATTEMPTS = 5
    LOCKOUT_MINUTES = 30
    RATE_LIMIT_WINDOW_SECONDS = 900
    RATE_LIMIT_MAX_REQUESTS = 20
    TRUSTED_PROXY_COUNT = 0
    REVEAL_UNVERIFIED_ON_LOGIN = True
    VERIFICATION_TOKEN_TTL_SECONDS = None
    MAIL_MAX_WORKERS = 2
    MAIL_SEND_TIMEOUT_SECONDS = 5
    LOG_LEVEL = "WARNING"
