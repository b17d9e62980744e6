
import structlog
from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from security.csrf import issue_csrf_token, new_csrf_token, require_csrf
from security.rate_limit import RateLimiter, bucket_key
from services.auth_service import AuthService
from services.errors import AuthError, RateLimited
from utils.audit import client_ip, log_event
from utils.auth_context import make_login_required
from utils.validation import (
    require_field,
    validate_email_only,
    validate_login,
    validate_password_reset,
    validate_registration,
)

logger = structlog.get_logger(__name__)


def create_auth_blueprint(auth_service: AuthService, limiter: RateLimiter,
                          cookie_name: str, url_prefix: str = "/api/auth") -> Blueprint:
    """
    Auth routes bound to explicitly constructed collaborators; nothing is
    looked up from module globals.
    """
    auth_bp = Blueprint("auth", __name__, url_prefix=url_prefix)
    login_required = make_login_required(auth_service, cookie_name, csrf_check=require_csrf)

    def _body() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def _throttle(scope: str, email: str) -> str:
        key = bucket_key(scope, client_ip(), email)
        allowed, retry_after = limiter.hit(key, auth_service.clock())
        if not allowed:
            log_event("RATE_LIMITED", scope=scope, email=email, retry_after=retry_after)
            raise RateLimited(retry_after)
        return key

    def _email_hint(data: dict) -> str:
        value = data.get("email")
        return value if isinstance(value, str) else ""

    @auth_bp.post("/register")
    def register():
        data = _body()
        key = _throttle("register", _email_hint(data))
        fields = validate_registration(data)

        message = auth_service.register(**fields)
        limiter.refund(key)
        return jsonify(success=True, message=message), 201

    @auth_bp.post("/login")
    def login():
        data = _body()
        key = _throttle("login", _email_hint(data))
        fields = validate_login(data)

        result = auth_service.login(
            fields["email"],
            fields["password"],
            two_factor_code=fields["two_factor_code"],
            ip=client_ip(),
            user_agent=request.headers.get("User-Agent") or "unknown",
            remember=fields["remember"],
        )
        limiter.refund(key)

        resp = jsonify(
            success=True,
            message="Login successful",
            user=result.user,
            token=result.session.token,
        )
        resp.set_cookie(
            cookie_name,
            result.session.token,
            httponly=True,
            secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
            samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Strict"),
            max_age=result.session.max_age,
            path="/",
        )
        resp = issue_csrf_token(resp)
        return resp, 200

    @auth_bp.post("/logout")
    @login_required
    def logout(auth):
        auth_service.logout(auth)

        resp = jsonify(success=True, message="Logout successful")
        resp.delete_cookie(cookie_name, path="/")
        return resp, 200

    @auth_bp.get("/verify-email")
    def verify_email():
        token = request.args.get("token", "")
        message = auth_service.verify_email(token)
        return jsonify(success=True, message=message), 200

    @auth_bp.post("/forgot-password")
    def forgot_password():
        data = _body()
        key = _throttle("forgot-password", _email_hint(data))
        email = validate_email_only(data)

        message = auth_service.initiate_password_reset(email)
        limiter.refund(key)
        # same body whether or not the account exists
        return jsonify(success=True, message=message), 200

    @auth_bp.post("/reset-password")
    def reset_password():
        data = _body()
        key = _throttle("reset-password", _email_hint(data))
        fields = validate_password_reset(data)

        message = auth_service.complete_password_reset(fields["token"], fields["password"])
        limiter.refund(key)
        return jsonify(success=True, message=message), 200

    @auth_bp.get("/me")
    @login_required
    def me(auth):
        user = auth_service.get_account(auth.account_id)
        return jsonify(success=True, user=user), 200

    @auth_bp.post("/setup-2fa")
    @login_required
    def setup_two_factor(auth):
        setup = auth_service.setup_two_factor(auth.account_id)
        return jsonify(
            success=True,
            message="Two-factor authentication setup initiated",
            secret=setup.secret,
            qrCode=setup.qr_code,
            otpauthUrl=setup.otpauth_url,
        ), 200

    @auth_bp.post("/enable-2fa")
    @login_required
    def enable_two_factor(auth):
        code = require_field(_body(), "verificationCode", "Verification code is required")
        message = auth_service.enable_two_factor(auth.account_id, code)
        return jsonify(success=True, message=message), 200

    @auth_bp.post("/disable-2fa")
    @login_required
    def disable_two_factor(auth):
        password = require_field(_body(), "password", "Password is required")
        message = auth_service.disable_two_factor(auth.account_id, password)
        return jsonify(success=True, message=message), 200

    @auth_bp.get("/csrf-token")
    def csrf_token():
        token = new_csrf_token()
        resp = jsonify(success=True, csrfToken=token)
        return issue_csrf_token(resp, token), 200

    return auth_bp


def register_error_handlers(app) -> None:
    @app.errorhandler(AuthError)
    def _auth_error(exc: AuthError):
        resp = jsonify(exc.to_dict())
        resp.status_code = exc.status_code
        retry_after = getattr(exc, "retry_after_seconds", None)
        if exc.status_code == 429 and retry_after:
            resp.headers["Retry-After"] = str(retry_after)
        return resp

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify(success=False, message=exc.description), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        # full detail stays in the server log; the client gets a generic body
        logger.exception("unhandled_error", method=request.method, path=request.path)
        log_event("UNHANDLED_ERROR", level="error", path=request.path, error_type=type(exc).__name__)
        return jsonify(success=False, message="Something went wrong. Please try again."), 500
