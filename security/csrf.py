"""
Double-submit CSRF guard for cookie-authenticated requests.

The token is set in a script-readable cookie and must be echoed back in the
X-CSRF-Token header. Bearer-authenticated requests are not subject to it.
"""

import hmac

from flask import current_app, jsonify, request

from security.tokens import generate_token

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


def new_csrf_token() -> str:
    return generate_token()


def issue_csrf_token(resp, token: str = None):
    resp.set_cookie(
        CSRF_COOKIE,
        token or new_csrf_token(),
        httponly=False,  # the client reads it to fill the header
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Strict"),
        path="/",
    )
    return resp


def csrf_matches(cookie_token, header_token) -> bool:
    if not cookie_token or not header_token:
        return False
    return hmac.compare_digest(cookie_token.encode(), header_token.encode())


def require_csrf():
    """Returns a 403 response when the request fails the check, else None."""
    if csrf_matches(request.cookies.get(CSRF_COOKIE), request.headers.get(CSRF_HEADER)):
        return None
    return jsonify(success=False, message="Invalid CSRF token"), 403
