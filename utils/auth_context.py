from dataclasses import dataclass
from functools import wraps

from flask import request

from services.errors import NotAuthenticated


@dataclass(frozen=True)
class AuthContext:
    """Who is calling. Handed to views explicitly instead of living on ``g``."""

    account_id: str
    email: str
    session_id: str
    via_cookie: bool = False


def extract_token(cookie_name: str):
    """Returns (token, via_cookie). Bearer header wins over the cookie."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip(), False
    cookie_token = request.cookies.get(cookie_name)
    if cookie_token:
        return cookie_token, True
    return None, False


def make_login_required(auth_service, cookie_name: str, csrf_check=None):
    """
    Builds a ``login_required`` decorator bound to one AuthService.

    The wrapped view receives the resolved AuthContext as ``auth``.
    Cookie-authenticated state-changing requests must also pass ``csrf_check``.
    """
    def login_required(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token, via_cookie = extract_token(cookie_name)
            if not token:
                raise NotAuthenticated()

            auth = auth_service.authenticate(token, via_cookie=via_cookie)

            if via_cookie and csrf_check is not None and request.method in ("POST", "PUT", "PATCH", "DELETE"):
                failure = csrf_check()
                if failure:
                    return failure

            return fn(*args, auth=auth, **kwargs)
        return wrapper
    return login_required
