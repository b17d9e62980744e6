import re
from typing import List, Tuple

from flask import current_app, has_app_context

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"\d")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")

_DEFAULTS = {
    "PASSWORD_MIN_LEN": 8,
    "PASSWORD_MAX_LEN": 128,
    "PASSWORD_REQUIRE_UPPER": True,
    "PASSWORD_REQUIRE_LOWER": True,
    "PASSWORD_REQUIRE_DIGIT": True,
    "PASSWORD_REQUIRE_SYMBOL": True,
}


def _cfg(name: str):
    # outside an app context (CLI, unit tests) the defaults apply
    if not has_app_context():
        return _DEFAULTS[name]
    return current_app.config.get(name, _DEFAULTS[name])

def validate_password(pw: str) -> Tuple[bool, List[str]]:
    errors: List[str] = []

    if not isinstance(pw, str):
        return False, ["Password must be a string"]

    min_len = int(_cfg("PASSWORD_MIN_LEN"))
    max_len = int(_cfg("PASSWORD_MAX_LEN"))
    require_upper = bool(_cfg("PASSWORD_REQUIRE_UPPER"))
    require_lower = bool(_cfg("PASSWORD_REQUIRE_LOWER"))
    require_digit = bool(_cfg("PASSWORD_REQUIRE_DIGIT"))
    require_symbol = bool(_cfg("PASSWORD_REQUIRE_SYMBOL"))

    if len(pw) < min_len:
        errors.append(f"Password must be at least {min_len} characters long")
    if len(pw) > max_len:
        errors.append(f"Password must be at most {max_len} characters long")

    if require_upper and not _UPPER.search(pw):
        errors.append("Password must contain at least one uppercase letter")
    if require_lower and not _LOWER.search(pw):
        errors.append("Password must contain at least one lowercase letter")
    if require_digit and not _DIGIT.search(pw):
        errors.append("Password must contain at least one number")
    if require_symbol and not _SYMBOL.search(pw):
        errors.append("Password must contain at least one special character")

    return (len(errors) == 0), errors
