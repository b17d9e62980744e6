import re
from typing import List

from email_validator import EmailNotValidError, validate_email

from security.password_policy import validate_password
from services.errors import ValidationError

_NAME = re.compile(r"^[A-Za-z\s]+$")
NAME_MAX_LEN = 50


def _string(data: dict, field: str) -> str:
    value = data.get(field)
    return value if isinstance(value, str) else ""


def _check_email(value: str, errors: List[dict]) -> str:
    try:
        result = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        errors.append({"field": "email", "message": "Please provide a valid email address"})
        return ""
    if len(result.normalized) > 255:
        errors.append({"field": "email", "message": "Please provide a valid email address"})
        return ""
    return result.normalized.lower()


def _check_name(data: dict, field: str, label: str, errors: List[dict]) -> str:
    value = _string(data, field).strip()
    if not value or len(value) > NAME_MAX_LEN:
        errors.append({"field": field, "message": f"{label} is required and must be less than {NAME_MAX_LEN} characters"})
    elif not _NAME.match(value):
        errors.append({"field": field, "message": f"{label} can only contain letters and spaces"})
    return value


def _check_new_password(value: str, errors: List[dict]) -> str:
    valid, problems = validate_password(value)
    if not valid:
        errors.extend({"field": "password", "message": p} for p in problems)
    return value


def _raise_if(errors: List[dict]) -> None:
    if errors:
        raise ValidationError(errors)


def validate_registration(data: dict) -> dict:
    errors: List[dict] = []
    cleaned = {
        "email": _check_email(_string(data, "email"), errors),
        "password": _check_new_password(_string(data, "password"), errors),
        "first_name": _check_name(data, "firstName", "First name", errors),
        "last_name": _check_name(data, "lastName", "Last name", errors),
    }
    _raise_if(errors)
    return cleaned


def validate_login(data: dict) -> dict:
    errors: List[dict] = []
    email = _check_email(_string(data, "email"), errors)
    password = _string(data, "password")
    if not password:
        errors.append({"field": "password", "message": "Password is required"})
    _raise_if(errors)

    code = data.get("twoFactorCode")
    if code is not None and not isinstance(code, str):
        code = str(code)
    return {
        "email": email,
        "password": password,
        "two_factor_code": code or None,
        "remember": data.get("rememberMe") is True,
    }


def validate_email_only(data: dict) -> str:
    errors: List[dict] = []
    email = _check_email(_string(data, "email"), errors)
    _raise_if(errors)
    return email


def validate_password_reset(data: dict) -> dict:
    errors: List[dict] = []
    token = _string(data, "token").strip()
    if not token:
        errors.append({"field": "token", "message": "Reset token is required"})
    password = _check_new_password(_string(data, "password"), errors)
    _raise_if(errors)
    return {"token": token, "password": password}


def require_field(data: dict, field: str, message: str) -> str:
    value = data.get(field)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError.single(field, message)
    return value.strip()
