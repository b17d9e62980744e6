"""
TOTP helpers for two-factor enrollment and login.

Secrets are base32 strings as produced by pyotp; enrollment payloads are
otpauth:// provisioning URIs rendered as PNG data URIs with qrcode.
"""

import base64
import hmac
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

import pyotp
import qrcode

TOTP_DIGITS = 6
DEFAULT_VALID_WINDOW = 2


def new_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def qr_data_uri(data: str) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=6,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffered.getvalue()).decode("ascii")


def is_well_formed(code) -> bool:
    return isinstance(code, str) and len(code) == TOTP_DIGITS and code.isdigit()


def match_counter(secret: str, code: str, for_time: datetime,
                  valid_window: int = DEFAULT_VALID_WINDOW) -> Optional[int]:
    """
    Returns the time-step counter the code belongs to, or None.

    Codes from up to ``valid_window`` steps either side of ``for_time`` are
    accepted to absorb clock drift. The counter lets callers refuse a code
    whose step was already used.
    """
    if not secret or not is_well_formed(code):
        return None

    # naive datetimes are UTC here; pyotp would read them as local time
    if for_time.tzinfo is None:
        for_time = for_time.replace(tzinfo=timezone.utc)

    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS)
    current = totp.timecode(for_time)
    for offset in range(-valid_window, valid_window + 1):
        expected = totp.generate_otp(current + offset)
        if hmac.compare_digest(expected, code):
            return current + offset
    return None


def verify_code(secret: str, code: str, for_time: datetime,
                valid_window: int = DEFAULT_VALID_WINDOW) -> bool:
    return match_counter(secret, code, for_time, valid_window) is not None
