"""
Tests for the TOTP helpers used by two-factor enrollment and login.
"""

from datetime import datetime

from security import totp
from tests.conftest import totp_code

NOW = datetime(2026, 10, 19, 12, 0, 0)


class TestTotpVerification:
    def test_current_code_matches(self):
        secret = totp.new_secret()
        assert totp.verify_code(secret, totp_code(secret, NOW), NOW)

    def test_code_within_window_matches(self):
        secret = totp.new_secret()
        assert totp.verify_code(secret, totp_code(secret, NOW, offset_steps=-2), NOW, valid_window=2)
        assert totp.verify_code(secret, totp_code(secret, NOW, offset_steps=2), NOW, valid_window=2)

    def test_code_outside_window_rejected(self):
        secret = totp.new_secret()
        assert not totp.verify_code(secret, totp_code(secret, NOW, offset_steps=5), NOW, valid_window=2)

    def test_wrong_code_rejected(self):
        secret = totp.new_secret()
        good = totp_code(secret, NOW)
        bad = "%06d" % ((int(good) + 1) % 1000000)
        assert not totp.verify_code(secret, bad, NOW, valid_window=0)

    def test_malformed_codes_rejected(self):
        secret = totp.new_secret()
        for code in ("", "12345", "1234567", "abcdef", None):
            assert totp.match_counter(secret, code, NOW) is None

    def test_counter_reflects_matched_step(self):
        secret = totp.new_secret()
        now_counter = totp.match_counter(secret, totp_code(secret, NOW), NOW)
        earlier = totp.match_counter(secret, totp_code(secret, NOW, offset_steps=-1), NOW)
        assert earlier == now_counter - 1


class TestEnrollmentPayload:
    def test_provisioning_uri(self):
        uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "a@example.com", "Weather App")
        assert uri.startswith("otpauth://totp/")
        assert "secret=JBSWY3DPEHPK3PXP" in uri
        assert "issuer=Weather%20App" in uri

    def test_qr_code_is_png_data_uri(self):
        data_uri = totp.qr_data_uri("otpauth://totp/Weather%20App:a%40example.com?secret=JBSWY3DPEHPK3PXP")
        assert data_uri.startswith("data:image/png;base64,")
        assert len(data_uri) > 100
