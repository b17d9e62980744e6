"""
Unit tests for password hashing and the password policy.
"""

from security.password import burn_password_check, hash_password, verify_password
from security.password_policy import validate_password


class TestPasswordHashing:
    def test_hash_is_not_plaintext(self):
        hashed = hash_password("Str0ng!Pass", rounds=4)
        assert hashed != "Str0ng!Pass"
        assert hashed.startswith("$2")

    def test_verify_correct_password(self):
        hashed = hash_password("Str0ng!Pass", rounds=4)
        assert verify_password("Str0ng!Pass", hashed)

    def test_verify_wrong_password(self):
        hashed = hash_password("Str0ng!Pass", rounds=4)
        assert not verify_password("Str0ng!Pasz", hashed)

    def test_same_password_different_hashes(self):
        """Random salt per hash."""
        assert hash_password("Str0ng!Pass", rounds=4) != hash_password("Str0ng!Pass", rounds=4)

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("Str0ng!Pass", "not-a-bcrypt-hash")

    def test_empty_inputs_do_not_verify(self):
        assert not verify_password("", "$2b$04$abc")
        assert not verify_password("Str0ng!Pass", "")

    def test_burn_check_accepts_none(self):
        burn_password_check(None, rounds=4)


class TestPasswordPolicy:
    def test_strong_password_passes(self):
        valid, errors = validate_password("Str0ng!Pass")
        assert valid
        assert errors == []

    def test_short_password_rejected(self):
        valid, errors = validate_password("Ab1!xyz")
        assert not valid
        assert any("at least 8" in e for e in errors)

    def test_missing_symbol_rejected(self):
        valid, errors = validate_password("Str0ngPass")
        assert not valid
        assert any("special character" in e for e in errors)

    def test_missing_classes_all_reported(self):
        valid, errors = validate_password("aaaaaaaa")
        assert not valid
        assert len(errors) == 3  # upper, digit, symbol

    def test_non_string_rejected(self):
        valid, errors = validate_password(None)
        assert not valid
