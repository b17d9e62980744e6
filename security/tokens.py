import hashlib
import secrets


def generate_token() -> str:
    """Random URL-safe single-use token (256 bits)."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
