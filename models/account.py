import uuid
from datetime import datetime
from models.db import db


def _new_id() -> str:
    return uuid.uuid4().hex


class Account(db.Model):
    __tablename__ = "accounts"

    id = db.Column(db.String(32), primary_key=True, default=_new_id)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)  # always lower-cased
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)

    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    # single-use tokens: only the sha256 digest is stored
    verification_token_hash = db.Column(db.String(64), nullable=True, index=True)
    verification_token_expires = db.Column(db.DateTime, nullable=True)
    reset_token_hash = db.Column(db.String(64), nullable=True, index=True)
    reset_token_expires = db.Column(db.DateTime, nullable=True)

    two_factor_secret = db.Column(db.String(64), nullable=True)
    two_factor_enabled = db.Column(db.Boolean, default=False, nullable=False)
    two_factor_last_counter = db.Column(db.Integer, nullable=True)

    failed_login_attempts = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "isVerified": self.is_verified,
            "twoFactorEnabled": self.two_factor_enabled,
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
