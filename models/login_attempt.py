from datetime import datetime
from models.db import db

class LoginAttempt(db.Model):
    """Append-only audit row, one per login request."""

    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), nullable=False, index=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    success = db.Column(db.Boolean, default=False, nullable=False)
    user_agent = db.Column(db.String(255), nullable=True)

    attempted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
