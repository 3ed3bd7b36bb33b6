from models.db import db
from utils.timeutil import utcnow

class LoginAttempt(db.Model):
    """One row per login attempt. Rows are only ever inserted, never updated."""

    __tablename__ = "login_attempts"
    __table_args__ = (
        db.Index("ix_login_attempts_identity_created", "identity_key", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # normalized email; the IP is kept for auditing only
    identity_key = db.Column(db.String(255), nullable=False)
    outcome = db.Column(db.String(16), nullable=False)  # SUCCESS, FAILURE, ADMIN_RESET

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
