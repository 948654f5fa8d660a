from uuid import UUID, uuid4

from flask_login import UserMixin

from brewlog.extensions import db
from brewlog.utils.security import utcnow

USERNAME_MAX_LENGTH = 64


class User(db.Model, UserMixin):
    """Account holder. ``uuid`` is the stable WebAuthn user handle."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(USERNAME_MAX_LENGTH), index=True, unique=True, nullable=False)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid4()))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    passkeys = db.relationship(
        'PasskeyCredential', back_populates='user',
        cascade='all, delete-orphan'
    )
    tokens = db.relationship(
        'BearerToken', back_populates='user',
        cascade='all, delete-orphan'
    )
    sessions = db.relationship(
        'Session', back_populates='user',
        cascade='all, delete-orphan'
    )

    @property
    def handle_bytes(self):
        """User handle as sent to and returned by authenticators."""
        return UUID(self.uuid).bytes

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<User {self.username}>'


class Session(db.Model):
    """Web login session. Only the hash of the cookie secret is stored."""

    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    session_token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    last_used_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User', back_populates='sessions')

    def is_expired(self, now=None):
        """Absolute expiry: a session is dead from ``expires_at`` onwards."""
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f'<Session {self.id} user={self.user_id}>'
