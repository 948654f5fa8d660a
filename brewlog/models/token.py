from brewlog.extensions import db
from brewlog.utils.security import utcnow


class BearerToken(db.Model):
    """API token used by the CLI. Valid until revoked; there is no expiry."""

    __tablename__ = "tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime, nullable=True)
    revoked_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User', back_populates='tokens')

    def __repr__(self):
        return f'<BearerToken {self.id}: {self.name}>'

    @property
    def is_revoked(self):
        return self.revoked_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
        }


class RegistrationToken(db.Model):
    """Single-use link secret for creating an account."""

    __tablename__ = "registration_tokens"

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    used_by_user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    def is_expired(self, now=None):
        return (now or utcnow()) >= self.expires_at

    @property
    def is_used(self):
        return self.used_at is not None

    def is_valid(self, now=None):
        return not self.is_used and not self.is_expired(now)

    def __repr__(self):
        return f'<RegistrationToken {self.id}>'
