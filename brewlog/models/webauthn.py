import json

from brewlog.extensions import db
from brewlog.utils.security import utcnow

CEREMONY_REGISTRATION = "registration"
CEREMONY_AUTHENTICATION = "authentication"


class PasskeyCredential(db.Model):
    """Model for storing WebAuthn (passkey) credentials."""

    __tablename__ = "passkey_credentials"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    credential_id = db.Column(db.String(1024), unique=True, nullable=False, index=True)
    credential_json = db.Column(db.Text, nullable=False)
    name = db.Column(db.String(64), nullable=False, default='default')
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User', back_populates='passkeys')

    @property
    def credential(self):
        """Decoded credential blob: public key, sign count, transports."""
        return json.loads(self.credential_json)

    @property
    def sign_count(self):
        return int(self.credential.get('sign_count', 0))

    @property
    def transports(self):
        return self.credential.get('transports') or []

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
        }

    def __repr__(self):
        return f'<PasskeyCredential {self.id}: {self.name}>'


class WebAuthnChallenge(db.Model):
    """In-flight ceremony state shared by the start and finish requests."""

    __tablename__ = "webauthn_challenges"

    id = db.Column(db.String(64), primary_key=True)
    challenge = db.Column(db.String(128), nullable=False)
    ceremony = db.Column(db.String(20), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=True)
    payload_json = db.Column(db.Text, nullable=False, default='{}')
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    @property
    def payload(self):
        return json.loads(self.payload_json or '{}')

    def is_expired(self, now=None):
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f'<WebAuthnChallenge {self.ceremony}>'
