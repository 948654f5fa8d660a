"""Minting and validation of bearer tokens, sessions and registration links.

Every secret is handed out exactly once. Only its keyed hash is persisted and
every lookup goes through that hash.
"""

import logging

from flask import current_app

from brewlog.errors import (
    AlreadyUsed,
    CredentialExpired,
    CredentialNotFound,
    ForbiddenError,
    RegistrationLinkInvalid,
    ResourceNotFoundError,
    Revoked,
    ValidationError,
)
from brewlog.utils.security import generate_secret, hash_prefix, hash_secret, hashes_match, utcnow

log = logging.getLogger(__name__)

TOKEN_NAME_MAX_LENGTH = 100


def _lookup_hash(secret):
    """Hash a presented secret, treating malformed input like an unknown one."""
    try:
        return hash_secret(secret)
    except ValueError:
        raise CredentialNotFound("malformed secret")


class TokenService:
    """Service for issuing and checking the opaque secrets handed to clients."""

    def __init__(self, token_repository, session_repository, registration_token_repository,
                 user_repository):
        self.token_repository = token_repository
        self.session_repository = session_repository
        self.registration_token_repository = registration_token_repository
        self.user_repository = user_repository

    # Bearer tokens

    def issue_bearer_token(self, user, name):
        """Create a named API token for ``user``.

        Returns:
            tuple: (BearerToken, plaintext secret). The secret is not recoverable later.
        """
        name = (name or '').strip()
        if not name or len(name) > TOKEN_NAME_MAX_LENGTH:
            raise ValidationError(f"token name must be 1 to {TOKEN_NAME_MAX_LENGTH} characters")
        secret = generate_secret()
        token = self.token_repository.create(user.id, hash_secret(secret), name)
        log.info("issued bearer token %s for user %s", token.id, user.id)
        return token, secret

    def validate_bearer_token(self, secret):
        """Resolve a presented bearer secret to its token row.

        Raises:
            CredentialNotFound: unknown or malformed secret
            Revoked: the token was revoked
        """
        token_hash = _lookup_hash(secret)
        token = self.token_repository.get_by_hash(token_hash)
        if token is None or not hashes_match(token.token_hash, token_hash):
            raise CredentialNotFound(f"bearer token {hash_prefix(token_hash)}")
        if token.is_revoked:
            raise Revoked(f"bearer token {token.id}")
        self.token_repository.touch(token.id)
        return token

    def revoke_bearer_token(self, user, token_id):
        token = self.token_repository.get_by_id(token_id)
        if token is None:
            raise ResourceNotFoundError("token not found")
        if token.user_id != user.id:
            raise ForbiddenError("token belongs to another user")
        token = self.token_repository.revoke(token)
        log.info("revoked bearer token %s", token.id)
        return token

    # Sessions

    def issue_session(self, user):
        """Open a web session for ``user``.

        Returns:
            tuple: (Session, cookie secret)
        """
        lifetime = current_app.config['SESSION_LIFETIME']
        now = utcnow()
        secret = generate_secret()
        session = self.session_repository.create(user.id, hash_secret(secret), now, now + lifetime)
        log.info("opened session %s for user %s", session.id, user.id)
        return session, secret

    def validate_session(self, secret):
        """Resolve a cookie secret to a live session.

        Raises:
            CredentialNotFound: unknown or malformed secret
            CredentialExpired: the session is past its absolute expiry
        """
        token_hash = _lookup_hash(secret)
        session = self.session_repository.get_by_hash(token_hash)
        if session is None or not hashes_match(session.session_token_hash, token_hash):
            raise CredentialNotFound(f"session {hash_prefix(token_hash)}")
        if session.is_expired():
            raise CredentialExpired(f"session {session.id}")
        self.session_repository.touch(session.id)
        return session

    def end_session(self, secret):
        """Delete the session behind ``secret``. Unknown secrets are ignored."""
        try:
            token_hash = hash_secret(secret)
        except ValueError:
            return False
        return self.session_repository.delete_by_hash(token_hash)

    # Registration links

    def issue_registration_token(self, ttl=None):
        """Create a one-time registration link secret.

        The lifetime defaults to ``REGISTRATION_TOKEN_TTL`` and is clamped to
        ``REGISTRATION_TOKEN_MAX_TTL``.
        """
        max_ttl = current_app.config['REGISTRATION_TOKEN_MAX_TTL']
        if ttl is None:
            ttl = current_app.config['REGISTRATION_TOKEN_TTL']
        if ttl.total_seconds() <= 0:
            raise ValidationError("registration link lifetime must be positive")
        ttl = min(ttl, max_ttl)
        now = utcnow()
        secret = generate_secret()
        token = self.registration_token_repository.create(hash_secret(secret), now, now + ttl)
        log.info("issued registration token %s valid until %s", token.id, token.expires_at.isoformat())
        return token, secret

    def check_registration_token(self, secret):
        """Look a registration link up without consuming it.

        Raises:
            CredentialNotFound: unknown or malformed secret
            RegistrationLinkInvalid: the link exists but is used or expired
        """
        token_hash = _lookup_hash(secret)
        token = self.registration_token_repository.get_by_hash(token_hash)
        if token is None or not hashes_match(token.token_hash, token_hash):
            raise CredentialNotFound(f"registration token {hash_prefix(token_hash)}")
        if token.is_used:
            raise RegistrationLinkInvalid(AlreadyUsed.kind, f"registration token {token.id}")
        if token.is_expired():
            raise RegistrationLinkInvalid(CredentialExpired.kind, f"registration token {token.id}")
        return token

    def claim_registration_token(self, secret):
        """Consume a registration link. Of two concurrent claims only one succeeds."""
        token = self.check_registration_token(secret)
        if not self.registration_token_repository.claim(token.id):
            # Lost the race, or it expired between the read and the update
            raise RegistrationLinkInvalid(AlreadyUsed.kind, f"registration token {token.id}")
        log.info("claimed registration token %s", token.id)
        return token
