"""Security utilities for the application."""

import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from urllib.parse import urlsplit

from flask import current_app

# 32 random bytes, i.e. 256 bits of entropy
SECRET_BYTES = 32

LOOPBACK_HOSTS = frozenset(('localhost', '127.0.0.1', '::1'))


def utcnow():
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_secret(length=SECRET_BYTES):
    """Generate a cryptographically secure, URL-safe secret."""
    return secrets.token_urlsafe(length)


def _hash_key():
    key = current_app.config.get('TOKEN_HASH_KEY') or current_app.config['SECRET_KEY']
    return key.encode('utf-8')


def hash_secret(secret):
    """One-way keyed hash of a secret for storage and lookup.

    Raises ValueError for anything that cannot be a secret we issued.
    """
    if not isinstance(secret, str) or not secret.strip():
        raise ValueError("secret must be a non-empty string")
    return hmac.new(_hash_key(), secret.encode('utf-8'), hashlib.sha256).hexdigest()


def hashes_match(stored_hash, candidate_hash):
    """Full-length comparison that does not leak a matching prefix."""
    return hmac.compare_digest(stored_hash.encode('ascii'), candidate_hash.encode('ascii'))


def hash_prefix(value):
    """Short, loggable prefix of a hash."""
    return value[:8] if value else ''


def is_loopback_callback(url):
    """Whether a CLI callback URL is plain http on a loopback host."""
    try:
        parts = urlsplit(url)
        # accessing .port validates it
        parts.port
    except ValueError:
        return False
    if parts.scheme != 'http':
        return False
    return parts.hostname in LOOPBACK_HOSTS
