"""Database models for the application."""

from brewlog.models.user import User, Session
from brewlog.models.token import BearerToken, RegistrationToken
from brewlog.models.webauthn import PasskeyCredential, WebAuthnChallenge
from brewlog.models.coffee import Roaster, Roast, TimelineEvent

__all__ = [
    'User',
    'Session',
    'BearerToken',
    'RegistrationToken',
    'PasskeyCredential',
    'WebAuthnChallenge',
    'Roaster',
    'Roast',
    'TimelineEvent',
]
