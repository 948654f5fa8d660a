"""Per-request identity resolution and the write gate.

Flask-Login's request loader resolves the caller from the session cookie or
the ``Authorization: Bearer`` header, in the order configured by
``AUTH_ORDER``. Flask-Login caches the result for the rest of the request, so
a credential's ``last_used_at`` is touched at most once per request.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from flask import current_app, g, request
from flask_login import current_user

from brewlog.errors import AuthException, CredentialNotFound
from brewlog.services.container import container

log = logging.getLogger(__name__)

SAFE_METHODS = frozenset(('GET', 'HEAD', 'OPTIONS'))


class IdentityKind(str, Enum):
    SESSION = 'session'
    BEARER = 'bearer'


@dataclass(frozen=True)
class Identity:
    """Who made the request and which credential proved it."""

    kind: IdentityKind
    user: object
    credential_id: int

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'user': self.user.to_dict(),
            'credential_id': self.credential_id,
        }


def _session_identity(req):
    secret = req.cookies.get(current_app.config['SESSION_COOKIE_NAME_BREWLOG'])
    if not secret:
        return None
    session = container().get('token_service').validate_session(secret)
    return Identity(IdentityKind.SESSION, session.user, session.id)


def _bearer_identity(req):
    header = req.headers.get('Authorization', '')
    if not header:
        return None
    scheme, _, secret = header.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    token = container().get('token_service').validate_bearer_token(secret.strip())
    return Identity(IdentityKind.BEARER, token.user, token.id)


RESOLVERS = {
    IdentityKind.SESSION: _session_identity,
    IdentityKind.BEARER: _bearer_identity,
}


def resolve_identity(req):
    """Try each configured identity kind in turn.

    The first kind whose credential validates wins. Failures are remembered
    on ``g.auth_failure`` so the gate can log the precise reason.
    """
    for name in current_app.config['AUTH_ORDER']:
        try:
            identity = RESOLVERS[IdentityKind(name)](req)
        except AuthException as e:
            g.auth_failure = g.get('auth_failure') or e
            continue
        if identity is not None:
            return identity
    return None


def current_identity():
    """The resolved identity of this request, or None."""
    if not current_user.is_authenticated:
        return None
    return g.get('identity')


def _auth_failure():
    return g.get('auth_failure') or CredentialNotFound("no credentials presented")


def require_identity_for_writes(blueprint):
    """Reject unauthenticated state-changing requests to ``blueprint``."""

    @blueprint.before_request
    def _gate():
        if request.method in SAFE_METHODS:
            return None
        if not current_user.is_authenticated:
            raise _auth_failure()
        return None

    return blueprint


def set_session_cookie(response, secret):
    config = current_app.config
    response.set_cookie(
        config['SESSION_COOKIE_NAME_BREWLOG'],
        secret,
        max_age=int(config['SESSION_LIFETIME'].total_seconds()),
        path='/',
        secure=not config['INSECURE_COOKIES'],
        httponly=True,
        samesite='Strict',
    )
    return response


def clear_session_cookie(response):
    config = current_app.config
    response.delete_cookie(
        config['SESSION_COOKIE_NAME_BREWLOG'],
        path='/',
        secure=not config['INSECURE_COOKIES'],
        httponly=True,
        samesite='Strict',
    )
    return response


def init_auth(app, login_manager):
    """Wire identity resolution into Flask-Login."""

    @login_manager.request_loader
    def load_user_from_request(req):
        identity = resolve_identity(req)
        if identity is None:
            return None
        g.identity = identity
        return identity.user

    @login_manager.unauthorized_handler
    def unauthorized():
        raise _auth_failure()

    log.debug("auth order: %s", ", ".join(app.config['AUTH_ORDER']))
