"""First-run onboarding: hand the operator a registration link when nobody can log in."""

import logging

from brewlog.services.container import container_for

log = logging.getLogger(__name__)


def registration_url(app, secret):
    return f"{app.config['WEBAUTHN_ORIGIN'].rstrip('/')}/register/{secret}"


def bootstrap_registration(app):
    """Issue a one-hour registration link if the user table is empty.

    Every startup without users mints a fresh link, since the secret of an
    earlier one is only ever shown once. Earlier links stay valid until they
    expire.

    Returns:
        str or None: the registration URL when one was issued
    """
    with app.app_context():
        services = container_for(app)
        if services.get('user_repository').exists():
            return None
        _, secret = services.get('token_service').issue_registration_token(
            app.config['REGISTRATION_TOKEN_TTL']
        )
        url = registration_url(app, secret)
        log.warning(
            "No users exist. Register the first account within the next hour at %s",
            url,
        )
        return url
