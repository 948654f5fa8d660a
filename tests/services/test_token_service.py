"""Tests for the TokenService"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from brewlog.errors import (
    CredentialExpired,
    CredentialNotFound,
    ForbiddenError,
    RegistrationLinkInvalid,
    Revoked,
    ValidationError,
)
from brewlog.models.token import BearerToken, RegistrationToken
from brewlog.models.user import Session
from brewlog.utils.security import hash_secret, utcnow


@pytest.fixture
def token_service(services):
    return services.get('token_service')


@pytest.fixture
def alice(new_user):
    user, _ = new_user('alice')
    return user


def test_bearer_token_secret_is_not_stored(token_service, alice, db):
    """Only the keyed hash of a token reaches the database"""
    token, secret = token_service.issue_bearer_token(alice, 'laptop')

    stored = db.session.get(BearerToken, token.id)
    assert stored.token_hash == hash_secret(secret)
    assert secret not in stored.token_hash


def test_validate_bearer_token_touches_last_used(token_service, alice):
    token, secret = token_service.issue_bearer_token(alice, 'laptop')
    assert token.last_used_at is None

    validated = token_service.validate_bearer_token(secret)

    assert validated.id == token.id
    assert validated.last_used_at is not None


@pytest.mark.parametrize('secret', ['', 'not-a-real-token', None])
def test_unknown_or_malformed_bearer_token(token_service, secret):
    with pytest.raises(CredentialNotFound):
        token_service.validate_bearer_token(secret)


def test_revoked_token_stays_revoked(token_service, alice):
    token, secret = token_service.issue_bearer_token(alice, 'laptop')

    revoked = token_service.revoke_bearer_token(alice, token.id)
    first_revocation = revoked.revoked_at
    with pytest.raises(Revoked):
        token_service.validate_bearer_token(secret)

    again = token_service.revoke_bearer_token(alice, token.id)
    assert again.revoked_at == first_revocation
    with pytest.raises(Revoked):
        token_service.validate_bearer_token(secret)


def test_cannot_revoke_someone_elses_token(token_service, alice, new_user):
    bob, _ = new_user('bob')
    token, _ = token_service.issue_bearer_token(alice, 'laptop')

    with pytest.raises(ForbiddenError):
        token_service.revoke_bearer_token(bob, token.id)


@pytest.mark.parametrize('name', ['', '   ', 'x' * 101])
def test_token_name_is_validated(token_service, alice, name):
    with pytest.raises(ValidationError):
        token_service.issue_bearer_token(alice, name)


def test_session_lifetime_is_fixed(token_service, alice, app):
    session, secret = token_service.issue_session(alice)

    assert session.expires_at - session.created_at == app.config['SESSION_LIFETIME']
    assert token_service.validate_session(secret).id == session.id


def test_expired_session_is_rejected(token_service, alice, db):
    session, secret = token_service.issue_session(alice)
    db.session.execute(
        update(Session).where(Session.id == session.id).values(expires_at=utcnow() - timedelta(seconds=1))
    )
    db.session.commit()

    with pytest.raises(CredentialExpired):
        token_service.validate_session(secret)


def test_end_session(token_service, alice):
    _, secret = token_service.issue_session(alice)

    assert token_service.end_session(secret) is True
    with pytest.raises(CredentialNotFound):
        token_service.validate_session(secret)
    assert token_service.end_session(secret) is False
    assert token_service.end_session('') is False


def test_registration_token_defaults_to_one_hour(token_service):
    token, _ = token_service.issue_registration_token()
    assert token.expires_at - token.created_at == timedelta(hours=1)


def test_registration_token_ttl_is_clamped(token_service, app):
    token, _ = token_service.issue_registration_token(timedelta(days=30))
    assert token.expires_at - token.created_at == app.config['REGISTRATION_TOKEN_MAX_TTL']


def test_registration_token_negative_ttl(token_service):
    with pytest.raises(ValidationError):
        token_service.issue_registration_token(timedelta(hours=-1))


def test_registration_token_zero_ttl(token_service):
    with pytest.raises(ValidationError):
        token_service.issue_registration_token(timedelta(0))


def test_registration_token_claimed_once(token_service, db):
    token, secret = token_service.issue_registration_token()

    claimed = token_service.claim_registration_token(secret)
    assert claimed.id == token.id
    assert db.session.get(RegistrationToken, token.id).used_at is not None

    with pytest.raises(RegistrationLinkInvalid) as excinfo:
        token_service.claim_registration_token(secret)
    assert excinfo.value.status_code == 410


def test_claim_is_conditional(services, token_service):
    """Two claims racing on the same row: only one update matches"""
    token, _ = token_service.issue_registration_token()
    repository = services.get('registration_token_repository')

    assert repository.claim(token.id) is True
    assert repository.claim(token.id) is False


def test_expired_registration_token(token_service, db):
    token, secret = token_service.issue_registration_token()
    db.session.execute(
        update(RegistrationToken)
        .where(RegistrationToken.id == token.id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    db.session.commit()

    with pytest.raises(RegistrationLinkInvalid):
        token_service.check_registration_token(secret)


def test_unknown_registration_token(token_service):
    with pytest.raises(CredentialNotFound):
        token_service.claim_registration_token('no-such-link')
