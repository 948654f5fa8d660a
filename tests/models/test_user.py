from datetime import timedelta
from uuid import UUID

from brewlog.models.token import BearerToken, RegistrationToken
from brewlog.models.user import Session, User
from brewlog.models.webauthn import PasskeyCredential
from brewlog.utils.security import utcnow


def test_user_gets_uuid_handle(new_user):
    """The WebAuthn user handle is the 16 raw bytes of the user's UUID"""
    user, _ = new_user('alice')
    assert UUID(user.uuid).version == 4
    assert user.handle_bytes == UUID(user.uuid).bytes
    assert len(user.handle_bytes) == 16


def test_deleting_user_cascades(db, new_user):
    user, _ = new_user('alice')
    db.session.add(BearerToken(user_id=user.id, name='cli', token_hash='a' * 64))
    db.session.add(Session(user_id=user.id, session_token_hash='b' * 64,
                           expires_at=utcnow() + timedelta(days=1)))
    db.session.commit()

    db.session.delete(user)
    db.session.commit()

    assert db.session.query(User).count() == 0
    assert db.session.query(PasskeyCredential).count() == 0
    assert db.session.query(BearerToken).count() == 0
    assert db.session.query(Session).count() == 0


def test_session_expiry_is_absolute():
    now = utcnow()
    session = Session(created_at=now, expires_at=now + timedelta(days=30))
    assert not session.is_expired(now + timedelta(days=29, hours=23))
    assert session.is_expired(now + timedelta(days=30))


def test_registration_token_validity():
    now = utcnow()
    token = RegistrationToken(token_hash='c' * 64, created_at=now, expires_at=now + timedelta(hours=1))
    assert token.is_valid(now)
    assert not token.is_valid(now + timedelta(hours=1))

    token.used_at = now
    assert token.is_used
    assert not token.is_valid(now)


def test_passkey_credential_blob(new_user):
    _, passkey = new_user('alice', raw_id=b'key-1', sign_count=7)
    assert passkey.sign_count == 7
    assert passkey.transports == ['internal']
    assert passkey.to_dict()['name'] == 'laptop'
    assert 'credential_json' not in passkey.to_dict()
