import json
import os
import tempfile
from types import SimpleNamespace

import pytest
from webauthn.helpers import bytes_to_base64url

from brewlog import create_app
from brewlog.extensions import db as _db
from brewlog.models.user import User
from brewlog.models.webauthn import PasskeyCredential
from brewlog.services.container import container

TEST_ORIGIN = 'http://localhost:8000'


@pytest.fixture
def app():
    """Create and configure a Flask app for testing."""
    # A temp file keeps the database shared between the test and its requests
    db_fd, db_path = tempfile.mkstemp()

    app = create_app({
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-key',
        'WEBAUTHN_RP_ID': 'localhost',
        'WEBAUTHN_RP_NAME': 'Brewlog Test',
        'WEBAUTHN_ORIGIN': TEST_ORIGIN,
    })

    yield app

    with app.app_context():
        _db.session.remove()
        _db.engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def db(app):
    """An application context with the database ready to use."""
    with app.app_context():
        yield _db
        _db.session.remove()


@pytest.fixture
def services(db):
    return container()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test CLI runner for the app."""
    return app.test_cli_runner()


def add_passkey(user_id, raw_id, sign_count=0, name='laptop'):
    credential_id = bytes_to_base64url(raw_id)
    passkey = PasskeyCredential(
        user_id=user_id,
        credential_id=credential_id,
        credential_json=json.dumps({
            'credential_id': credential_id,
            'public_key': bytes_to_base64url(b'public-key-' + raw_id),
            'sign_count': sign_count,
            'transports': ['internal'],
        }),
        name=name,
    )
    _db.session.add(passkey)
    _db.session.commit()
    return passkey


def create_user(username, raw_id=None, sign_count=0):
    user = User(username=username)
    _db.session.add(user)
    _db.session.commit()
    passkey = add_passkey(user.id, raw_id or f'{username}-key'.encode(), sign_count)
    return user, passkey


@pytest.fixture
def make_user(app):
    """Create a user with one passkey in a short-lived app context.

    Returns plain values so they can be used outside the context.
    """
    def _make_user(username='alice', raw_id=None, sign_count=0):
        with app.app_context():
            user, passkey = create_user(username, raw_id, sign_count)
            return SimpleNamespace(
                id=user.id,
                username=user.username,
                uuid=user.uuid,
                handle=user.handle_bytes,
                passkey_id=passkey.id,
                credential_id=passkey.credential_id,
            )
    return _make_user


@pytest.fixture
def session_cookie(app, client):
    """Log the test client in by minting a session directly."""
    def _login(user_id):
        with app.app_context():
            user = _db.session.get(User, user_id)
            _, secret = container().get('token_service').issue_session(user)
        client.set_cookie(app.config['SESSION_COOKIE_NAME_BREWLOG'], secret)
        return secret
    return _login


@pytest.fixture
def bearer_token(app):
    """Issue an API token and return the Authorization header for it."""
    def _issue(user_id, name='test'):
        with app.app_context():
            user = _db.session.get(User, user_id)
            token, secret = container().get('token_service').issue_bearer_token(user, name)
            return token.id, {'Authorization': f'Bearer {secret}'}
    return _issue


@pytest.fixture
def new_user(db):
    """``create_user`` inside the ``db`` fixture's context."""
    return create_user


@pytest.fixture
def extra_passkey(app):
    """Give an existing user another passkey and return its id."""
    def _add(user_id, raw_id, name='phone'):
        with app.app_context():
            return add_passkey(user_id, raw_id, name=name).id
    return _add
