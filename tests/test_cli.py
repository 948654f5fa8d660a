"""Tests for the operator commands"""

from datetime import timedelta

from sqlalchemy import update

from brewlog.extensions import db
from brewlog.models.user import Session, User
from brewlog.models.webauthn import WebAuthnChallenge
from brewlog.services.container import container
from brewlog.utils.security import utcnow


def test_bootstrap_command(runner):
    result = runner.invoke(args=['bootstrap'])
    assert result.exit_code == 0
    assert '/register/' in result.output

    second = runner.invoke(args=['bootstrap'])
    assert '/register/' in second.output
    assert second.output != result.output


def test_bootstrap_command_with_users(runner, make_user):
    make_user('alice')
    result = runner.invoke(args=['bootstrap'])
    assert 'Nothing to do' in result.output


def test_issue_registration_link_command(runner, make_user):
    make_user('alice')
    result = runner.invoke(args=['issue-registration-link', '--hours', '2'])
    assert result.exit_code == 0
    assert 'http://localhost:8000/register/' in result.output


def test_prune_auth_command(app, runner, make_user):
    alice = make_user('alice')
    with app.app_context():
        user = db.session.get(User, alice.id)
        session, _ = container().get('token_service').issue_session(user)
        container().get('passkey_service').start_authentication()
        db.session.execute(update(Session).values(expires_at=utcnow() - timedelta(days=1)))
        db.session.execute(update(WebAuthnChallenge).values(expires_at=utcnow() - timedelta(minutes=1)))
        db.session.commit()

    result = runner.invoke(args=['prune-auth'])

    assert result.exit_code == 0
    assert 'Removed 1 expired sessions and 1 expired challenges' in result.output


def test_delete_user_command(app, runner, make_user):
    make_user('alice')
    result = runner.invoke(args=['delete-user', 'alice', '--yes'])
    assert result.exit_code == 0
    with app.app_context():
        assert db.session.query(User).count() == 0


def test_delete_unknown_user(runner):
    result = runner.invoke(args=['delete-user', 'nobody', '--yes'])
    assert result.exit_code != 0
    assert 'no user named nobody' in result.output
