"""Operator commands, available through ``flask --app brewlog.wsgi <command>``."""

from datetime import timedelta

import click
from flask import current_app
from flask.cli import with_appcontext

from brewlog.extensions import db
from brewlog.services.bootstrap import bootstrap_registration, registration_url
from brewlog.services.container import container


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create any missing tables."""
    db.create_all()
    click.echo("Database tables created")


@click.command('bootstrap')
@with_appcontext
def bootstrap_command():
    """Issue a first-run registration link if no users exist."""
    url = bootstrap_registration(current_app._get_current_object())
    if url:
        click.echo(url)
    else:
        click.echo("Nothing to do: users already exist")


@click.command('issue-registration-link')
@click.option('--hours', type=float, default=1.0, show_default=True, help='Lifetime of the link')
@with_appcontext
def issue_registration_link_command(hours):
    """Issue a one-time registration link regardless of existing users."""
    token, secret = container().get('token_service').issue_registration_token(timedelta(hours=hours))
    click.echo(registration_url(current_app, secret))
    click.echo(f"Valid until {token.expires_at.isoformat()} UTC")


@click.command('prune-auth')
@with_appcontext
def prune_auth_command():
    """Delete expired sessions and abandoned WebAuthn challenges."""
    services = container()
    sessions = services.get('session_repository').delete_expired()
    challenges = services.get('challenge_repository').delete_expired()
    click.echo(f"Removed {sessions} expired sessions and {challenges} expired challenges")


@click.command('list-users')
@with_appcontext
def list_users_command():
    """List accounts with their passkey counts."""
    for user in container().get('user_repository').get_all():
        click.echo(f"{user.id}\t{user.username}\t{len(user.passkeys)} passkey(s)")


@click.command('delete-user')
@click.argument('username')
@click.confirmation_option(prompt='This removes the user with all passkeys, tokens and sessions. Continue?')
@with_appcontext
def delete_user_command(username):
    """Delete a user and everything that authenticates as them."""
    repository = container().get('user_repository')
    user = repository.get_by_username(username)
    if user is None:
        raise click.ClickException(f"no user named {username}")
    repository.delete(user)
    click.echo(f"Deleted user {username}")


def register_commands(app):
    """Register CLI commands with the Flask application."""
    for command in (
        init_db_command,
        bootstrap_command,
        issue_registration_link_command,
        prune_auth_command,
        list_users_command,
        delete_user_command,
    ):
        app.cli.add_command(command)
