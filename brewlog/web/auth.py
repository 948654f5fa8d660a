import logging

from flask import Blueprint, current_app, jsonify, render_template, request

from brewlog.auth.middleware import clear_session_cookie
from brewlog.errors import ValidationError
from brewlog.services.container import container
from brewlog.utils.security import is_loopback_callback

auth_bp = Blueprint("auth", __name__)
log = logging.getLogger(__name__)


@auth_bp.route("/login", methods=["GET"])
def login():
    """Passkey login page. CLI logins pass their callback through the query string."""
    cli_callback = request.args.get('cli_callback')
    if cli_callback is not None and not is_loopback_callback(cli_callback):
        raise ValidationError("cli callback must be http on a loopback address")
    return render_template(
        'login.html',
        cli_callback=cli_callback,
        state=request.args.get('state'),
        token_name=request.args.get('token_name'),
    )


@auth_bp.route("/register/<token>", methods=["GET"])
def register(token):
    """Registration page for a one-time link. The link is only consumed when the ceremony starts."""
    container().get('token_service').check_registration_token(token)
    return render_template('register.html', token=token)


@auth_bp.route("/cli-callback", methods=["GET"])
def cli_callback():
    return render_template('cli_callback.html')


@auth_bp.route("/auth/logout", methods=["POST"])
def logout():
    secret = request.cookies.get(current_app.config['SESSION_COOKIE_NAME_BREWLOG'])
    if secret:
        container().get('token_service').end_session(secret)
    return clear_session_cookie(jsonify({"status": "logged out"}))
