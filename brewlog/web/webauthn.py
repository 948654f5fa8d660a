import json
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from brewlog.auth.middleware import set_session_cookie
from brewlog.errors import ValidationError
from brewlog.extensions import limiter
from brewlog.services.container import container

webauthn_bp = Blueprint("webauthn", __name__, url_prefix="/api/webauthn")
log = logging.getLogger(__name__)


def _ceremony_limit():
    return current_app.config['WEBAUTHN_RATE_LIMIT']


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _finish_args(data):
    challenge_id = data.get('challenge_id')
    credential = data.get('credential')
    if not isinstance(challenge_id, str) or not challenge_id:
        raise ValidationError("challenge_id is required")
    if not isinstance(credential, dict):
        raise ValidationError("credential must be an object")
    return challenge_id, credential


def _start_response(challenge_id, options_json):
    return jsonify({"challenge_id": challenge_id, "options": json.loads(options_json)})


@webauthn_bp.route("/register/start", methods=["POST"])
@limiter.limit(_ceremony_limit)
def register_start():
    """Start account creation from a registration link."""
    data = _json_body()
    challenge_id, options = container().get('passkey_service').start_registration(
        data.get('token'), data.get('username')
    )
    return _start_response(challenge_id, options)


@webauthn_bp.route("/register/finish", methods=["POST"])
@limiter.limit(_ceremony_limit)
def register_finish():
    """Create the account and its first passkey, then sign the user in."""
    data = _json_body()
    challenge_id, credential = _finish_args(data)
    services = container()
    user, passkey = services.get('passkey_service').finish_registration(
        challenge_id, credential, data.get('name')
    )
    _, secret = services.get('token_service').issue_session(user)
    response = jsonify({"user": user.to_dict(), "passkey": passkey.to_dict()})
    response.status_code = 201
    return set_session_cookie(response, secret)


@webauthn_bp.route("/auth/start", methods=["POST"])
@limiter.limit(_ceremony_limit)
def auth_start():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    challenge_id, options = container().get('passkey_service').start_authentication(
        username=data.get('username'),
        cli_callback=data.get('cli_callback'),
        state=data.get('state'),
        token_name=data.get('token_name'),
    )
    return _start_response(challenge_id, options)


@webauthn_bp.route("/auth/finish", methods=["POST"])
@limiter.limit(_ceremony_limit)
def auth_finish():
    challenge_id, credential = _finish_args(_json_body())
    outcome = container().get('passkey_service').finish_authentication(challenge_id, credential)
    if outcome.is_cli:
        # The token travels to the CLI through the redirect, never in this body
        return jsonify({"user": outcome.user.to_dict(), "redirect": outcome.redirect_url})
    response = jsonify({"user": outcome.user.to_dict()})
    return set_session_cookie(response, outcome.session_secret)


@webauthn_bp.route("/passkey/start", methods=["POST"])
@limiter.limit(_ceremony_limit)
@login_required
def passkey_start():
    """Start registering an additional passkey for the signed-in user."""
    challenge_id, options = container().get('passkey_service').start_passkey_addition(current_user)
    return _start_response(challenge_id, options)


@webauthn_bp.route("/passkey/finish", methods=["POST"])
@limiter.limit(_ceremony_limit)
@login_required
def passkey_finish():
    data = _json_body()
    challenge_id, credential = _finish_args(data)
    _, passkey = container().get('passkey_service').finish_registration(
        challenge_id, credential, data.get('name'), user=current_user._get_current_object()
    )
    return jsonify({"passkey": passkey.to_dict()}), 201
