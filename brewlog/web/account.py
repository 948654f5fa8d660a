"""Token, passkey and invite management for the signed-in user."""

import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from brewlog.auth.middleware import current_identity
from brewlog.errors import ConflictError, ForbiddenError, ResourceNotFoundError, ValidationError
from brewlog.services.bootstrap import registration_url
from brewlog.services.container import container

account_bp = Blueprint("account", __name__, url_prefix="/api")
log = logging.getLogger(__name__)


@account_bp.route("/me", methods=["GET"])
@login_required
def me():
    """Who the current credentials belong to."""
    return jsonify(current_identity().to_dict())


@account_bp.route("/tokens", methods=["GET"])
@login_required
def list_tokens():
    tokens = container().get('token_repository').list_by_user(current_user.id)
    return jsonify({"tokens": [token.to_dict() for token in tokens]})


@account_bp.route("/tokens", methods=["POST"])
@login_required
def create_token():
    """Create an API token. The secret is only ever shown in this response."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    token, secret = container().get('token_service').issue_bearer_token(current_user, data.get('name'))
    body = token.to_dict()
    body['token'] = secret
    return jsonify(body), 201


@account_bp.route("/tokens/<int:token_id>/revoke", methods=["POST"])
@login_required
def revoke_token(token_id):
    token = container().get('token_service').revoke_bearer_token(current_user, token_id)
    return jsonify(token.to_dict())


@account_bp.route("/passkeys", methods=["GET"])
@login_required
def list_passkeys():
    passkeys = container().get('passkey_repository').list_by_user(current_user.id)
    return jsonify({"passkeys": [passkey.to_dict() for passkey in passkeys]})


@account_bp.route("/passkeys/<int:passkey_id>", methods=["DELETE"])
@login_required
def delete_passkey(passkey_id):
    repository = container().get('passkey_repository')
    passkey = repository.get_by_id(passkey_id)
    if passkey is None:
        raise ResourceNotFoundError("passkey not found")
    if passkey.user_id != current_user.id:
        raise ForbiddenError("passkey belongs to another user")
    if len(repository.list_by_user(current_user.id)) <= 1:
        raise ConflictError("cannot delete the last passkey")
    repository.delete(passkey)
    log.info("user %s deleted passkey %s", current_user.id, passkey_id)
    return "", 204


@account_bp.route("/registration-tokens", methods=["POST"])
@login_required
def create_registration_token():
    """Invite someone: returns a single-use registration link."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    ttl = None
    if data.get('ttl_hours') is not None:
        try:
            ttl = timedelta(hours=float(data['ttl_hours']))
        except (TypeError, ValueError, OverflowError):
            raise ValidationError("ttl_hours must be a number")
    token, secret = container().get('token_service').issue_registration_token(ttl)
    log.info("user %s created registration token %s", current_user.id, token.id)
    return jsonify({
        "url": registration_url(current_app, secret),
        "expires_at": token.expires_at.isoformat(),
    }), 201
