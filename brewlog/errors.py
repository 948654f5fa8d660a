"""Application error hierarchy and the handlers that turn it into JSON responses.

Authentication failures all share one public message. The precise reason is
kept on ``kind`` and only ever reaches the operator log.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

log = logging.getLogger(__name__)

GENERIC_AUTH_MESSAGE = "authentication failed"


class AppError(Exception):
    """Base exception class for application-specific errors."""

    def __init__(self, message=None, details=None, status_code=None):
        super().__init__(message)
        self.message = message or "An unexpected error occurred"
        self.details = details
        self.status_code = status_code or 500


class AuthException(AppError):
    """Exception for authentication errors."""

    kind = "auth_failed"

    def __init__(self, details=None):
        super().__init__(
            message=GENERIC_AUTH_MESSAGE,
            details=details,
            status_code=401
        )


class CredentialNotFound(AuthException):
    """Unknown user, credential or token, or a secret that is structurally invalid."""

    kind = "not_found"


class CredentialExpired(AuthException):
    """Challenge, session or registration token past its lifetime."""

    kind = "expired"


class AlreadyUsed(AuthException):
    """Registration token or challenge replay."""

    kind = "already_used"


class CounterRegression(AuthException):
    """Signature counter did not advance; possible cloned authenticator."""

    kind = "counter_regression"


class CeremonyMismatch(AuthException):
    """Origin, challenge, relying party or signature verification failure."""

    kind = "ceremony_mismatch"


class Revoked(AuthException):
    """Bearer token explicitly revoked."""

    kind = "revoked"


class RegistrationLinkInvalid(AppError):
    """Registration link that existed but is used up or expired."""

    def __init__(self, kind, details=None):
        super().__init__(
            message="registration link is no longer valid",
            details=details,
            status_code=410
        )
        self.kind = kind


class ValidationError(AppError):
    """Exception for data validation errors."""

    def __init__(self, message=None, details=None):
        super().__init__(
            message=message or "Validation error",
            details=details,
            status_code=400
        )


class ResourceNotFoundError(AppError):
    """Exception for requests to non-existent resources."""

    def __init__(self, message=None, details=None):
        super().__init__(
            message=message or "Resource not found",
            details=details,
            status_code=404
        )


class ForbiddenError(AppError):
    """Exception for unauthorized access to resources."""

    def __init__(self, message=None, details=None):
        super().__init__(
            message=message or "Access forbidden",
            details=details,
            status_code=403
        )


class ConflictError(AppError):
    """Exception for requests that clash with existing state."""

    def __init__(self, message=None, details=None):
        super().__init__(
            message=message or "Conflict",
            details=details,
            status_code=409
        )


def register_error_handlers(app):
    """Register application error handlers."""

    @app.errorhandler(AuthException)
    def handle_auth_error(e):
        log.warning(
            "authentication failed on %s %s: %s%s",
            request.method,
            request.path,
            e.kind,
            f" ({e.details})" if e.details else "",
        )
        return jsonify({"error": GENERIC_AUTH_MESSAGE}), 401

    @app.errorhandler(RegistrationLinkInvalid)
    def handle_registration_link(e):
        log.warning("registration link rejected: %s", e.kind)
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(AppError)
    def handle_app_error(e):
        """Handle application specific errors."""
        if e.status_code >= 500:
            log.error("application error on %s: %s", request.path, e.message)
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle Werkzeug HTTP exceptions."""
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(500)
    def internal_server_error(e):
        """Handle 500 errors."""
        log.error("unhandled error on %s", request.path, exc_info=True)
        return jsonify({"error": "internal server error"}), 500
