"""Service for handling passkey (WebAuthn) ceremonies.

Each ceremony is split into a start call, which persists a challenge and
returns the options for ``navigator.credentials``, and a finish call, which
consumes that challenge whatever the outcome.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlencode
from uuid import UUID, uuid4

from flask import current_app
from sqlalchemy.exc import IntegrityError
from webauthn import (
    generate_registration_options,
    verify_registration_response,
    generate_authentication_options,
    verify_authentication_response,
    options_to_json,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from brewlog.errors import (
    AlreadyUsed,
    CeremonyMismatch,
    ConflictError,
    CounterRegression,
    CredentialExpired,
    CredentialNotFound,
    ForbiddenError,
    ValidationError,
)
from brewlog.models.user import USERNAME_MAX_LENGTH
from brewlog.models.webauthn import CEREMONY_AUTHENTICATION, CEREMONY_REGISTRATION
from brewlog.utils.security import generate_secret, is_loopback_callback

log = logging.getLogger(__name__)

PASSKEY_NAME_MAX_LENGTH = 64
DEFAULT_CLI_TOKEN_NAME = "cli"


@dataclass
class AuthenticationOutcome:
    """Result of a successful login ceremony.

    Web logins carry ``session_secret``; CLI logins carry ``bearer_secret``
    and the ``redirect_url`` that hands it to the local listener.
    """

    user: object
    session_secret: str | None = None
    bearer_secret: str | None = None
    redirect_url: str | None = None

    @property
    def is_cli(self):
        return self.bearer_secret is not None


def normalize_username(username):
    username = (username or '').strip() if isinstance(username, str) else ''
    if not username or len(username) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"username must be 1 to {USERNAME_MAX_LENGTH} characters")
    return username


def normalize_passkey_name(name):
    name = (name or '').strip() if isinstance(name, str) else ''
    return name[:PASSKEY_NAME_MAX_LENGTH] or 'default'


def credential_raw_id(credential):
    """Canonical base64url id of the credential a client response refers to."""
    if not isinstance(credential, dict):
        raise CredentialNotFound("credential payload is not an object")
    raw = credential.get('rawId') or credential.get('id')
    if not isinstance(raw, str) or not raw:
        raise CredentialNotFound("credential id missing")
    try:
        return bytes_to_base64url(base64url_to_bytes(raw))
    except ValueError:
        raise CredentialNotFound("credential id is not base64url")


def _user_handle(credential):
    response = credential.get('response')
    if not isinstance(response, dict):
        raise CeremonyMismatch("assertion response is not an object")
    handle = response.get('userHandle')
    if not handle:
        return None
    if not isinstance(handle, str):
        raise CeremonyMismatch("user handle is not a string")
    try:
        return base64url_to_bytes(handle)
    except ValueError:
        raise CeremonyMismatch("user handle is not base64url")


def _transports(values):
    transports = []
    for value in values or []:
        try:
            transports.append(AuthenticatorTransport(value))
        except ValueError:
            # Unknown transport hints from newer browsers are ignored
            continue
    return transports


class PasskeyService:
    """Service for WebAuthn (passkey) registration and login."""

    def __init__(self, user_repository, passkey_repository, challenge_repository,
                 token_service, registration_token_repository):
        self.user_repository = user_repository
        self.passkey_repository = passkey_repository
        self.challenge_repository = challenge_repository
        self.token_service = token_service
        self.registration_token_repository = registration_token_repository

    def _rp_id(self):
        return current_app.config['WEBAUTHN_RP_ID']

    def _rp_name(self):
        return current_app.config['WEBAUTHN_RP_NAME']

    def _origin(self):
        return current_app.config['WEBAUTHN_ORIGIN']

    def _store_challenge(self, challenge, ceremony, user_id=None, payload=None):
        challenge_id = generate_secret()
        self.challenge_repository.store(
            challenge_id,
            bytes_to_base64url(challenge),
            ceremony,
            current_app.config['WEBAUTHN_CHALLENGE_TTL'],
            user_id=user_id,
            payload=payload,
        )
        return challenge_id

    def _take_challenge(self, challenge_id, ceremony):
        """Consume a challenge. It is gone after this call whatever happens next."""
        record = self.challenge_repository.take(challenge_id)
        if record is None:
            raise AlreadyUsed("challenge unknown or already consumed")
        if record.is_expired():
            raise CredentialExpired("challenge expired")
        if record.ceremony != ceremony:
            raise CeremonyMismatch(f"challenge issued for {record.ceremony}")
        return record

    def _registration_options(self, user_handle, username, exclude=None):
        return generate_registration_options(
            rp_id=self._rp_id(),
            rp_name=self._rp_name(),
            user_id=user_handle,
            user_name=username,
            user_display_name=username,
            exclude_credentials=exclude or [],
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.REQUIRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
        )

    def _descriptor(self, passkey):
        return PublicKeyCredentialDescriptor(
            id=base64url_to_bytes(passkey.credential_id),
            transports=_transports(passkey.transports) or None,
        )

    # Registration

    def start_registration(self, registration_secret, username):
        """Begin creating a new account from a registration link.

        The link is claimed here, before any authenticator is involved, so a
        failed or abandoned ceremony uses it up.

        Returns:
            tuple: (challenge_id, options as a JSON string)
        """
        username = normalize_username(username)
        if self.user_repository.get_by_username(username) is not None:
            raise ConflictError("username is already taken")

        token = self.token_service.claim_registration_token(registration_secret)

        user_uuid = str(uuid4())
        options = self._registration_options(UUID(user_uuid).bytes, username)
        challenge_id = self._store_challenge(
            options.challenge,
            CEREMONY_REGISTRATION,
            payload={
                'username': username,
                'user_uuid': user_uuid,
                'registration_token_id': token.id,
            },
        )
        log.info("registration ceremony started with registration token %s", token.id)
        return challenge_id, options_to_json(options)

    def start_passkey_addition(self, user):
        """Begin registering an extra passkey for a signed-in user."""
        existing = self.passkey_repository.list_by_user(user.id)
        options = self._registration_options(
            user.handle_bytes,
            user.username,
            exclude=[self._descriptor(passkey) for passkey in existing],
        )
        challenge_id = self._store_challenge(options.challenge, CEREMONY_REGISTRATION, user_id=user.id)
        log.info("passkey addition started for user %s", user.id)
        return challenge_id, options_to_json(options)

    def finish_registration(self, challenge_id, credential, passkey_name=None, user=None):
        """Verify an attestation and store the new credential.

        For link registrations the account is created here. For passkey
        additions ``user`` must be the signed-in owner of the challenge.

        Returns:
            tuple: (User, PasskeyCredential)
        """
        record = self._take_challenge(challenge_id, CEREMONY_REGISTRATION)
        payload = record.payload

        if record.user_id is not None:
            if user is None or user.id != record.user_id:
                raise ForbiddenError("passkey registration belongs to another user")
            owner = user
        elif 'user_uuid' not in payload:
            raise CeremonyMismatch("registration challenge without a pending user")
        else:
            owner = None

        try:
            verification = verify_registration_response(
                credential=credential,
                expected_challenge=base64url_to_bytes(record.challenge),
                expected_rp_id=self._rp_id(),
                expected_origin=self._origin(),
            )
        except (WebAuthnException, ValueError, TypeError, KeyError) as e:
            raise CeremonyMismatch(f"registration response rejected: {e}")

        credential_id = bytes_to_base64url(verification.credential_id)
        if self.passkey_repository.get_by_credential_id(credential_id) is not None:
            raise ConflictError("this passkey is already registered")

        response = credential.get('response') if isinstance(credential, dict) else None
        transports = response.get('transports') if isinstance(response, dict) else None
        stored = {
            'credential_id': credential_id,
            'public_key': bytes_to_base64url(verification.credential_public_key),
            'sign_count': verification.sign_count,
            'transports': [t for t in transports if isinstance(t, str)] if isinstance(transports, list) else [],
            'device_type': getattr(verification.credential_device_type, 'value', None),
            'backed_up': bool(verification.credential_backed_up),
        }
        name = normalize_passkey_name(passkey_name)

        session = self.passkey_repository.session
        try:
            if owner is None:
                if self.user_repository.get_by_username(payload['username']) is not None:
                    raise ConflictError("username is already taken")
                owner = self.user_repository.create(payload['username'], payload['user_uuid'], commit=False)
                self.registration_token_repository.set_used_by(
                    payload['registration_token_id'], owner.id, commit=False
                )
            passkey = self.passkey_repository.create(owner.id, credential_id, stored, name, commit=False)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("username or passkey was registered concurrently")
        except Exception:
            session.rollback()
            raise

        log.info("registered passkey %s for user %s", passkey.id, owner.id)
        return owner, passkey

    # Authentication

    def start_authentication(self, username=None, cli_callback=None, state=None, token_name=None):
        """Begin a login ceremony.

        With a username the ceremony is restricted to that user's passkeys;
        without one any discoverable credential may answer. An unknown
        username yields an empty allow list rather than an error.
        """
        payload = {}
        allow = []
        if username:
            user = self.user_repository.get_by_username(username.strip())
            passkeys = self.passkey_repository.list_by_user(user.id) if user else []
            allow = [self._descriptor(passkey) for passkey in passkeys]
            payload['allowed_credential_ids'] = [passkey.credential_id for passkey in passkeys]
            payload['scoped'] = True

        if cli_callback is not None:
            if not isinstance(cli_callback, str) or not is_loopback_callback(cli_callback):
                raise ValidationError("cli callback must be http on a loopback address")
            if not isinstance(state, str) or not state:
                raise ValidationError("cli login requires a state value")
            payload['cli'] = {
                'callback': cli_callback,
                'state': state,
                'token_name': (token_name or DEFAULT_CLI_TOKEN_NAME).strip()[:100] or DEFAULT_CLI_TOKEN_NAME,
            }

        options = generate_authentication_options(
            rp_id=self._rp_id(),
            allow_credentials=allow,
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        challenge_id = self._store_challenge(options.challenge, CEREMONY_AUTHENTICATION, payload=payload)
        return challenge_id, options_to_json(options)

    def finish_authentication(self, challenge_id, credential):
        """Verify an assertion and sign the user in.

        Raises:
            AuthException subclasses; the challenge is consumed in every case.
        """
        record = self._take_challenge(challenge_id, CEREMONY_AUTHENTICATION)
        payload = record.payload

        credential_id = credential_raw_id(credential)
        passkey = self.passkey_repository.get_by_credential_id(credential_id)
        if passkey is None:
            raise CredentialNotFound("assertion for an unknown credential")

        if payload.get('scoped') and credential_id not in payload.get('allowed_credential_ids', []):
            raise CeremonyMismatch(f"credential {passkey.id} not allowed for this challenge")

        owner = passkey.user
        handle = _user_handle(credential)
        if handle is None and not payload.get('scoped'):
            raise CeremonyMismatch("discoverable login without a user handle")
        if handle is not None and handle != owner.handle_bytes:
            raise CeremonyMismatch(f"user handle does not match credential {passkey.id}")

        stored_count = passkey.sign_count
        try:
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=base64url_to_bytes(record.challenge),
                expected_rp_id=self._rp_id(),
                expected_origin=self._origin(),
                credential_public_key=base64url_to_bytes(passkey.credential['public_key']),
                # Counter monotonicity is enforced below so it can be reported on its own
                credential_current_sign_count=0,
            )
        except (WebAuthnException, ValueError, TypeError, KeyError) as e:
            raise CeremonyMismatch(f"assertion rejected for credential {passkey.id}: {e}")

        new_count = verification.new_sign_count
        # Authenticators without a counter report zero every time
        if (new_count > 0 or stored_count > 0) and new_count <= stored_count:
            log.warning(
                "signature counter for credential %s went from %s to %s, possible cloned authenticator",
                passkey.id, stored_count, new_count,
            )
            raise CounterRegression(f"credential {passkey.id}")

        self.passkey_repository.update_after_use(passkey, new_count)
        log.info("user %s signed in with passkey %s", owner.id, passkey.id)

        cli = payload.get('cli')
        if cli:
            token, secret = self.token_service.issue_bearer_token(owner, cli['token_name'])
            query = urlencode({'token': secret, 'state': cli['state']})
            return AuthenticationOutcome(
                user=owner,
                bearer_secret=secret,
                redirect_url=f"{cli['callback']}{'&' if '?' in cli['callback'] else '?'}{query}",
            )

        _, secret = self.token_service.issue_session(owner)
        return AuthenticationOutcome(user=owner, session_secret=secret)
