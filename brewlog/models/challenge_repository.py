"""Persistence for in-flight WebAuthn ceremonies.

Challenges live in the database rather than process memory because the start
and finish legs of a ceremony are separate requests that may land on different
workers.
"""

import json
import logging

from sqlalchemy import delete, select

from brewlog.models.base_repository import BaseRepository
from brewlog.models.webauthn import WebAuthnChallenge
from brewlog.utils.security import utcnow

log = logging.getLogger(__name__)


class SqlAlchemyChallengeRepository(BaseRepository):

    model_class = WebAuthnChallenge

    def store(self, challenge_id: str, challenge: str, ceremony: str, ttl,
              user_id: int | None = None, payload: dict | None = None) -> WebAuthnChallenge:
        now = utcnow()
        self.delete_expired(now, commit=False)
        record = WebAuthnChallenge(
            id=challenge_id,
            challenge=challenge,
            ceremony=ceremony,
            user_id=user_id,
            payload_json=json.dumps(payload or {}),
            created_at=now,
            expires_at=now + ttl,
        )
        return self.save(record)

    def take(self, challenge_id: str) -> WebAuthnChallenge | None:
        """Remove and return a challenge.

        Only the request whose delete actually removed the row gets the record;
        a concurrent or repeated take of the same id returns None. Expired
        records are returned so the caller can tell expiry from replay.
        """
        if not isinstance(challenge_id, str) or not challenge_id:
            return None
        record = self.session.execute(
            select(WebAuthnChallenge).filter_by(id=challenge_id)
        ).scalar_one_or_none()
        if record is None:
            return None
        # Detached so the commit below does not expire its loaded attributes
        self.session.expunge(record)
        result = self.session.execute(delete(WebAuthnChallenge).where(WebAuthnChallenge.id == challenge_id))
        self.session.commit()
        if result.rowcount != 1:
            return None
        return record

    def delete_expired(self, now=None, commit: bool = True) -> int:
        result = self.session.execute(
            delete(WebAuthnChallenge).where(WebAuthnChallenge.expires_at <= (now or utcnow()))
        )
        if commit:
            self.session.commit()
        return result.rowcount
