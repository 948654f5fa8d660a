import json
import logging

from sqlalchemy import select

from brewlog.models.base_repository import BaseRepository
from brewlog.models.webauthn import PasskeyCredential
from brewlog.utils.security import utcnow

log = logging.getLogger(__name__)


class SqlAlchemyPasskeyRepository(BaseRepository):
    """Repository for stored passkey credentials."""

    model_class = PasskeyCredential

    def create(self, user_id: int, credential_id: str, credential: dict, name: str,
               commit: bool = True) -> PasskeyCredential:
        passkey = PasskeyCredential(
            user_id=user_id,
            credential_id=credential_id,
            credential_json=json.dumps(credential),
            name=name,
        )
        self.session.add(passkey)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return passkey

    def get_by_credential_id(self, credential_id: str) -> PasskeyCredential | None:
        return self.session.execute(
            select(PasskeyCredential).filter_by(credential_id=credential_id)
        ).scalar_one_or_none()

    def list_by_user(self, user_id: int) -> list[PasskeyCredential]:
        return list(self.session.execute(
            select(PasskeyCredential).filter_by(user_id=user_id).order_by(PasskeyCredential.created_at)
        ).scalars())

    def list_all(self) -> list[PasskeyCredential]:
        return list(self.session.execute(select(PasskeyCredential)).scalars())

    def update_after_use(self, passkey: PasskeyCredential, new_sign_count: int) -> PasskeyCredential:
        """Store the advanced counter and stamp ``last_used_at``."""
        credential = passkey.credential
        credential['sign_count'] = new_sign_count
        passkey.credential_json = json.dumps(credential)
        passkey.last_used_at = utcnow()
        return self.save(passkey)
