import logging

from sqlalchemy import select, update

from brewlog.models.base_repository import BaseRepository
from brewlog.models.token import BearerToken, RegistrationToken
from brewlog.utils.security import utcnow

log = logging.getLogger(__name__)


class SqlAlchemyTokenRepository(BaseRepository):
    """Bearer tokens. Lookups go through the stored hash only."""

    model_class = BearerToken

    def create(self, user_id: int, token_hash: str, name: str) -> BearerToken:
        return self.save(BearerToken(user_id=user_id, token_hash=token_hash, name=name))

    def get_by_hash(self, token_hash: str) -> BearerToken | None:
        return self.session.execute(
            select(BearerToken).filter_by(token_hash=token_hash)
        ).scalar_one_or_none()

    def list_by_user(self, user_id: int) -> list[BearerToken]:
        return list(self.session.execute(
            select(BearerToken).filter_by(user_id=user_id).order_by(BearerToken.created_at.desc())
        ).scalars())

    def revoke(self, token: BearerToken) -> BearerToken:
        """One-way transition; an already revoked token keeps its first revocation time."""
        self.session.execute(
            update(BearerToken)
            .where(BearerToken.id == token.id, BearerToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        self.session.commit()
        self.session.refresh(token)
        return token

    def touch(self, token_id: int) -> None:
        self.session.execute(
            update(BearerToken).where(BearerToken.id == token_id).values(last_used_at=utcnow())
        )
        self.session.commit()


class SqlAlchemyRegistrationTokenRepository(BaseRepository):
    """One-time registration links."""

    model_class = RegistrationToken

    def create(self, token_hash: str, created_at, expires_at) -> RegistrationToken:
        return self.save(RegistrationToken(token_hash=token_hash, created_at=created_at, expires_at=expires_at))

    def get_by_hash(self, token_hash: str) -> RegistrationToken | None:
        return self.session.execute(
            select(RegistrationToken).filter_by(token_hash=token_hash)
        ).scalar_one_or_none()

    def claim(self, token_id: int, now=None) -> bool:
        """Mark the token used if nobody else has. Returns True only for the winner."""
        now = now or utcnow()
        result = self.session.execute(
            update(RegistrationToken)
            .where(
                RegistrationToken.id == token_id,
                RegistrationToken.used_at.is_(None),
                RegistrationToken.expires_at > now,
            )
            .values(used_at=now)
        )
        self.session.commit()
        return result.rowcount == 1

    def set_used_by(self, token_id: int, user_id: int, commit: bool = True) -> None:
        self.session.execute(
            update(RegistrationToken).where(RegistrationToken.id == token_id).values(used_by_user_id=user_id)
        )
        if commit:
            self.session.commit()
