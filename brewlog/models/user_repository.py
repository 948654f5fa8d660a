import logging

from sqlalchemy import select, delete, update, func

from brewlog.models.base_repository import BaseRepository
from brewlog.models.user import User, Session
from brewlog.utils.security import utcnow

log = logging.getLogger(__name__)


class SqlAlchemyUserRepository(BaseRepository):
    """Repository for User model database operations."""

    model_class = User

    def get_by_uuid(self, user_uuid: str) -> User | None:
        return self.session.execute(select(User).filter_by(uuid=user_uuid)).scalar_one_or_none()

    def get_by_username(self, username: str) -> User | None:
        return self.session.execute(select(User).filter_by(username=username)).scalar_one_or_none()

    def exists(self) -> bool:
        """Whether any account has been created yet."""
        return self.session.execute(select(func.count(User.id))).scalar() > 0

    def get_all(self) -> list[User]:
        return list(self.session.execute(select(User).order_by(User.id)).scalars())

    def create(self, username: str, user_uuid: str, commit: bool = True) -> User:
        user = User(username=username, uuid=user_uuid)
        self.session.add(user)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        log.info("created user %s", user.id)
        return user


class SqlAlchemySessionRepository(BaseRepository):
    """Login sessions, always addressed by the hash of the cookie secret."""

    model_class = Session

    def create(self, user_id: int, token_hash: str, created_at, expires_at) -> Session:
        session = Session(
            user_id=user_id,
            session_token_hash=token_hash,
            created_at=created_at,
            expires_at=expires_at,
        )
        return self.save(session)

    def get_by_hash(self, token_hash: str) -> Session | None:
        return self.session.execute(
            select(Session).filter_by(session_token_hash=token_hash)
        ).scalar_one_or_none()

    def touch(self, session_id: int) -> None:
        self.session.execute(
            update(Session).where(Session.id == session_id).values(last_used_at=utcnow())
        )
        self.session.commit()

    def delete_by_hash(self, token_hash: str) -> bool:
        result = self.session.execute(delete(Session).where(Session.session_token_hash == token_hash))
        self.session.commit()
        return result.rowcount > 0

    def delete_expired(self, now=None) -> int:
        result = self.session.execute(delete(Session).where(Session.expires_at <= (now or utcnow())))
        self.session.commit()
        return result.rowcount
