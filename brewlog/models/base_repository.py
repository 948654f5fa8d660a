"""Base repository for database operations."""

import logging

from brewlog.extensions import db

logger = logging.getLogger(__name__)


class BaseRepository:
    """Common lookups and writes for one model class.

    Subclasses set ``model_class``. Every write commits immediately unless the
    method takes ``commit=False``, in which case the caller owns the
    transaction.
    """

    model_class = None

    def __init__(self, db_instance=None):
        self.db = db_instance or db

    @property
    def session(self):
        return self.db.session

    def get_by_id(self, id):
        """Entity with primary key ``id``, or None."""
        if not self.model_class:
            raise NotImplementedError("Model class must be set in derived repository")
        return self.session.get(self.model_class, id)

    def commit(self, action="committing"):
        try:
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error {action}: {str(e)}")
            raise

    def save(self, entity):
        self.session.add(entity)
        self.commit(f"saving {type(entity).__name__}")
        return entity

    def delete(self, entity):
        """Delete ``entity``; ORM cascades take its children with it."""
        self.session.delete(entity)
        self.commit(f"deleting {type(entity).__name__}")
        return True
