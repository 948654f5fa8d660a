import logging

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from brewlog.errors import ConflictError
from brewlog.models.base_repository import BaseRepository
from brewlog.models.coffee import (
    ENTITY_BAG,
    ENTITY_BREW,
    ENTITY_ROAST,
    ENTITY_ROASTER,
    Bag,
    Brew,
    Roast,
    Roaster,
    TimelineEvent,
    timeline_subjects,
)
from brewlog.utils.security import utcnow

log = logging.getLogger(__name__)

ENTITY_TYPES = {Roaster: ENTITY_ROASTER, Roast: ENTITY_ROAST, Bag: ENTITY_BAG, Brew: ENTITY_BREW}


def _events_of(entities):
    """Condition matching every timeline row written for ``entities``."""
    ids_by_type = {}
    for entity in entities:
        ids_by_type.setdefault(ENTITY_TYPES[type(entity)], []).append(entity.id)
    return or_(*(
        and_(TimelineEvent.entity_type == entity_type, TimelineEvent.entity_id.in_(ids))
        for entity_type, ids in ids_by_type.items()
    ))


class TimelineEntityRepository(BaseRepository):
    """Coffee entities whose timeline rows are written in the same transaction.

    Events copy display data from the entity and its parents, so an update
    rewrites the rows of the entity and of everything below it, and a delete
    removes them.
    """

    def _conflict_message(self, entity):
        return f"{type(entity).__name__.lower()} already exists"

    def create(self, entity):
        """Insert ``entity`` and its ``added`` event in one transaction."""
        try:
            self.session.add(entity)
            self.session.flush()
            self.session.add(entity.to_timeline_event())
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(self._conflict_message(entity))
        except Exception as e:
            self.session.rollback()
            log.error(f"Error creating {type(entity).__name__}: {str(e)}")
            raise
        return entity

    def update(self, entity):
        try:
            self.session.flush()
            self.refresh_events(entity)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(self._conflict_message(entity))
        except Exception as e:
            self.session.rollback()
            log.error(f"Error updating {type(entity).__name__}: {str(e)}")
            raise
        return entity

    def refresh_events(self, entity):
        """Rewrite the display columns of existing events; action and time are kept."""
        for subject in timeline_subjects(entity):
            fresh = subject.to_timeline_event()
            self.session.execute(
                update(TimelineEvent)
                .where(
                    TimelineEvent.entity_type == fresh.entity_type,
                    TimelineEvent.entity_id == fresh.entity_id,
                )
                .values(
                    title=fresh.title,
                    details_json=fresh.details_json,
                    tasting_notes_json=fresh.tasting_notes_json,
                    slug=fresh.slug,
                    roaster_slug=fresh.roaster_slug,
                )
                .execution_options(synchronize_session=False)
            )

    def delete(self, entity):
        self.session.execute(
            delete(TimelineEvent)
            .where(_events_of(timeline_subjects(entity)))
            .execution_options(synchronize_session=False)
        )
        self.session.delete(entity)
        self.commit(f"deleting {type(entity).__name__} {entity.id}")
        return True


class SqlAlchemyRoasterRepository(TimelineEntityRepository):

    model_class = Roaster

    def _conflict_message(self, roaster):
        return f"roaster '{roaster.slug}' already exists"

    def list_all(self, country: str | None = None) -> list[Roaster]:
        query = select(Roaster).order_by(Roaster.name)
        if country:
            query = query.filter(func.lower(Roaster.country) == country.lower())
        return list(self.session.execute(query).scalars())

    def get_by_slug(self, slug: str) -> Roaster | None:
        return self.session.execute(select(Roaster).filter_by(slug=slug)).scalar_one_or_none()


class SqlAlchemyRoastRepository(TimelineEntityRepository):

    model_class = Roast

    def _conflict_message(self, roast):
        return f"roast '{roast.slug}' already exists for this roaster"

    def list_all(self, roaster_id: int | None = None) -> list[Roast]:
        query = select(Roast).order_by(Roast.created_at.desc(), Roast.id.desc())
        if roaster_id is not None:
            query = query.filter_by(roaster_id=roaster_id)
        return list(self.session.execute(query).scalars())


class SqlAlchemyBagRepository(TimelineEntityRepository):

    model_class = Bag

    def list_all(self, roast_id: int | None = None, closed: bool | None = None) -> list[Bag]:
        query = select(Bag).order_by(Bag.created_at.desc(), Bag.id.desc())
        if roast_id is not None:
            query = query.filter_by(roast_id=roast_id)
        if closed is not None:
            query = query.filter_by(closed=closed)
        return list(self.session.execute(query).scalars())

    def finish(self, bag: Bag) -> Bag:
        """Close the bag and log a ``finished`` event next to its ``added`` one."""
        now = utcnow()
        bag.remaining = 0.0
        bag.closed = True
        bag.finished_at = now.date()
        self.session.add(bag.to_timeline_event(action='finished', occurred_at=now))
        self.commit(f"finishing bag {bag.id}")
        return bag


class SqlAlchemyBrewRepository(TimelineEntityRepository):

    model_class = Brew

    def list_all(self, bag_id: int | None = None) -> list[Brew]:
        query = select(Brew).order_by(Brew.created_at.desc(), Brew.id.desc())
        if bag_id is not None:
            query = query.filter_by(bag_id=bag_id)
        return list(self.session.execute(query).scalars())

    def create(self, brew: Brew) -> Brew:
        """Take the coffee out of the bag, then insert the brew and its event.

        Raises:
            ConflictError: the bag is closed or holds less than ``coffee_weight``
        """
        bag_id = brew.bag.id if brew.bag is not None else brew.bag_id
        try:
            result = self.session.execute(
                update(Bag)
                .where(Bag.id == bag_id, Bag.closed.is_(False), Bag.remaining >= brew.coffee_weight)
                .values(remaining=Bag.remaining - brew.coffee_weight, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("not enough coffee left in the bag, or the bag is closed")
            if brew.bag is not None:
                self.session.expire(brew.bag, ['remaining', 'updated_at'])
            self.session.add(brew)
            self.session.flush()
            self.session.add(brew.to_timeline_event())
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return brew


class SqlAlchemyTimelineRepository(BaseRepository):

    model_class = TimelineEvent

    def page(self, page: int = 1, per_page: int = 20) -> tuple[list[TimelineEvent], int]:
        """Newest first. Returns the events on the page and the overall total."""
        total = self.session.execute(select(func.count(TimelineEvent.id))).scalar()
        events = self.session.execute(
            select(TimelineEvent)
            .order_by(TimelineEvent.occurred_at.desc(), TimelineEvent.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars()
        return list(events), total

    def for_entity(self, entity_type: str, entity_id: int) -> list[TimelineEvent]:
        return list(self.session.execute(
            select(TimelineEvent).filter_by(entity_type=entity_type, entity_id=entity_id)
        ).scalars())
