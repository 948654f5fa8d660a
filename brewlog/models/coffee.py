"""Coffee data: roasters, roasts and the denormalised timeline."""

import json
import re
import unicodedata
from enum import Enum

from brewlog.extensions import db
from brewlog.utils.security import utcnow

ENTITY_ROASTER = "roaster"
ENTITY_ROAST = "roast"
ENTITY_BAG = "bag"
ENTITY_BREW = "brew"


def slugify(value):
    value = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode('ascii')
    value = re.sub(r'[^a-z0-9]+', '-', value.lower())
    return value.strip('-')


def is_valid_url_scheme(url):
    """Only http(s) homepages are kept; ``javascript:`` and friends are dropped."""
    lower = url.strip().lower()
    return lower.startswith('http://') or lower.startswith('https://')


def format_weight(grams):
    if grams >= 1000:
        return f"{grams / 1000:.1f}kg"
    if abs(grams - round(grams)) < 0.05:
        return f"{grams:.0f}g"
    return f"{grams:.1f}g"


def timeline_subjects(entity):
    """``entity`` plus everything below it whose timeline rows copy its data."""
    subjects = [entity]
    for child in entity.timeline_children():
        subjects.extend(timeline_subjects(child))
    return subjects


class Roaster(db.Model):
    __tablename__ = "roasters"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    country = db.Column(db.String(100), nullable=False)
    city = db.Column(db.String(100), nullable=True)
    homepage = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    roasts = db.relationship('Roast', back_populates='roaster', cascade='all, delete-orphan')

    @staticmethod
    def build_slug(name, city=None):
        return slugify(f"{name}-{city}" if city else name)

    def timeline_children(self):
        return list(self.roasts)

    def to_timeline_event(self):
        details = [{'label': 'Country', 'value': self.country}]
        if self.city:
            details.append({'label': 'City', 'value': self.city})
        return TimelineEvent(
            entity_type=ENTITY_ROASTER,
            entity_id=self.id,
            action='added',
            occurred_at=self.created_at,
            title=self.name,
            details_json=json.dumps(details),
            tasting_notes_json='[]',
            slug=self.slug,
            roaster_slug=self.slug,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'country': self.country,
            'city': self.city,
            'homepage': self.homepage,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Roaster {self.slug}>'


class Roast(db.Model):
    __tablename__ = "roasts"
    __table_args__ = (db.UniqueConstraint('roaster_id', 'slug', name='uq_roasts_roaster_slug'),)

    id = db.Column(db.Integer, primary_key=True)
    roaster_id = db.Column(db.Integer, db.ForeignKey('roasters.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(255), nullable=False)
    origin = db.Column(db.String(100), nullable=True)
    region = db.Column(db.String(100), nullable=True)
    producer = db.Column(db.String(200), nullable=True)
    process = db.Column(db.String(100), nullable=True)
    tasting_notes_json = db.Column(db.Text, nullable=False, default='[]')
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    roaster = db.relationship('Roaster', back_populates='roasts')
    bags = db.relationship('Bag', back_populates='roast', cascade='all, delete-orphan')

    @property
    def tasting_notes(self):
        return json.loads(self.tasting_notes_json or '[]')

    @tasting_notes.setter
    def tasting_notes(self, notes):
        self.tasting_notes_json = json.dumps(list(notes or []))

    def timeline_children(self):
        return list(self.bags)

    def to_timeline_event(self):
        details = [{'label': 'Roaster', 'value': self.roaster.name}]
        for label, value in (('Origin', self.origin), ('Region', self.region),
                             ('Producer', self.producer), ('Process', self.process)):
            if value:
                details.append({'label': label, 'value': value})
        return TimelineEvent(
            entity_type=ENTITY_ROAST,
            entity_id=self.id,
            action='added',
            occurred_at=self.created_at,
            title=self.name,
            details_json=json.dumps(details),
            tasting_notes_json=self.tasting_notes_json,
            slug=self.slug,
            roaster_slug=self.roaster.slug,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'roaster_id': self.roaster_id,
            'roaster_slug': self.roaster.slug if self.roaster else None,
            'name': self.name,
            'slug': self.slug,
            'origin': self.origin,
            'region': self.region,
            'producer': self.producer,
            'process': self.process,
            'tasting_notes': self.tasting_notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Roast {self.slug}>'


class Bag(db.Model):
    """A bag of one roast. ``remaining`` goes down as brews are logged."""

    __tablename__ = "bags"

    id = db.Column(db.Integer, primary_key=True)
    roast_id = db.Column(db.Integer, db.ForeignKey('roasts.id', ondelete='CASCADE'), nullable=False, index=True)
    roast_date = db.Column(db.Date, nullable=True)
    amount = db.Column(db.Float, nullable=False)
    remaining = db.Column(db.Float, nullable=False)
    closed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    finished_at = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    roast = db.relationship('Roast', back_populates='bags')
    brews = db.relationship('Brew', back_populates='bag', cascade='all, delete-orphan')

    def timeline_children(self):
        return list(self.brews)

    def to_timeline_event(self, action='added', occurred_at=None):
        roaster = self.roast.roaster
        details = [
            {'label': 'Roaster', 'value': roaster.name},
            {'label': 'Amount', 'value': format_weight(self.amount)},
        ]
        return TimelineEvent(
            entity_type=ENTITY_BAG,
            entity_id=self.id,
            action=action,
            occurred_at=occurred_at or self.created_at,
            title=self.roast.name,
            details_json=json.dumps(details),
            tasting_notes_json='[]',
            slug=self.roast.slug,
            roaster_slug=roaster.slug,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'roast_id': self.roast_id,
            'roast_name': self.roast.name if self.roast else None,
            'roast_slug': self.roast.slug if self.roast else None,
            'roaster_slug': self.roast.roaster.slug if self.roast else None,
            'roast_date': self.roast_date.isoformat() if self.roast_date else None,
            'amount': self.amount,
            'remaining': self.remaining,
            'closed': self.closed,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Bag {self.id} of roast {self.roast_id}>'


class QuickNote(Enum):
    GOOD = 'good'
    TOO_FAST = 'too-fast'
    TOO_SLOW = 'too-slow'
    TOO_HOT = 'too-hot'
    UNDER_EXTRACTED = 'under-extracted'
    OVER_EXTRACTED = 'over-extracted'

    @property
    def label(self):
        return self.value.replace('-', ' ').title()


def format_brew_time(seconds):
    return f"{seconds // 60}:{seconds % 60:02d}"


class Brew(db.Model):
    """One brew from a bag. Grinder and brewer are free text."""

    __tablename__ = "brews"

    id = db.Column(db.Integer, primary_key=True)
    bag_id = db.Column(db.Integer, db.ForeignKey('bags.id', ondelete='CASCADE'), nullable=False, index=True)
    coffee_weight = db.Column(db.Float, nullable=False)
    grinder = db.Column(db.String(200), nullable=True)
    grind_setting = db.Column(db.Float, nullable=False)
    brewer = db.Column(db.String(200), nullable=True)
    water_volume = db.Column(db.Integer, nullable=False)
    water_temp = db.Column(db.Float, nullable=False)
    brew_time = db.Column(db.Integer, nullable=True)
    quick_notes_json = db.Column(db.Text, nullable=False, default='[]')
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    bag = db.relationship('Bag', back_populates='brews')

    @property
    def quick_notes(self):
        return [QuickNote(value) for value in json.loads(self.quick_notes_json or '[]')]

    @quick_notes.setter
    def quick_notes(self, notes):
        self.quick_notes_json = json.dumps([note.value for note in notes or []])

    @property
    def ratio(self):
        if self.coffee_weight <= 0:
            return None
        return f"1:{self.water_volume / self.coffee_weight:.1f}"

    def timeline_children(self):
        return []

    def to_timeline_event(self):
        roast = self.bag.roast
        details = [
            {'label': 'Roaster', 'value': roast.roaster.name},
            {'label': 'Coffee', 'value': format_weight(self.coffee_weight)},
            {'label': 'Water', 'value': f"{self.water_volume}ml · {self.water_temp:.1f}°C"},
        ]
        if self.brew_time is not None:
            details.append({'label': 'Brew Time', 'value': format_brew_time(self.brew_time)})
        grind = f"{self.grind_setting:.1f}"
        details.append({'label': 'Grinder', 'value': f"{self.grinder} · {grind}" if self.grinder else grind})
        if self.brewer:
            details.append({'label': 'Brewer', 'value': self.brewer})
        details.append({'label': 'Ratio', 'value': self.ratio or 'N/A'})
        if self.quick_notes:
            details.append({'label': 'Notes', 'value': ', '.join(note.label for note in self.quick_notes)})
        return TimelineEvent(
            entity_type=ENTITY_BREW,
            entity_id=self.id,
            action='brewed',
            occurred_at=self.created_at,
            title=roast.name,
            details_json=json.dumps(details),
            tasting_notes_json='[]',
            slug=roast.slug,
            roaster_slug=roast.roaster.slug,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'bag_id': self.bag_id,
            'roast_name': self.bag.roast.name if self.bag else None,
            'coffee_weight': self.coffee_weight,
            'grinder': self.grinder,
            'grind_setting': self.grind_setting,
            'brewer': self.brewer,
            'water_volume': self.water_volume,
            'water_temp': self.water_temp,
            'brew_time': self.brew_time,
            'quick_notes': [note.value for note in self.quick_notes],
            'ratio': self.ratio,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Brew {self.id} from bag {self.bag_id}>'


class TimelineEvent(db.Model):
    """Audit-style log entry with the display data copied in at insert time."""

    __tablename__ = "timeline_events"

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(20), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(20), nullable=False)
    occurred_at = db.Column(db.DateTime, nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    details_json = db.Column(db.Text, nullable=False, default='[]')
    tasting_notes_json = db.Column(db.Text, nullable=False, default='[]')
    slug = db.Column(db.String(255), nullable=True)
    roaster_slug = db.Column(db.String(255), nullable=True)

    __table_args__ = (db.Index('ix_timeline_events_entity', 'entity_type', 'entity_id'),)

    def to_dict(self):
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'action': self.action,
            'occurred_at': self.occurred_at.isoformat() if self.occurred_at else None,
            'title': self.title,
            'details': json.loads(self.details_json or '[]'),
            'tasting_notes': json.loads(self.tasting_notes_json or '[]'),
            'slug': self.slug,
            'roaster_slug': self.roaster_slug,
        }
