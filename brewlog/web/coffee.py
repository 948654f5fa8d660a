"""Roasters, roasts, bags, brews and the timeline. Reads are public; writes need an identity."""

import logging
from datetime import date

from flask import Blueprint, jsonify, request

from brewlog.auth.middleware import require_identity_for_writes
from brewlog.errors import ResourceNotFoundError, ValidationError
from brewlog.models.coffee import Bag, Brew, QuickNote, Roast, Roaster, is_valid_url_scheme, slugify
from brewlog.services.container import container

coffee_bp = Blueprint("coffee", __name__, url_prefix="/api")
require_identity_for_writes(coffee_bp)
log = logging.getLogger(__name__)

MAX_PER_PAGE = 100


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _text(data, field, required=False, max_length=200):
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{field} is required")
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None


def _homepage(data):
    homepage = _text(data, 'homepage', max_length=500)
    if homepage and not is_valid_url_scheme(homepage):
        return None
    return homepage


def _tasting_notes(data):
    notes = data.get('tasting_notes') or []
    if not isinstance(notes, list) or not all(isinstance(note, str) for note in notes):
        raise ValidationError("tasting_notes must be a list of strings")
    return [note.strip() for note in notes if note.strip()]


def _get_or_404(repository_name, entity_id, label):
    entity = container().get(repository_name).get_by_id(entity_id)
    if entity is None:
        raise ResourceNotFoundError(f"{label} not found")
    return entity


def _page_args():
    try:
        page = max(int(request.args.get('page', 1)), 1)
        per_page = min(max(int(request.args.get('per_page', 20)), 1), MAX_PER_PAGE)
    except ValueError:
        raise ValidationError("page and per_page must be integers")
    return page, per_page


def _reference(data, field):
    value = data.get(field)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    return value


def _number(data, field, required=False, minimum=0.0, integer=False):
    """Numeric field; bools are rejected even though Python counts them as ints."""
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or (integer and not isinstance(value, int)):
        raise ValidationError(f"{field} must be {'an integer' if integer else 'a number'}")
    if value < minimum:
        raise ValidationError(f"{field} must be at least {minimum:g}")
    return value


def _date(data, field):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")


def _quick_notes(data):
    notes = data.get('quick_notes') or []
    if not isinstance(notes, list):
        raise ValidationError("quick_notes must be a list")
    try:
        return [QuickNote(note) for note in notes]
    except ValueError:
        allowed = ', '.join(note.value for note in QuickNote)
        raise ValidationError(f"quick_notes may only contain {allowed}")


# Roasters

@coffee_bp.route("/roasters", methods=["GET"])
def list_roasters():
    roasters = container().get('roaster_repository').list_all(country=request.args.get('country'))
    return jsonify({"roasters": [roaster.to_dict() for roaster in roasters]})


@coffee_bp.route("/roasters/<int:roaster_id>", methods=["GET"])
def get_roaster(roaster_id):
    return jsonify(_get_or_404('roaster_repository', roaster_id, 'roaster').to_dict())


@coffee_bp.route("/roasters", methods=["POST"])
def create_roaster():
    data = _json_body()
    name = _text(data, 'name', required=True)
    city = _text(data, 'city', max_length=100)
    roaster = Roaster(
        name=name,
        slug=Roaster.build_slug(name, city),
        country=_text(data, 'country', required=True, max_length=100),
        city=city,
        homepage=_homepage(data),
    )
    if not roaster.slug:
        raise ValidationError("name must contain letters or digits")
    container().get('roaster_repository').create(roaster)
    log.info("created roaster %s", roaster.slug)
    return jsonify(roaster.to_dict()), 201


@coffee_bp.route("/roasters/<int:roaster_id>", methods=["PUT"])
def update_roaster(roaster_id):
    repository = container().get('roaster_repository')
    roaster = _get_or_404('roaster_repository', roaster_id, 'roaster')
    data = _json_body()
    if 'name' in data:
        roaster.name = _text(data, 'name', required=True)
    if 'country' in data:
        roaster.country = _text(data, 'country', required=True, max_length=100)
    if 'city' in data:
        roaster.city = _text(data, 'city', max_length=100)
    if 'homepage' in data:
        roaster.homepage = _homepage(data)
    roaster.slug = Roaster.build_slug(roaster.name, roaster.city)
    if not roaster.slug:
        raise ValidationError("name must contain letters or digits")
    repository.update(roaster)
    return jsonify(roaster.to_dict())


@coffee_bp.route("/roasters/<int:roaster_id>", methods=["DELETE"])
def delete_roaster(roaster_id):
    roaster = _get_or_404('roaster_repository', roaster_id, 'roaster')
    container().get('roaster_repository').delete(roaster)
    log.info("deleted roaster %s", roaster_id)
    return "", 204


# Roasts

@coffee_bp.route("/roasts", methods=["GET"])
def list_roasts():
    roaster_id = request.args.get('roaster_id', type=int)
    roasts = container().get('roast_repository').list_all(roaster_id=roaster_id)
    return jsonify({"roasts": [roast.to_dict() for roast in roasts]})


@coffee_bp.route("/roasts/<int:roast_id>", methods=["GET"])
def get_roast(roast_id):
    return jsonify(_get_or_404('roast_repository', roast_id, 'roast').to_dict())


@coffee_bp.route("/roasts", methods=["POST"])
def create_roast():
    data = _json_body()
    roaster = _get_or_404('roaster_repository', _reference(data, 'roaster_id'), 'roaster')
    name = _text(data, 'name', required=True)
    roast = Roast(
        roaster=roaster,
        name=name,
        slug=slugify(name),
        origin=_text(data, 'origin', max_length=100),
        region=_text(data, 'region', max_length=100),
        producer=_text(data, 'producer'),
        process=_text(data, 'process', max_length=100),
    )
    if not roast.slug:
        raise ValidationError("name must contain letters or digits")
    roast.tasting_notes = _tasting_notes(data)
    container().get('roast_repository').create(roast)
    log.info("created roast %s/%s", roaster.slug, roast.slug)
    return jsonify(roast.to_dict()), 201


@coffee_bp.route("/roasts/<int:roast_id>", methods=["PUT"])
def update_roast(roast_id):
    roast = _get_or_404('roast_repository', roast_id, 'roast')
    data = _json_body()
    if 'name' in data:
        roast.name = _text(data, 'name', required=True)
        roast.slug = slugify(roast.name)
        if not roast.slug:
            raise ValidationError("name must contain letters or digits")
    for field in ('origin', 'region', 'process'):
        if field in data:
            setattr(roast, field, _text(data, field, max_length=100))
    if 'producer' in data:
        roast.producer = _text(data, 'producer')
    if 'tasting_notes' in data:
        roast.tasting_notes = _tasting_notes(data)
    container().get('roast_repository').update(roast)
    return jsonify(roast.to_dict())


@coffee_bp.route("/roasts/<int:roast_id>", methods=["DELETE"])
def delete_roast(roast_id):
    roast = _get_or_404('roast_repository', roast_id, 'roast')
    container().get('roast_repository').delete(roast)
    log.info("deleted roast %s", roast_id)
    return "", 204


# Bags

@coffee_bp.route("/bags", methods=["GET"])
def list_bags():
    closed = request.args.get('closed')
    if closed is not None:
        closed = closed.lower() in ('1', 'true', 'yes')
    bags = container().get('bag_repository').list_all(
        roast_id=request.args.get('roast_id', type=int),
        closed=closed,
    )
    return jsonify({"bags": [bag.to_dict() for bag in bags]})


@coffee_bp.route("/bags/<int:bag_id>", methods=["GET"])
def get_bag(bag_id):
    return jsonify(_get_or_404('bag_repository', bag_id, 'bag').to_dict())


@coffee_bp.route("/bags", methods=["POST"])
def create_bag():
    data = _json_body()
    roast = _get_or_404('roast_repository', _reference(data, 'roast_id'), 'roast')
    amount = _number(data, 'amount', required=True, minimum=1)
    bag = Bag(roast=roast, amount=amount, remaining=amount, roast_date=_date(data, 'roast_date'))
    container().get('bag_repository').create(bag)
    log.info("opened bag %s of roast %s", bag.id, roast.id)
    return jsonify(bag.to_dict()), 201


@coffee_bp.route("/bags/<int:bag_id>", methods=["PUT"])
def update_bag(bag_id):
    bag = _get_or_404('bag_repository', bag_id, 'bag')
    data = _json_body()
    if 'roast_date' in data:
        bag.roast_date = _date(data, 'roast_date')
    if 'remaining' in data:
        remaining = _number(data, 'remaining', required=True)
        if remaining > bag.amount:
            raise ValidationError("remaining cannot exceed the bag amount")
        bag.remaining = remaining
    if 'closed' in data:
        if not isinstance(data['closed'], bool):
            raise ValidationError("closed must be true or false")
        bag.closed = data['closed']
    if 'finished_at' in data:
        bag.finished_at = _date(data, 'finished_at')
    container().get('bag_repository').update(bag)
    return jsonify(bag.to_dict())


@coffee_bp.route("/bags/<int:bag_id>/finish", methods=["POST"])
def finish_bag(bag_id):
    bag = _get_or_404('bag_repository', bag_id, 'bag')
    if bag.closed:
        raise ValidationError("bag is already finished")
    container().get('bag_repository').finish(bag)
    log.info("finished bag %s", bag_id)
    return jsonify(bag.to_dict())


@coffee_bp.route("/bags/<int:bag_id>", methods=["DELETE"])
def delete_bag(bag_id):
    bag = _get_or_404('bag_repository', bag_id, 'bag')
    container().get('bag_repository').delete(bag)
    log.info("deleted bag %s", bag_id)
    return "", 204


# Brews

@coffee_bp.route("/brews", methods=["GET"])
def list_brews():
    brews = container().get('brew_repository').list_all(bag_id=request.args.get('bag_id', type=int))
    return jsonify({"brews": [brew.to_dict() for brew in brews]})


@coffee_bp.route("/brews/<int:brew_id>", methods=["GET"])
def get_brew(brew_id):
    return jsonify(_get_or_404('brew_repository', brew_id, 'brew').to_dict())


@coffee_bp.route("/brews", methods=["POST"])
def create_brew():
    data = _json_body()
    bag = _get_or_404('bag_repository', _reference(data, 'bag_id'), 'bag')
    coffee_weight = _number(data, 'coffee_weight', required=True)
    if coffee_weight <= 0:
        raise ValidationError("coffee_weight must be positive")
    brew = Brew(
        bag=bag,
        coffee_weight=coffee_weight,
        grinder=_text(data, 'grinder'),
        grind_setting=_number(data, 'grind_setting', required=True),
        brewer=_text(data, 'brewer'),
        water_volume=_number(data, 'water_volume', required=True, minimum=1, integer=True),
        water_temp=_number(data, 'water_temp', required=True),
        brew_time=_number(data, 'brew_time', integer=True),
    )
    brew.quick_notes = _quick_notes(data)
    container().get('brew_repository').create(brew)
    log.info("logged brew %s from bag %s", brew.id, bag.id)
    return jsonify(brew.to_dict()), 201


@coffee_bp.route("/brews/<int:brew_id>", methods=["DELETE"])
def delete_brew(brew_id):
    brew = _get_or_404('brew_repository', brew_id, 'brew')
    container().get('brew_repository').delete(brew)
    log.info("deleted brew %s", brew_id)
    return "", 204


# Timeline

@coffee_bp.route("/timeline", methods=["GET"])
def timeline():
    page, per_page = _page_args()
    events, total = container().get('timeline_repository').page(page, per_page)
    return jsonify({
        "events": [event.to_dict() for event in events],
        "page": page,
        "per_page": per_page,
        "total": total,
    })
