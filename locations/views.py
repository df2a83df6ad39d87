from typing import Any, Dict

from flask import request
from flask_login import current_user

from middleware.permissions import permission_required
from utilities.database import db, Asset, Location, User, log_activity
from utilities.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from utilities.responses import created, paginated, success
from utilities.validators import clean_str, get_json_body, is_valid_email, pagination_args, parse_bool, parse_int
from . import locations_bp

TEXT_FIELDS = [
    "name",
    "address",
    "building",
    "floor",
    "city_name",
    "state_name",
    "pincode",
    "contact_person",
    "contact_email",
    "contact_phone",
]
UPDATABLE_FIELDS = TEXT_FIELDS + ["parent_location_id", "is_active"]


def _get_location_or_404(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError("Location not found")
    return location


def _resolve_parent(raw: Any, location_id: int = 0):
    if raw in (None, ""):
        return None
    parent_id = parse_int(raw)
    parent = db.session.get(Location, parent_id) if parent_id else None
    if parent is None or not parent.is_active:
        raise NotFoundError("Parent location not found or inactive")
    if parent.id == location_id:
        raise BadRequestError("A location cannot be its own parent")
    return parent


def _validate(payload: Dict[str, Any], creating: bool) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field, label in (("name", "Name"), ("address", "Address")):
        if (creating or field in payload) and not clean_str(payload.get(field)):
            errors[field] = f"{label} is required"

    email = clean_str(payload.get("contact_email"))
    if email and not is_valid_email(email):
        errors["contact_email"] = "Contact email must be a valid email address"
    pincode = clean_str(payload.get("pincode"))
    if pincode and len(pincode) > 10:
        errors["pincode"] = "Pincode cannot exceed 10 characters"
    return errors


def _detail(location: Location) -> Dict[str, Any]:
    data = location.to_dict()
    data["sub_location_count"] = Location.query.filter_by(parent_location_id=location.id, is_active=True).count()
    data["user_count"] = User.query.filter_by(location_id=location.id, is_active=True).count()
    return data


@locations_bp.get("")
@permission_required("masters.read")
def list_locations():
    page, limit = pagination_args()
    query = Location.query

    is_active = parse_bool(request.args.get("is_active"))
    if is_active is not None:
        query = query.filter(Location.is_active.is_(is_active))
    parent_id = parse_int(request.args.get("parent_location_id"))
    if parent_id:
        query = query.filter(Location.parent_location_id == parent_id)

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(
            Location.name.ilike(like),
            Location.address.ilike(like),
            Location.city_name.ilike(like),
            Location.building.ilike(like),
            Location.contact_person.ilike(like),
        ))

    total = query.count()
    locations = query.order_by(Location.name.asc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([loc.to_dict() for loc in locations], page, limit, total, "Locations retrieved successfully")


@locations_bp.get("/dropdown")
@permission_required("masters.read")
def locations_dropdown():
    locations = Location.query.filter_by(is_active=True).order_by(Location.name.asc()).all()
    data = [{"id": loc.id, "name": loc.name, "building": loc.building, "floor": loc.floor} for loc in locations]
    return success(data, "Locations dropdown retrieved successfully")


@locations_bp.get("/<int:location_id>")
@permission_required("masters.read")
def get_location(location_id: int):
    return success(_detail(_get_location_or_404(location_id)), "Location retrieved successfully")


@locations_bp.post("")
@permission_required("masters.create", "masters.locations.manage")
def create_location():
    payload = get_json_body()
    errors = _validate(payload, creating=True)
    if errors:
        raise ValidationError(errors)

    parent = _resolve_parent(payload.get("parent_location_id"))
    location = Location(**{field: clean_str(payload.get(field)) for field in TEXT_FIELDS})
    location.parent = parent
    location.is_active = parse_bool(payload.get("is_active"), True)
    db.session.add(location)
    db.session.flush()

    log_activity("location_created", user=current_user, target=location, summary=f"Created location {location.name}")
    db.session.commit()
    return created(location.to_dict(), "Location created successfully")


@locations_bp.put("/<int:location_id>")
@permission_required("masters.update", "masters.locations.manage")
def update_location(location_id: int):
    location = _get_location_or_404(location_id)
    payload = get_json_body()

    fields = {key: payload[key] for key in UPDATABLE_FIELDS if key in payload}
    if not fields:
        raise BadRequestError("No fields to update")

    errors = _validate(fields, creating=False)
    if errors:
        raise ValidationError(errors)

    for key, value in fields.items():
        if key == "parent_location_id":
            location.parent = _resolve_parent(value, location.id)
        elif key == "is_active":
            location.is_active = parse_bool(value, location.is_active)
        else:
            setattr(location, key, clean_str(value))

    log_activity(
        "location_updated",
        user=current_user,
        target=location,
        summary=f"Updated location {location.name}",
        meta={"fields": sorted(fields)},
    )
    db.session.commit()
    return success(location.to_dict(), "Location updated successfully")


@locations_bp.delete("/<int:location_id>")
@permission_required("masters.delete", "masters.locations.manage")
def delete_location(location_id: int):
    location = _get_location_or_404(location_id)

    if Location.query.filter_by(parent_location_id=location.id, is_active=True).count():
        raise ConflictError("Cannot delete location. It has active sub-locations.")
    if User.query.filter_by(location_id=location.id, is_active=True).count():
        raise ConflictError("Cannot delete location. It has active users.")
    if Asset.query.filter_by(location_id=location.id, is_active=True).count():
        raise ConflictError("Cannot delete location. It has active assets.")

    location.is_active = False
    log_activity("location_deleted", user=current_user, target=location, summary=f"Deactivated location {location.name}")
    db.session.commit()
    return success(None, "Location deleted successfully")
