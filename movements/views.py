from datetime import datetime, time, timedelta

from flask import request
from flask_login import current_user, login_required

from middleware.permissions import permission_required, roles_required
from utilities.constants import COORDINATOR_ROLES, MOVEMENT_TYPES
from utilities.database import db, Asset, AssetMovement, Location, User
from utilities.errors import ForbiddenError, NotFoundError, ValidationError
from utilities.permission_service import permission_service
from utilities.responses import paginated, success
from utilities.validators import clean_str, pagination_args, parse_date
from . import movements_bp

RECENT_PAGE_SIZE = 50


def _date_range(query):
    """Apply start_date/end_date query args; end_date is inclusive."""
    try:
        start = parse_date(request.args.get("start_date"))
        end = parse_date(request.args.get("end_date"))
    except ValueError:
        raise ValidationError({"start_date": "Dates must use YYYY-MM-DD format"})
    if start:
        query = query.filter(AssetMovement.movement_date >= datetime.combine(start, time.min))
    if end:
        query = query.filter(AssetMovement.movement_date < datetime.combine(end + timedelta(days=1), time.min))
    return query


def _page(query, message: str, default_limit=None):
    page, limit = pagination_args(default_limit)
    total = query.count()
    movements = (
        query.order_by(AssetMovement.movement_date.desc(), AssetMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([m.to_dict() for m in movements], page, limit, total, message)


@movements_bp.get("/recent")
@permission_required("assets.read")
def recent_movements():
    query = AssetMovement.query
    asset_tag = clean_str(request.args.get("asset_tag"))
    if asset_tag:
        query = query.filter(AssetMovement.asset_tag.ilike(f"%{asset_tag}%"))
    movement_type = clean_str(request.args.get("movement_type"))
    if movement_type:
        query = query.filter(AssetMovement.movement_type == movement_type)
    status = clean_str(request.args.get("status"))
    if status:
        query = query.filter(AssetMovement.status == status)
    query = _date_range(query)
    return _page(query, "Recent movements retrieved successfully", RECENT_PAGE_SIZE)


@movements_bp.get("/statistics")
@roles_required(*COORDINATOR_ROLES)
def movement_statistics():
    query = _date_range(AssetMovement.query)
    rows = (
        query.with_entities(AssetMovement.movement_type, db.func.count(AssetMovement.id))
        .group_by(AssetMovement.movement_type)
        .all()
    )
    by_type = {movement_type: 0 for movement_type in MOVEMENT_TYPES}
    by_type.update({movement_type: count for movement_type, count in rows})

    data = {
        "total_movements": sum(by_type.values()),
        "unique_assets": query.with_entities(db.func.count(db.distinct(AssetMovement.asset_id))).scalar(),
        "unique_users": query.with_entities(db.func.count(db.distinct(AssetMovement.assigned_to))).scalar(),
        "by_type": by_type,
    }
    return success(data, "Movement statistics retrieved successfully")


@movements_bp.get("/asset/<int:asset_id>/current")
@permission_required("assets.read")
def current_assignment(asset_id: int):
    asset = db.session.get(Asset, asset_id)
    if asset is None:
        raise NotFoundError("Asset not found")
    latest = (
        AssetMovement.query.filter_by(asset_id=asset.id)
        .order_by(AssetMovement.movement_date.desc(), AssetMovement.id.desc())
        .first()
    )
    data = {
        "asset": {"id": asset.id, "asset_tag": asset.asset_tag, "status": asset.status},
        "assigned_to": asset.assigned_to,
        "assigned_to_name": asset.assignee.full_name if asset.assignee else None,
        "location_id": asset.location_id,
        "last_movement": latest.to_dict() if latest else None,
    }
    return success(data, "Current assignment retrieved successfully")


@movements_bp.get("/user/<int:user_id>")
@login_required
def user_movements(user_id: int):
    if user_id != current_user.id and not permission_service.user_has_permission(current_user.id, "users.read"):
        raise ForbiddenError("Access denied. You can only view your own movement history.")
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    query = AssetMovement.query.filter(db.or_(
        AssetMovement.assigned_to == user_id,
        AssetMovement.previous_user_id == user_id,
    ))
    return _page(_date_range(query), "User movement history retrieved successfully")


@movements_bp.get("/location/<int:location_id>")
@permission_required("assets.read")
def location_movements(location_id: int):
    if db.session.get(Location, location_id) is None:
        raise NotFoundError("Location not found")

    query = AssetMovement.query.filter(db.or_(
        AssetMovement.location_id == location_id,
        AssetMovement.previous_location_id == location_id,
    ))
    return _page(_date_range(query), "Location movement history retrieved successfully")
