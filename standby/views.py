"""
Standby pool and swap workflow.

Assign, return and make-permanent each touch the standby asset, the
optional original asset, their movement rows and the assignment row. Each
runs in one transaction: any failure rolls every row back.
"""
import logging
from typing import Any, Dict

from flask import current_app, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from middleware.permissions import roles_required
from utilities.constants import STANDBY_ROLES
from utilities.database import db, Asset, StandbyAssignment, User, log_activity, log_asset_movement, utc_now
from utilities.errors import BadRequestError, NotFoundError, ValidationError
from utilities.responses import created, error, pagination_meta, paginated, success
from utilities.validators import (
    clean_str,
    get_json_body,
    pagination_args,
    parse_datetime,
    parse_int,
    validate_notes,
    validate_standby_assignment,
)
from . import standby_bp

logger = logging.getLogger("itam.standby")


def _commit_or_500(message: str):
    """Commit the workflow; on database failure roll back and return a 500 envelope."""
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(message)
        return error(message, 500)
    return None


def _pool_statistics() -> Dict[str, int]:
    pool = Asset.query.filter(Asset.is_active.is_(True), Asset.is_standby_asset.is_(True))
    return {
        "total": pool.count(),
        "available": pool.filter(Asset.standby_available.is_(True), Asset.assigned_to.is_(None)).count(),
        "assigned": pool.filter(Asset.standby_available.is_(False), Asset.assigned_to.isnot(None)).count(),
        "under_repair": pool.filter(Asset.status == "maintenance").count(),
    }


def _active_assignment_for(asset_id: int):
    return StandbyAssignment.query.filter_by(standby_asset_id=asset_id, status="active").first()


def _pool_entry(asset: Asset) -> Dict[str, Any]:
    data = asset.to_dict()
    current = _active_assignment_for(asset.id)
    data["current_assignment"] = None if current is None else {
        "assignment_id": current.id,
        "user_id": current.user_id,
        "user_name": current.user.full_name if current.user else None,
        "assigned_date": current.assigned_date.isoformat(),
        "reason": current.reason,
    }
    return data


def _get_assignment_or_404(assignment_id: int) -> StandbyAssignment:
    assignment = db.session.get(StandbyAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Standby assignment not found")
    return assignment


# --- Pool ---
@standby_bp.get("/pool")
@roles_required(*STANDBY_ROLES)
def list_pool():
    page, limit = pagination_args(current_app.config.get("STANDBY_PAGE_SIZE", 20))
    query = Asset.query.filter(Asset.is_active.is_(True), Asset.is_standby_asset.is_(True))

    status = clean_str(request.args.get("status"))
    if status:
        query = query.filter(Asset.status == status)
    availability = clean_str(request.args.get("availability"))
    if availability == "available":
        query = query.filter(Asset.standby_available.is_(True), Asset.assigned_to.is_(None))
    elif availability == "assigned":
        query = query.filter(Asset.standby_available.is_(False), Asset.assigned_to.isnot(None))

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(Asset.asset_tag.ilike(like), Asset.serial_number.ilike(like), Asset.name.ilike(like)))

    total = query.count()
    assets = query.order_by(Asset.created_at.desc(), Asset.id.desc()).offset((page - 1) * limit).limit(limit).all()
    data = {
        "assets": [_pool_entry(a) for a in assets],
        "statistics": _pool_statistics(),
        "pagination": pagination_meta(page, limit, total),
    }
    return success(data, "Standby assets retrieved successfully")


@standby_bp.get("/pool/statistics")
@roles_required(*STANDBY_ROLES)
def pool_statistics():
    return success(_pool_statistics(), "Standby pool statistics retrieved successfully")


@standby_bp.post("/pool/<int:asset_id>")
@roles_required(*STANDBY_ROLES)
def add_to_pool(asset_id: int):
    asset = db.session.get(Asset, asset_id)
    if asset is None or not asset.is_active:
        raise NotFoundError("Asset not found")
    if asset.asset_type == "component":
        raise BadRequestError("Components cannot be added to standby pool")
    if asset.assigned_to:
        raise BadRequestError("Cannot add assigned asset to standby pool. Unassign it first.")
    if asset.is_standby_asset:
        raise BadRequestError("Asset is already in standby pool")

    asset.is_standby_asset = True
    asset.standby_available = True
    asset.status = "available"
    log_asset_movement(asset, "standby_added", performed_by=current_user, reason="Added to standby pool")
    log_activity("standby_pool_added", user=current_user, target=asset, summary=f"Added {asset.asset_tag} to standby pool")

    failure = _commit_or_500("Failed to add asset to standby pool")
    if failure:
        return failure
    logger.info("Asset %s added to standby pool by user %s", asset.asset_tag, current_user.id)
    return success({"asset_id": asset.id, "asset_tag": asset.asset_tag}, "Asset added to standby pool successfully")


@standby_bp.delete("/pool/<int:asset_id>")
@roles_required(*STANDBY_ROLES)
def remove_from_pool(asset_id: int):
    asset = db.session.get(Asset, asset_id)
    if asset is None or not asset.is_active:
        raise NotFoundError("Asset not found")
    if not asset.is_standby_asset:
        raise BadRequestError("Asset is not in standby pool")
    if asset.assigned_to:
        raise BadRequestError("Cannot remove assigned standby asset. Return it first.")
    if _active_assignment_for(asset.id) is not None:
        raise BadRequestError("Cannot remove asset with active assignments")

    asset.is_standby_asset = False
    asset.standby_available = True
    log_asset_movement(asset, "standby_removed", performed_by=current_user, reason="Removed from standby pool")
    log_activity("standby_pool_removed", user=current_user, target=asset, summary=f"Removed {asset.asset_tag} from standby pool")

    failure = _commit_or_500("Failed to remove asset from standby pool")
    if failure:
        return failure
    return success({"asset_id": asset.id, "asset_tag": asset.asset_tag}, "Asset removed from standby pool successfully")


# --- Assignments ---
@standby_bp.get("/assignments")
@roles_required(*STANDBY_ROLES)
def list_assignments():
    page, limit = pagination_args(current_app.config.get("STANDBY_PAGE_SIZE", 20))
    query = StandbyAssignment.query

    status = clean_str(request.args.get("status"))
    if status:
        query = query.filter(StandbyAssignment.status == status)
    user_id = parse_int(request.args.get("user_id"))
    if user_id:
        query = query.filter(StandbyAssignment.user_id == user_id)
    reason_category = clean_str(request.args.get("reason_category"))
    if reason_category:
        query = query.filter(StandbyAssignment.reason_category == reason_category)

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        asset_ids = db.select(Asset.id).where(Asset.asset_tag.ilike(like))
        user_ids = db.select(User.id).where(db.or_(
            User.first_name.ilike(like), User.last_name.ilike(like), User.email.ilike(like)
        ))
        query = query.filter(db.or_(
            StandbyAssignment.standby_asset_id.in_(asset_ids),
            StandbyAssignment.original_asset_id.in_(asset_ids),
            StandbyAssignment.user_id.in_(user_ids),
            StandbyAssignment.reason.ilike(like),
        ))

    total = query.count()
    assignments = (
        query.order_by(StandbyAssignment.assigned_date.desc(), StandbyAssignment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([a.to_dict() for a in assignments], page, limit, total, "Standby assignments retrieved successfully")


@standby_bp.get("/assignments/<int:assignment_id>")
@roles_required(*STANDBY_ROLES)
def get_assignment(assignment_id: int):
    return success(_get_assignment_or_404(assignment_id).to_dict(), "Standby assignment retrieved successfully")


@standby_bp.post("/assignments")
@roles_required(*STANDBY_ROLES)
def assign_standby():
    payload = get_json_body()
    now = utc_now()
    errors = validate_standby_assignment(payload, now.date())
    if errors:
        raise ValidationError(errors)

    user = db.session.get(User, parse_int(payload["user_id"]))
    if user is None or not user.is_active:
        raise NotFoundError("User not found")

    standby = db.session.get(Asset, parse_int(payload["standby_asset_id"]))
    if standby is None or not standby.is_active:
        raise NotFoundError("Standby asset not found")
    if not standby.is_standby_asset:
        raise BadRequestError("Asset is not in standby pool")
    if not standby.standby_available or standby.assigned_to or _active_assignment_for(standby.id) is not None:
        raise BadRequestError("Standby asset is not available for assignment")

    reason = clean_str(payload["reason"])
    category = clean_str(payload["reason_category"])

    original = None
    original_id = parse_int(payload.get("original_asset_id"))
    if original_id:
        if original_id == standby.id:
            raise BadRequestError("Original asset cannot be the standby asset")
        original = db.session.get(Asset, original_id)
        if original is None or not original.is_active:
            raise NotFoundError("Original asset not found")
        if original.assigned_to and original.assigned_to != user.id:
            raise BadRequestError("Original asset is not assigned to this user")

    if original is not None:
        previous_user_id = original.assigned_to
        original.assigned_to = None
        original.status = "maintenance"
        log_asset_movement(
            original,
            "unassigned",
            performed_by=current_user,
            previous_user_id=previous_user_id,
            previous_location_id=original.location_id,
            reason=f"Asset sent for {category}. Standby asset {standby.asset_tag} assigned to user.",
        )

    standby.assigned_to = user.id
    standby.standby_available = False
    standby.status = "assigned"
    log_asset_movement(
        standby,
        "assigned",
        performed_by=current_user,
        previous_location_id=standby.location_id,
        reason=f"Temporary standby assignment. Reason: {reason}",
    )

    expected = payload.get("expected_return_date")
    assignment = StandbyAssignment(
        user_id=user.id,
        standby_asset_id=standby.id,
        original_asset_id=original.id if original is not None else None,
        reason=reason,
        reason_category=category,
        assigned_date=now,
        expected_return_date=parse_datetime(expected) if expected else None,
        status="active",
        notes=clean_str(payload.get("notes")),
        created_by=current_user.id,
    )
    db.session.add(assignment)
    db.session.flush()
    log_activity(
        "standby_assigned",
        user=current_user,
        target=assignment,
        summary=f"Standby asset {standby.asset_tag} assigned to {user.full_name}",
        meta={"reason_category": category, "original_asset_id": assignment.original_asset_id},
    )

    failure = _commit_or_500("Failed to assign standby asset")
    if failure:
        return failure
    logger.info("Standby %s assigned to user %s (assignment %s)", standby.asset_tag, user.id, assignment.id)
    return created({
        "assignment_id": assignment.id,
        "user_id": user.id,
        "standby_asset_id": standby.id,
        "standby_asset_tag": standby.asset_tag,
        "original_asset_id": original.id if original is not None else None,
        "original_asset_tag": original.asset_tag if original is not None else None,
    }, "Standby asset assigned successfully")


@standby_bp.put("/assignments/<int:assignment_id>/return")
@roles_required(*STANDBY_ROLES)
def return_standby(assignment_id: int):
    payload = get_json_body()
    errors = validate_notes(payload, "return_notes")
    if errors:
        raise ValidationError(errors)

    assignment = _get_assignment_or_404(assignment_id)
    if assignment.status != "active":
        raise BadRequestError("Assignment is not active")

    now = utc_now()
    standby = assignment.standby_asset
    original = assignment.original_asset

    if original is not None:
        previous_user_id = original.assigned_to
        original.assigned_to = assignment.user_id
        original.status = "assigned"
        log_asset_movement(
            original,
            "assigned",
            performed_by=current_user,
            previous_user_id=previous_user_id,
            previous_location_id=original.location_id,
            reason=(
                f"Original asset returned from {assignment.reason_category}. "
                f"Standby asset {standby.asset_tag} returned to pool."
            ),
        )

    standby.assigned_to = None
    standby.standby_available = True
    standby.status = "available"
    log_asset_movement(
        standby,
        "returned",
        performed_by=current_user,
        previous_user_id=assignment.user_id,
        previous_location_id=standby.location_id,
        reason=(
            "Standby asset returned to pool."
            + (f" Original asset {original.asset_tag} returned to user." if original is not None else "")
        ),
    )

    assignment.status = "returned"
    assignment.actual_return_date = now
    assignment.return_notes = clean_str(payload.get("return_notes"))
    assignment.returned_by = current_user.id
    assignment.returned_at = now
    log_activity(
        "standby_returned",
        user=current_user,
        target=assignment,
        summary=f"Standby asset {standby.asset_tag} returned",
    )

    failure = _commit_or_500("Failed to return standby asset")
    if failure:
        return failure
    return success({
        "assignment_id": assignment.id,
        "standby_asset_tag": standby.asset_tag,
        "original_asset_tag": original.asset_tag if original is not None else None,
    }, "Standby asset returned successfully")


@standby_bp.put("/assignments/<int:assignment_id>/permanent")
@roles_required(*STANDBY_ROLES)
def make_permanent(assignment_id: int):
    payload = get_json_body()
    errors = validate_notes(payload, "notes")
    if errors:
        raise ValidationError(errors)

    assignment = _get_assignment_or_404(assignment_id)
    if assignment.status != "active":
        raise BadRequestError("Assignment is not active")

    now = utc_now()
    notes = clean_str(payload.get("notes"))
    standby = assignment.standby_asset
    standby.is_standby_asset = False
    standby.standby_available = False

    assignment.status = "permanent"
    assignment.made_permanent_by = current_user.id
    assignment.made_permanent_at = now
    if notes:
        assignment.notes = f"{assignment.notes}\n{notes}" if assignment.notes else notes

    log_asset_movement(
        standby,
        "assigned",
        performed_by=current_user,
        previous_user_id=assignment.user_id,
        previous_location_id=standby.location_id,
        reason=f"Standby asset made permanent. {notes or ''}".strip(),
    )
    log_activity(
        "standby_made_permanent",
        user=current_user,
        target=assignment,
        summary=f"Standby asset {standby.asset_tag} made permanent",
    )

    failure = _commit_or_500("Failed to make assignment permanent")
    if failure:
        return failure
    return success({"assignment_id": assignment.id, "standby_asset_tag": standby.asset_tag},
                   "Standby assignment made permanent successfully")


@standby_bp.get("/users/<int:user_id>/history")
@roles_required(*STANDBY_ROLES)
def user_history(user_id: int):
    assignments = (
        StandbyAssignment.query.filter_by(user_id=user_id)
        .order_by(StandbyAssignment.assigned_date.desc())
        .all()
    )
    return success([a.to_dict() for a in assignments], "User standby history retrieved successfully")


@standby_bp.get("/assets/<int:asset_id>/history")
@roles_required(*STANDBY_ROLES)
def asset_history(asset_id: int):
    assignments = (
        StandbyAssignment.query.filter_by(standby_asset_id=asset_id)
        .order_by(StandbyAssignment.assigned_date.desc())
        .all()
    )
    return success([a.to_dict() for a in assignments], "Asset standby history retrieved successfully")
