from typing import Any, Dict, Optional

from flask import request
from flask_login import current_user, login_required

from middleware.permissions import permission_required
from utilities.constants import ASSET_IMPORTANCE, ASSET_STATUSES, ASSET_TYPES, ASSIGNABLE_ASSET_STATUSES
from utilities.database import (
    db,
    Asset,
    AssetMovement,
    Location,
    Ticket,
    TicketAsset,
    User,
    log_activity,
    log_asset_movement,
    utc_now,
)
from utilities.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from utilities.responses import created, paginated, success
from utilities.validators import clean_str, get_json_body, pagination_args, parse_bool, parse_int
from . import assets_bp

TEXT_FIELDS = ["asset_tag", "serial_number", "name", "category", "notes"]
UPDATABLE_FIELDS = TEXT_FIELDS + ["asset_type", "status", "importance", "location_id"]


def _get_asset_or_404(asset_id: int, include_inactive: bool = False) -> Asset:
    asset = db.session.get(Asset, asset_id)
    if asset is None or (not asset.is_active and not include_inactive):
        raise NotFoundError("Asset not found")
    return asset


def _get_active_user(raw: Any) -> User:
    user_id = parse_int(raw)
    user = db.session.get(User, user_id) if user_id else None
    if user is None or not user.is_active:
        raise NotFoundError("User not found or inactive")
    return user


def _validate(payload: Dict[str, Any], creating: bool) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if (creating or "asset_tag" in payload) and not clean_str(payload.get("asset_tag")):
        errors["asset_tag"] = "Asset tag is required"
    if payload.get("asset_type") not in (None, "") and payload.get("asset_type") not in ASSET_TYPES:
        errors["asset_type"] = "Asset type must be one of: " + ", ".join(ASSET_TYPES)
    if payload.get("status") not in (None, "") and payload.get("status") not in ASSET_STATUSES:
        errors["status"] = "Status must be one of: " + ", ".join(ASSET_STATUSES)
    if payload.get("importance") not in (None, "") and payload.get("importance") not in ASSET_IMPORTANCE:
        errors["importance"] = "Importance must be one of: " + ", ".join(ASSET_IMPORTANCE)
    location_id = payload.get("location_id")
    if location_id not in (None, ""):
        location = db.session.get(Location, parse_int(location_id) or 0)
        if location is None:
            errors["location_id"] = "Location not found"
    return errors


def _ensure_unique_tag(asset_tag: str, asset_id: int = 0):
    existing = Asset.query.filter(db.func.lower(Asset.asset_tag) == asset_tag.lower(), Asset.id != asset_id).first()
    if existing:
        raise ConflictError("Asset tag already exists")


@assets_bp.get("")
@permission_required("assets.read")
def list_assets():
    page, limit = pagination_args()
    query = Asset.query.filter(Asset.is_active.is_(True))

    status = clean_str(request.args.get("status"))
    if status:
        query = query.filter(Asset.status == status)
    assigned_to = parse_int(request.args.get("assigned_to"))
    if assigned_to:
        query = query.filter(Asset.assigned_to == assigned_to)
    location_id = parse_int(request.args.get("location_id"))
    if location_id:
        query = query.filter(Asset.location_id == location_id)
    asset_type = clean_str(request.args.get("asset_type"))
    if asset_type:
        query = query.filter(Asset.asset_type == asset_type)
    is_standby = parse_bool(request.args.get("is_standby"))
    if is_standby is not None:
        query = query.filter(Asset.is_standby_asset.is_(is_standby))
    elif not parse_bool(request.args.get("include_standby"), False):
        query = query.filter(Asset.is_standby_asset.is_(False))

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(
            Asset.asset_tag.ilike(like),
            Asset.serial_number.ilike(like),
            Asset.name.ilike(like),
            Asset.category.ilike(like),
        ))

    total = query.count()
    assets = query.order_by(Asset.created_at.desc(), Asset.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([a.to_dict() for a in assets], page, limit, total, "Assets retrieved successfully")


@assets_bp.get("/statistics")
@permission_required("assets.read", "statistics.read")
def asset_statistics():
    rows = (
        db.session.query(Asset.status, db.func.count(Asset.id))
        .filter(Asset.is_active.is_(True))
        .group_by(Asset.status)
        .all()
    )
    by_status = {status: 0 for status in ASSET_STATUSES}
    by_status.update({status: count for status, count in rows})

    active = Asset.query.filter(Asset.is_active.is_(True))
    data = {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "assigned": active.filter(Asset.assigned_to.isnot(None)).count(),
        "components": active.filter(Asset.asset_type == "component").count(),
        "standby": {
            "total": active.filter(Asset.is_standby_asset.is_(True)).count(),
            "available": active.filter(
                Asset.is_standby_asset.is_(True), Asset.standby_available.is_(True)
            ).count(),
        },
    }
    return success(data, "Asset statistics retrieved successfully")


@assets_bp.get("/my-assets")
@login_required
def my_assets():
    assets = (
        Asset.query.filter(Asset.assigned_to == current_user.id, Asset.is_active.is_(True))
        .order_by(Asset.asset_tag.asc())
        .all()
    )
    return success([a.to_dict() for a in assets], "Assets retrieved successfully")


@assets_bp.get("/<int:asset_id>")
@permission_required("assets.read")
def get_asset(asset_id: int):
    return success(_get_asset_or_404(asset_id).to_dict(), "Asset retrieved successfully")


@assets_bp.post("")
@permission_required("assets.create")
def create_asset():
    payload = get_json_body()
    errors = _validate(payload, creating=True)
    if errors:
        raise ValidationError(errors)

    asset_tag = clean_str(payload.get("asset_tag"))
    _ensure_unique_tag(asset_tag)

    asset = Asset(**{field: clean_str(payload.get(field)) for field in TEXT_FIELDS})
    asset.asset_type = payload.get("asset_type") or "asset"
    asset.status = payload.get("status") or "available"
    asset.importance = payload.get("importance") or "medium"
    asset.location_id = parse_int(payload.get("location_id"))

    if payload.get("assigned_to") not in (None, ""):
        if asset.asset_type == "component":
            raise BadRequestError("Components cannot be assigned to users")
        asset.assigned_to = _get_active_user(payload.get("assigned_to")).id
        if asset.status == "available":
            asset.status = "assigned"
    elif asset.status == "assigned":
        raise BadRequestError('Assigned user is required when status is "assigned"')

    db.session.add(asset)
    db.session.flush()
    if asset.assigned_to:
        log_asset_movement(asset, "assigned", performed_by=current_user, reason="Assigned on creation")

    log_activity("asset_created", user=current_user, target=asset, summary=f"Created asset {asset.asset_tag}")
    db.session.commit()
    return created(asset.to_dict(), "Asset created successfully")


@assets_bp.put("/<int:asset_id>")
@permission_required("assets.update")
def update_asset(asset_id: int):
    asset = _get_asset_or_404(asset_id)
    payload = get_json_body()

    fields = {key: payload[key] for key in UPDATABLE_FIELDS if key in payload}
    if not fields:
        raise BadRequestError("No fields to update")

    errors = _validate(fields, creating=False)
    if errors:
        raise ValidationError(errors)
    if "asset_tag" in fields:
        _ensure_unique_tag(clean_str(fields["asset_tag"]), asset.id)
    if fields.get("asset_type") == "component" and asset.assigned_to:
        raise BadRequestError("Components cannot be assigned to users")
    if asset.is_installed and fields.get("asset_type") not in (None, "component"):
        raise BadRequestError("Remove the component from its parent asset first")
    if fields.get("status") == "available" and asset.assigned_to:
        raise BadRequestError('Status cannot be "available" when user is assigned')

    previous_status = asset.status
    previous_location_id = asset.location_id
    for key, value in fields.items():
        if key == "location_id":
            asset.location_id = parse_int(value)
        elif key in TEXT_FIELDS:
            setattr(asset, key, clean_str(value))
        else:
            setattr(asset, key, value)

    if asset.status != previous_status:
        log_asset_movement(
            asset,
            "status_change",
            performed_by=current_user,
            previous_user_id=asset.assigned_to,
            previous_location_id=previous_location_id,
            reason=f"Status changed from {previous_status} to {asset.status}",
        )
    elif asset.location_id != previous_location_id:
        log_asset_movement(
            asset,
            "transferred",
            performed_by=current_user,
            previous_user_id=asset.assigned_to,
            previous_location_id=previous_location_id,
            reason="Location changed",
        )

    log_activity(
        "asset_updated",
        user=current_user,
        target=asset,
        summary=f"Updated asset {asset.asset_tag}",
        meta={"fields": sorted(fields)},
    )
    db.session.commit()
    return success(asset.to_dict(), "Asset updated successfully")


@assets_bp.delete("/<int:asset_id>")
@permission_required("assets.delete")
def delete_asset(asset_id: int):
    asset = _get_asset_or_404(asset_id)
    if asset.assigned_to:
        raise ConflictError("Cannot delete asset. It is currently assigned to a user.")
    if asset.is_standby_asset:
        raise ConflictError("Cannot delete asset. Remove it from the standby pool first.")
    if asset.installed_components():
        raise ConflictError("Cannot delete asset. It has installed components.")

    asset.is_active = False
    log_activity("asset_deleted", user=current_user, target=asset, summary=f"Deleted asset {asset.asset_tag}")
    db.session.commit()
    return success(None, "Asset deleted successfully")


@assets_bp.post("/<int:asset_id>/restore")
@permission_required("assets.delete")
def restore_asset(asset_id: int):
    asset = db.session.get(Asset, asset_id)
    if asset is None or asset.is_active:
        raise NotFoundError("Deleted asset not found")

    asset.is_active = True
    log_activity("asset_restored", user=current_user, target=asset, summary=f"Restored asset {asset.asset_tag}")
    db.session.commit()
    return success(asset.to_dict(), "Asset restored successfully")


@assets_bp.post("/<int:asset_id>/assign")
@permission_required("assets.assign")
def assign_asset(asset_id: int):
    asset = _get_asset_or_404(asset_id)
    payload = get_json_body()
    if parse_int(payload.get("user_id")) is None:
        raise ValidationError({"user_id": "User ID is required"})

    if asset.asset_type == "component":
        raise ConflictError(
            "Components cannot be assigned directly to users. Components must be installed into parent assets."
        )
    if asset.status not in ASSIGNABLE_ASSET_STATUSES:
        raise ConflictError("Asset is not available for assignment. Current status: " + asset.status)
    if asset.assigned_to == parse_int(payload.get("user_id")):
        raise ConflictError("Asset is already assigned to this user")

    user = _get_active_user(payload.get("user_id"))
    previous_user_id = asset.assigned_to

    asset.assigned_to = user.id
    asset.status = "assigned"
    if asset.is_standby_asset:
        asset.standby_available = False

    movement = log_asset_movement(
        asset,
        "transferred" if previous_user_id else "assigned",
        performed_by=current_user,
        previous_user_id=previous_user_id,
        previous_location_id=asset.location_id,
        reason=clean_str(payload.get("reason")),
        notes=clean_str(payload.get("notes")),
    )
    log_activity(
        "asset_assigned",
        user=current_user,
        target=asset,
        summary=f"Assigned {asset.asset_tag} to {user.full_name}",
        meta={"user_id": user.id, "previous_user_id": previous_user_id},
    )
    db.session.commit()
    return success({"asset": asset.to_dict(), "movement": movement.to_dict()}, "Asset assigned successfully")


@assets_bp.post("/<int:asset_id>/unassign")
@permission_required("assets.assign")
def unassign_asset(asset_id: int):
    asset = _get_asset_or_404(asset_id)
    if asset.assigned_to is None:
        raise ConflictError("Asset is not currently assigned")

    payload = get_json_body()
    previous_user_id = asset.assigned_to
    asset.assigned_to = None
    asset.status = "available"
    if asset.is_standby_asset:
        asset.standby_available = True

    movement = log_asset_movement(
        asset,
        "unassigned",
        performed_by=current_user,
        previous_user_id=previous_user_id,
        previous_location_id=asset.location_id,
        reason=clean_str(payload.get("reason")),
        notes=clean_str(payload.get("notes")),
    )
    log_activity(
        "asset_unassigned",
        user=current_user,
        target=asset,
        summary=f"Unassigned {asset.asset_tag}",
        meta={"previous_user_id": previous_user_id},
    )
    db.session.commit()
    return success({"asset": asset.to_dict(), "movement": movement.to_dict()}, "Asset unassigned successfully")


@assets_bp.get("/<int:asset_id>/movements")
@permission_required("assets.read")
def asset_movements(asset_id: int):
    asset = _get_asset_or_404(asset_id, include_inactive=True)
    page, limit = pagination_args()
    query = AssetMovement.query.filter_by(asset_id=asset.id)
    total = query.count()
    movements = (
        query.order_by(AssetMovement.movement_date.desc(), AssetMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([m.to_dict() for m in movements], page, limit, total, "Asset movements retrieved successfully")


@assets_bp.get("/<int:asset_id>/tickets")
@permission_required("assets.read")
def asset_tickets(asset_id: int):
    asset = _get_asset_or_404(asset_id, include_inactive=True)
    links = (
        TicketAsset.query.filter_by(asset_id=asset.id)
        .join(Ticket, TicketAsset.ticket_id == Ticket.id)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )
    tickets = []
    for link in links:
        item = link.ticket.to_dict()
        item["linked_at"] = link.added_at.isoformat()
        item["link_notes"] = link.notes
        tickets.append(item)
    return success({"tickets": tickets, "count": len(tickets)}, "Asset tickets retrieved successfully")


# --- component hierarchy ---
def _component_node(asset: Asset, level: int, path: str) -> Dict[str, Any]:
    return {
        "id": asset.id,
        "asset_tag": asset.asset_tag,
        "name": asset.name,
        "asset_type": asset.asset_type,
        "serial_number": asset.serial_number,
        "parent_asset_id": asset.parent_asset_id,
        "installation_date": asset.installation_date.isoformat() if asset.installation_date else None,
        "level": level,
        "path": path,
    }


def _get_component_of(parent: Asset, component_id: int, installed: bool) -> Asset:
    component = db.session.get(Asset, component_id)
    found = (
        component is not None
        and component.is_active
        and component.parent_asset_id == parent.id
        and (component.removal_date is None) == installed
    )
    if not found:
        if installed:
            raise NotFoundError("Component not found or not installed in this asset")
        raise NotFoundError("Component not found or not previously installed in this asset")
    return component


def _validate_installation(component: Asset, parent: Asset):
    if component.id == parent.id:
        raise BadRequestError("An asset cannot be installed into itself")
    if component.is_installed:
        raise BadRequestError("Component is already installed in another asset")
    # One level only: a component never holds components of its own
    if parent.asset_type == "component" or parent.is_installed:
        raise BadRequestError("Cannot install components into another component")
    if component.installed_components():
        raise BadRequestError("Assets with installed components cannot be installed into another asset")
    if component.is_standby_asset:
        raise BadRequestError("Standby pool assets cannot be installed as components")


def _install(component: Asset, parent: Asset, notes: Optional[str], reason: str) -> AssetMovement:
    previous_user_id = component.assigned_to
    component.parent_asset_id = parent.id
    component.asset_type = "component"
    component.installation_date = utc_now()
    component.installation_notes = notes
    component.installed_by = current_user.id
    component.removal_date = None
    component.status = "in_use"
    component.assigned_to = None
    return log_asset_movement(
        component,
        "component_install",
        performed_by=current_user,
        previous_user_id=previous_user_id,
        previous_location_id=component.location_id,
        parent_asset=parent,
        reason=reason,
        notes=notes,
    )


@assets_bp.get("/<int:asset_id>/components")
@permission_required("assets.read")
def list_components(asset_id: int):
    parent = _get_asset_or_404(asset_id)
    include_removed = parse_bool(request.args.get("include_removed"), False)
    components = [
        c for c in parent.child_assets
        if c.is_active and (include_removed or c.removal_date is None)
    ]
    components.sort(key=lambda c: (c.installation_date or c.created_at, c.id), reverse=True)
    data = {
        "parent_asset": {"id": parent.id, "asset_tag": parent.asset_tag, "asset_type": parent.asset_type},
        "components": [c.to_dict() for c in components],
        "total": len(components),
    }
    return success(data, "Components retrieved successfully")


@assets_bp.get("/<int:asset_id>/hierarchy")
@permission_required("assets.read")
def asset_hierarchy(asset_id: int):
    asset = _get_asset_or_404(asset_id)
    nodes = []
    pending = [(asset, 0, asset.asset_tag)]
    while pending:
        node, level, path = pending.pop()
        nodes.append(_component_node(node, level, path))
        for child in node.installed_components():
            pending.append((child, level + 1, f"{path} > {child.asset_tag}"))
    nodes.sort(key=lambda n: (n["level"], n["asset_tag"]))
    return success({"hierarchy": nodes}, "Asset hierarchy retrieved successfully")


@assets_bp.post("/<int:asset_id>/components")
@permission_required("assets.update")
def install_component(asset_id: int):
    parent = _get_asset_or_404(asset_id)
    payload = get_json_body()
    component_id = parse_int(payload.get("component_asset_id"))
    if component_id is None:
        raise ValidationError({"component_asset_id": "Component asset ID is required"})

    component = db.session.get(Asset, component_id)
    if component is None or not component.is_active:
        raise NotFoundError("Component asset not found or inactive")
    _validate_installation(component, parent)

    notes = clean_str(payload.get("installation_notes"))
    movement = _install(component, parent, notes, f"Component installed into parent asset {parent.asset_tag}")
    log_activity(
        "component_installed",
        user=current_user,
        target=component,
        summary=f"Installed {component.asset_tag} into {parent.asset_tag}",
        meta={"parent_asset_id": parent.id},
    )
    db.session.commit()
    data = {"component": component.to_dict(), "parent_asset_tag": parent.asset_tag, "movement": movement.to_dict()}
    return created(data, "Component installed successfully")


@assets_bp.delete("/<int:asset_id>/components/<int:component_id>")
@permission_required("assets.update")
def remove_component(asset_id: int, component_id: int):
    parent = _get_asset_or_404(asset_id)
    component = _get_component_of(parent, component_id, installed=True)
    notes = clean_str(get_json_body().get("removal_notes"))

    component.removal_date = utc_now()
    component.asset_type = "asset"
    component.status = "available"
    if notes:
        component.installation_notes = "\n".join(filter(None, [component.installation_notes, f"Removed: {notes}"]))

    movement = log_asset_movement(
        component,
        "component_remove",
        performed_by=current_user,
        previous_location_id=component.location_id,
        parent_asset=parent,
        reason=f"Component removed from parent asset {parent.asset_tag}",
        notes=notes,
    )
    log_activity(
        "component_removed",
        user=current_user,
        target=component,
        summary=f"Removed {component.asset_tag} from {parent.asset_tag}",
        meta={"parent_asset_id": parent.id},
    )
    db.session.commit()
    data = {"component": component.to_dict(), "parent_asset_tag": parent.asset_tag, "movement": movement.to_dict()}
    return success(data, "Component removed successfully")


@assets_bp.post("/<int:asset_id>/components/<int:component_id>/reinstall")
@permission_required("assets.update")
def reinstall_component(asset_id: int, component_id: int):
    parent = _get_asset_or_404(asset_id)
    component = _get_component_of(parent, component_id, installed=False)
    _validate_installation(component, parent)

    notes = clean_str(get_json_body().get("installation_notes"))
    movement = _install(component, parent, notes, f"Component reinstalled into parent asset {parent.asset_tag}")
    log_activity(
        "component_reinstalled",
        user=current_user,
        target=component,
        summary=f"Reinstalled {component.asset_tag} into {parent.asset_tag}",
        meta={"parent_asset_id": parent.id},
    )
    db.session.commit()
    data = {"component": component.to_dict(), "parent_asset_tag": parent.asset_tag, "movement": movement.to_dict()}
    return success(data, "Component reinstalled successfully")
