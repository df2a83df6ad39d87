from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import request
from flask_login import current_user, login_required

from middleware.permissions import permission_required, roles_required
from utilities import sla_tracking
from utilities.constants import (
    COORDINATOR_ROLES,
    ROLE_EMPLOYEE,
    ROLE_ENGINEER,
    ROLE_SUPERADMIN,
    SELF_SERVICE_ROLES,
    TICKET_CHANNELS,
    TICKET_FINAL_STATUSES,
    TICKET_MANAGER_ROLES,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    TICKET_TYPES,
)
from utilities.database import (
    db,
    Asset,
    Department,
    Location,
    Ticket,
    TicketAsset,
    TicketCloseRequest,
    TicketComment,
    TicketReopenConfig,
    TicketReopenHistory,
    User,
    log_activity,
    utc_now,
)
from utilities.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from utilities.responses import created, paginated, success
from utilities.validators import clean_str, get_json_body, pagination_args, parse_bool, parse_datetime, parse_int
from . import tickets_bp

UPDATABLE_FIELDS = [
    "title",
    "description",
    "priority",
    "category",
    "status",
    "ticket_channel",
    "ticket_type",
    "due_date",
    "department_id",
    "location_id",
]


# --- helpers ---
def _get_ticket_or_404(ticket_id: int) -> Ticket:
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


def _is_employee() -> bool:
    return current_user.role == ROLE_EMPLOYEE


def _ensure_can_view(ticket: Ticket, message: str = "Access denied. You can only view your own tickets."):
    if _is_employee() and ticket.created_by_user_id != current_user.id:
        raise ForbiddenError(message)
    if current_user.role == ROLE_ENGINEER and ticket.assigned_to_engineer_id != current_user.id:
        raise ForbiddenError("Access denied. This ticket is not assigned to you.")


def _ensure_open(ticket: Ticket):
    if ticket.status in TICKET_FINAL_STATUSES:
        raise BadRequestError("Cannot update a closed or cancelled ticket")


def _validate_choices(payload: Dict[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field, choices in (
        ("priority", TICKET_PRIORITIES),
        ("status", TICKET_STATUSES),
        ("ticket_channel", TICKET_CHANNELS),
        ("ticket_type", TICKET_TYPES),
    ):
        value = payload.get(field)
        if value not in (None, "") and value not in choices:
            errors[field] = f"{field.replace('_', ' ').capitalize()} must be one of: " + ", ".join(choices)

    if "title" in payload:
        title = clean_str(payload.get("title"))
        if not title:
            errors["title"] = "Title is required"
        elif len(title) > 200:
            errors["title"] = "Title cannot exceed 200 characters"

    if payload.get("due_date") not in (None, ""):
        try:
            parse_datetime(payload.get("due_date"))
        except ValueError:
            errors["due_date"] = "Due date must be a valid date"

    for field, model, label in (("department_id", Department, "Department"), ("location_id", Location, "Location")):
        raw = payload.get(field)
        if raw not in (None, "") and db.session.get(model, parse_int(raw) or 0) is None:
            errors[field] = f"{label} not found"
    return errors


def _get_engineer(raw: Any) -> User:
    engineer_id = parse_int(raw)
    engineer = db.session.get(User, engineer_id) if engineer_id else None
    if engineer is None or engineer.role != ROLE_ENGINEER or not engineer.is_active:
        raise NotFoundError("Engineer not found or inactive")
    return engineer


def _set_status(ticket: Ticket, new_status: str, now: datetime):
    """Apply a status change and keep timestamps and the SLA clock in step."""
    previous = ticket.status
    if new_status == previous:
        return
    ticket.status = new_status
    if new_status == "resolved" and ticket.resolved_at is None:
        ticket.resolved_at = now
    if new_status == "closed":
        ticket.resolved_at = ticket.resolved_at or now
        ticket.closed_at = now
    sla_tracking.sync_with_ticket_status(ticket, previous, current_user, now)


def _detail(ticket: Ticket) -> Dict[str, Any]:
    data = ticket.to_dict()
    comments = ticket.comments
    if _is_employee():
        comments = [c for c in comments if not c.is_internal]
    data["comments"] = [c.to_dict() for c in comments]
    data["assets"] = _linked_assets(ticket)
    if ticket.sla_tracking is not None:
        details = sla_tracking.refresh_elapsed(ticket.sla_tracking)
        data["sla"] = {**ticket.sla_tracking.to_dict(), **details}
    else:
        data["sla"] = None
    return data


def _reopen_check(ticket: Ticket, config: TicketReopenConfig, now: datetime) -> Dict[str, Any]:
    result = {
        "can_reopen": False,
        "reason": None,
        "reopen_count": ticket.reopen_count or 0,
        "max_reopen_count": config.max_reopen_count,
        "reopen_window_days": config.reopen_window_days,
        "days_since_closed": None,
    }
    if ticket.status != "closed" or ticket.closed_at is None:
        result["reason"] = "Only closed tickets can be reopened"
        return result

    result["days_since_closed"] = (now - ticket.closed_at).days
    if now > ticket.closed_at + timedelta(days=config.reopen_window_days):
        result["reason"] = f"Reopen window of {config.reopen_window_days} days has expired"
    elif (ticket.reopen_count or 0) >= config.max_reopen_count:
        result["reason"] = f"Maximum reopen count ({config.max_reopen_count}) reached"
    else:
        result["can_reopen"] = True
    return result


def _filtered_query():
    query = Ticket.query
    if _is_employee():
        query = query.filter(Ticket.created_by_user_id == current_user.id)
    elif current_user.role == ROLE_ENGINEER:
        query = query.filter(Ticket.assigned_to_engineer_id == current_user.id)

    for arg, column in (("status", Ticket.status), ("priority", Ticket.priority)):
        value = clean_str(request.args.get(arg))
        if value:
            query = query.filter(column == value)
    for arg, column in (
        ("department_id", Ticket.department_id),
        ("location_id", Ticket.location_id),
        ("assigned_to_engineer_id", Ticket.assigned_to_engineer_id),
        ("created_by_user_id", Ticket.created_by_user_id),
    ):
        value = parse_int(request.args.get(arg))
        if value:
            query = query.filter(column == value)

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(
            Ticket.ticket_number.ilike(like),
            Ticket.title.ilike(like),
            Ticket.description.ilike(like),
        ))
    return query


# --- linked assets ---
def _parse_asset_ids(raw: Any) -> List[int]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list) or any(isinstance(v, bool) or parse_int(v) is None for v in raw):
        raise ValidationError({"asset_ids": "Asset IDs must be a list of asset IDs"})
    return list(dict.fromkeys(parse_int(v) for v in raw))


def _get_linkable_asset(ticket: Ticket, asset_id: Optional[int]) -> Asset:
    asset = db.session.get(Asset, asset_id) if asset_id else None
    if asset is None or not asset.is_active:
        raise NotFoundError("Asset not found")
    if _is_employee():
        holder = asset.parent_asset.assigned_to if asset.is_installed else asset.assigned_to
        if holder != ticket.created_by_user_id:
            raise ForbiddenError("You can only link assets assigned to you")
    return asset


def _link_asset(ticket: Ticket, asset: Asset, notes: Optional[str] = None) -> TicketAsset:
    link = TicketAsset(ticket=ticket, asset=asset, added_by=current_user.id, notes=notes)
    db.session.add(link)
    return link


def _is_linked(ticket: Ticket, asset_id: int) -> bool:
    return any(link.asset_id == asset_id for link in ticket.asset_links)


def _linked_assets(ticket: Ticket) -> List[Dict[str, Any]]:
    """Direct links first, then components installed in linked parents."""
    links = sorted(ticket.asset_links, key=lambda l: (l.added_at, l.id or 0))
    direct_ids = {link.asset_id for link in links}
    items = [link.to_dict() for link in links]
    for link in links:
        if link.asset is None:
            continue
        for component in link.asset.installed_components():
            if component.id in direct_ids:
                continue
            entry = link.to_dict()
            entry.update({
                "id": None,
                "asset_id": component.id,
                "asset_tag": component.asset_tag,
                "asset_name": component.name,
                "serial_number": component.serial_number,
                "asset_type": component.asset_type,
                "asset_status": component.status,
                "parent_asset_id": component.parent_asset_id,
                "notes": None,
                "is_directly_linked": False,
                "is_component_of_linked": True,
            })
            items.append(entry)
    return items


# --- tickets ---
@tickets_bp.post("")
@permission_required("tickets.create")
def create_ticket():
    payload = get_json_body()
    payload.setdefault("title", None)
    errors = _validate_choices(payload)
    if errors:
        raise ValidationError(errors)
    asset_ids = _parse_asset_ids(payload.get("asset_ids"))

    now = utc_now()
    coordinator = None
    if current_user.role in SELF_SERVICE_ROLES or payload.get("created_by_user_id") in (None, ""):
        owner = current_user._get_current_object()
    else:
        owner = db.session.get(User, parse_int(payload.get("created_by_user_id")) or 0)
        if owner is None or not owner.is_active:
            raise NotFoundError("User not found or inactive")
        coordinator = current_user._get_current_object()

    engineer = None
    if payload.get("assigned_to_engineer_id") not in (None, ""):
        engineer = _get_engineer(payload.get("assigned_to_engineer_id"))

    ticket = Ticket(
        ticket_number=Ticket.generate_ticket_number(now),
        title=clean_str(payload.get("title")),
        description=clean_str(payload.get("description")),
        priority=payload.get("priority") or "medium",
        category=clean_str(payload.get("category")),
        ticket_channel=payload.get("ticket_channel") or "portal",
        ticket_type=payload.get("ticket_type") or "incident",
        created_by_user_id=owner.id,
        created_by_coordinator_id=coordinator.id if coordinator else None,
        assigned_to_engineer_id=engineer.id if engineer else None,
        department_id=parse_int(payload.get("department_id")) or owner.department_id,
        location_id=parse_int(payload.get("location_id")) or owner.location_id,
        due_date=parse_datetime(payload.get("due_date")) if payload.get("due_date") else None,
        status="in_progress" if engineer else "open",
        created_at=now,
    )
    db.session.add(ticket)
    db.session.flush()
    sla_tracking.initialize_tracking(ticket, now)
    links = [_link_asset(ticket, _get_linkable_asset(ticket, asset_id)) for asset_id in asset_ids]

    log_activity(
        "ticket_created",
        user=current_user,
        target=ticket,
        summary=f"Created ticket {ticket.ticket_number}",
        meta={"priority": ticket.priority, "on_behalf_of": owner.id if coordinator else None},
    )
    db.session.commit()
    data = ticket.to_dict()
    data["assets"] = [link.to_dict() for link in links]
    return created(data, "Ticket created successfully")


@tickets_bp.get("")
@permission_required("tickets.read")
def list_tickets():
    page, limit = pagination_args()
    query = _filtered_query()
    total = query.count()
    tickets = query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([t.to_dict() for t in tickets], page, limit, total, "Tickets retrieved successfully")


@tickets_bp.get("/stats")
@roles_required(*TICKET_MANAGER_ROLES)
def ticket_stats():
    now = utc_now()
    base = _filtered_query()
    rows = base.with_entities(Ticket.status, db.func.count(Ticket.id)).group_by(Ticket.status).all()
    by_status = {status: 0 for status in TICKET_STATUSES}
    by_status.update({status: count for status, count in rows})

    open_tickets = base.filter(Ticket.status.notin_(TICKET_FINAL_STATUSES))
    midnight = datetime(now.year, now.month, now.day)
    data = {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "critical": open_tickets.filter(Ticket.priority.in_(["critical", "emergency"])).count(),
        "overdue": open_tickets.filter(Ticket.due_date.isnot(None), Ticket.due_date < now).count(),
        "resolved_today": base.filter(Ticket.resolved_at >= midnight).count(),
        "unassigned": open_tickets.filter(Ticket.assigned_to_engineer_id.is_(None)).count(),
    }
    return success(data, "Ticket statistics retrieved successfully")


@tickets_bp.get("/engineers")
@roles_required(*TICKET_MANAGER_ROLES)
def available_engineers():
    query = User.query.filter(User.role == ROLE_ENGINEER, User.is_active.is_(True))
    department_id = parse_int(request.args.get("department_id"))
    if department_id:
        query = query.filter(User.department_id == department_id)
    location_id = parse_int(request.args.get("location_id"))
    if location_id:
        query = query.filter(User.location_id == location_id)

    engineers = query.order_by(User.first_name.asc(), User.last_name.asc()).all()
    data = []
    for engineer in engineers:
        open_count = Ticket.query.filter(
            Ticket.assigned_to_engineer_id == engineer.id,
            Ticket.status.notin_(TICKET_FINAL_STATUSES),
        ).count()
        data.append({
            "id": engineer.id,
            "full_name": engineer.full_name,
            "email": engineer.email,
            "department_id": engineer.department_id,
            "location_id": engineer.location_id,
            "open_tickets": open_count,
        })
    return success(data, "Engineers retrieved successfully")


@tickets_bp.get("/my-tickets")
@login_required
def my_tickets():
    page, limit = pagination_args()
    if current_user.role == ROLE_ENGINEER:
        query = Ticket.query.filter(Ticket.assigned_to_engineer_id == current_user.id)
    else:
        query = Ticket.query.filter(Ticket.created_by_user_id == current_user.id)
    status = clean_str(request.args.get("status"))
    if status:
        query = query.filter(Ticket.status == status)

    total = query.count()
    tickets = query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([t.to_dict() for t in tickets], page, limit, total, "Tickets retrieved successfully")


@tickets_bp.get("/<int:ticket_id>")
@permission_required("tickets.read")
def get_ticket(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    data = _detail(ticket)
    db.session.commit()
    return success(data, "Ticket retrieved successfully")


@tickets_bp.put("/<int:ticket_id>")
@permission_required("tickets.update")
def update_ticket(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    _ensure_open(ticket)
    payload = get_json_body()

    fields = {key: payload[key] for key in UPDATABLE_FIELDS if key in payload}
    if not fields:
        raise BadRequestError("No valid fields to update")
    errors = _validate_choices(fields)
    if errors:
        raise ValidationError(errors)

    now = utc_now()
    previous_status = ticket.status
    for key, value in fields.items():
        if key == "status":
            continue
        if key in ("department_id", "location_id"):
            value = parse_int(value)
        elif key == "due_date":
            value = parse_datetime(value) if value else None
        elif key in ("title", "description", "category"):
            value = clean_str(value)
        setattr(ticket, key, value)

    if "status" in fields:
        _set_status(ticket, fields["status"], now)

    log_activity(
        "ticket_updated",
        user=current_user,
        target=ticket,
        summary=f"Updated ticket {ticket.ticket_number}",
        meta={"fields": sorted(fields), "previous_status": previous_status},
    )
    db.session.commit()
    return success(ticket.to_dict(), "Ticket updated successfully")


@tickets_bp.put("/<int:ticket_id>/assign")
@roles_required(*COORDINATOR_ROLES)
def assign_engineer(ticket_id: int):
    payload = get_json_body()
    if payload.get("engineer_id") in (None, ""):
        raise BadRequestError("Engineer ID is required")

    ticket = _get_ticket_or_404(ticket_id)
    _ensure_open(ticket)
    engineer = _get_engineer(payload.get("engineer_id"))

    previous_engineer = ticket.assigned_to_engineer_id
    ticket.assigned_to_engineer_id = engineer.id
    if ticket.status in ("open", "assigned", "pending"):
        _set_status(ticket, "in_progress", utc_now())

    log_activity(
        "ticket_assigned",
        user=current_user,
        target=ticket,
        summary=f"Assigned {ticket.ticket_number} to {engineer.full_name}",
        meta={"engineer_id": engineer.id, "previous_engineer_id": previous_engineer},
    )
    db.session.commit()
    return success(ticket.to_dict(), "Engineer assigned successfully")


@tickets_bp.put("/<int:ticket_id>/close")
@roles_required(*COORDINATOR_ROLES)
def close_ticket(ticket_id: int):
    payload = get_json_body()
    notes = clean_str(payload.get("resolution_notes"))
    if not notes:
        raise BadRequestError("Resolution notes are required")

    ticket = _get_ticket_or_404(ticket_id)
    _ensure_open(ticket)

    ticket.resolution_notes = notes
    _set_status(ticket, "closed", utc_now())
    log_activity("ticket_closed", user=current_user, target=ticket, summary=f"Closed ticket {ticket.ticket_number}")
    db.session.commit()
    return success(ticket.to_dict(), "Ticket closed successfully")


@tickets_bp.delete("/<int:ticket_id>")
@permission_required("tickets.delete")
def delete_ticket(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    number = ticket.ticket_number
    db.session.delete(ticket)
    log_activity(
        "ticket_deleted",
        user=current_user,
        target_type="Ticket",
        target_id=ticket_id,
        summary=f"Deleted ticket {number}",
    )
    db.session.commit()
    return success(None, "Ticket deleted successfully")


# --- comments ---
@tickets_bp.get("/<int:ticket_id>/comments")
@permission_required("tickets.read")
def list_comments(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    comments = ticket.comments
    if _is_employee():
        comments = [c for c in comments if not c.is_internal]
    return success([c.to_dict() for c in comments], "Comments retrieved successfully")


@tickets_bp.post("/<int:ticket_id>/comments")
@permission_required("tickets.read")
def add_comment(ticket_id: int):
    payload = get_json_body()
    text = clean_str(payload.get("comment_text"))
    if not text:
        raise BadRequestError("Comment text is required")

    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket, "Access denied. You can only comment on your own tickets.")

    comment = TicketComment(
        ticket=ticket,
        user_id=current_user.id,
        comment_text=text,
        is_internal=bool(parse_bool(payload.get("is_internal"), False)) and not _is_employee(),
    )
    db.session.add(comment)
    db.session.flush()
    log_activity(
        "ticket_commented",
        user=current_user,
        target=ticket,
        summary=f"Commented on {ticket.ticket_number}",
        meta={"comment_id": comment.id, "is_internal": comment.is_internal},
    )
    db.session.commit()
    return created(comment.to_dict(), "Comment added successfully")


# --- close requests ---
@tickets_bp.post("/<int:ticket_id>/request-close")
@roles_required(ROLE_ENGINEER)
def request_close(ticket_id: int):
    payload = get_json_body()
    notes = clean_str(payload.get("request_notes"))
    if not notes:
        raise BadRequestError("Request notes are required")

    ticket = _get_ticket_or_404(ticket_id)
    if ticket.assigned_to_engineer_id != current_user.id:
        raise ForbiddenError("Only the assigned engineer can request closure")
    _ensure_open(ticket)
    if TicketCloseRequest.query.filter_by(ticket_id=ticket.id, request_status="pending").first():
        raise ConflictError("A close request is already pending for this ticket")

    close_request = TicketCloseRequest(
        ticket=ticket,
        requested_by_engineer_id=current_user.id,
        request_notes=notes,
        request_status="pending",
    )
    db.session.add(close_request)
    _set_status(ticket, "pending_closure", utc_now())
    db.session.flush()
    log_activity(
        "ticket_close_requested",
        user=current_user,
        target=ticket,
        summary=f"Requested closure of {ticket.ticket_number}",
        meta={"close_request_id": close_request.id},
    )
    db.session.commit()
    return success(close_request.to_dict(), "Close request submitted successfully")


@tickets_bp.post("/<int:ticket_id>/review-close-request")
@roles_required(*COORDINATOR_ROLES)
def review_close_request(ticket_id: int):
    payload = get_json_body()
    action = clean_str(payload.get("action"))
    if action not in ("approved", "rejected"):
        raise BadRequestError("Valid action (approved/rejected) is required")

    ticket = _get_ticket_or_404(ticket_id)
    close_request = TicketCloseRequest.query.filter_by(ticket_id=ticket.id, request_status="pending").first()
    if close_request is None:
        raise NotFoundError("No pending close request found for this ticket")

    now = utc_now()
    close_request.request_status = action
    close_request.reviewed_by_coordinator_id = current_user.id
    close_request.review_notes = clean_str(payload.get("review_notes"))
    close_request.reviewed_at = now

    if action == "approved":
        ticket.resolution_notes = ticket.resolution_notes or close_request.request_notes
        _set_status(ticket, "closed", now)
        message = "Close request approved. Ticket closed."
    else:
        _set_status(ticket, "in_progress", now)
        message = "Close request rejected. Ticket returned to in progress."

    log_activity(
        f"ticket_close_{action}",
        user=current_user,
        target=ticket,
        summary=f"Close request {action} for {ticket.ticket_number}",
        meta={"close_request_id": close_request.id},
    )
    db.session.commit()
    return success({"ticket": ticket.to_dict(), "close_request": close_request.to_dict()}, message)


@tickets_bp.get("/<int:ticket_id>/close-request-history")
@permission_required("tickets.read")
def close_request_history(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    history = (
        TicketCloseRequest.query.filter_by(ticket_id=ticket.id)
        .order_by(TicketCloseRequest.created_at.desc(), TicketCloseRequest.id.desc())
        .all()
    )
    return success([r.to_dict() for r in history], "Close request history fetched successfully")


@tickets_bp.get("/pending-close-requests")
@roles_required(*COORDINATOR_ROLES)
def pending_close_requests():
    requests_ = (
        TicketCloseRequest.query.filter_by(request_status="pending")
        .order_by(TicketCloseRequest.created_at.asc())
        .all()
    )
    return success([r.to_dict() for r in requests_], "Close requests fetched successfully")


@tickets_bp.get("/close-requests-count")
@roles_required(*COORDINATOR_ROLES)
def close_requests_count():
    count = TicketCloseRequest.query.filter_by(request_status="pending").count()
    return success({"count": count}, "Count fetched successfully")


# --- reopening ---
@tickets_bp.get("/reopen-config")
@roles_required(ROLE_SUPERADMIN)
def get_reopen_config():
    config = TicketReopenConfig.current()
    db.session.commit()
    return success(config.to_dict(), "Reopen configuration retrieved successfully")


@tickets_bp.put("/reopen-config")
@roles_required(ROLE_SUPERADMIN)
def update_reopen_config():
    payload = get_json_body()
    config = TicketReopenConfig.current()

    errors: Dict[str, str] = {}
    window: Optional[int] = None
    max_count: Optional[int] = None
    if "reopen_window_days" in payload:
        window = parse_int(payload.get("reopen_window_days"))
        if window is None or not 1 <= window <= 365:
            errors["reopen_window_days"] = "Reopen window must be between 1 and 365 days"
    if "max_reopen_count" in payload:
        max_count = parse_int(payload.get("max_reopen_count"))
        if max_count is None or not 1 <= max_count <= 10:
            errors["max_reopen_count"] = "Max reopen count must be between 1 and 10"
    if errors:
        raise ValidationError(errors)

    if window is not None:
        config.reopen_window_days = window
    if max_count is not None:
        config.max_reopen_count = max_count
    if "require_reopen_reason" in payload:
        config.require_reopen_reason = parse_bool(payload.get("require_reopen_reason"), config.require_reopen_reason)
    config.updated_by = current_user.id

    log_activity("ticket_reopen_config_updated", user=current_user, target=config, summary="Updated reopen configuration")
    db.session.commit()
    return success(config.to_dict(), "Reopen configuration updated successfully")


@tickets_bp.get("/<int:ticket_id>/can-reopen")
@roles_required(*COORDINATOR_ROLES)
def can_reopen(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    result = _reopen_check(ticket, TicketReopenConfig.current(), utc_now())
    db.session.commit()
    return success(result, "Reopen eligibility checked")


@tickets_bp.post("/<int:ticket_id>/reopen")
@roles_required(*COORDINATOR_ROLES)
def reopen_ticket(ticket_id: int):
    payload = get_json_body()
    reason = clean_str(payload.get("reopen_reason"))
    config = TicketReopenConfig.current()
    if config.require_reopen_reason and not reason:
        raise BadRequestError("Reopen reason is required")

    ticket = _get_ticket_or_404(ticket_id)
    now = utc_now()
    check = _reopen_check(ticket, config, now)
    if not check["can_reopen"]:
        raise BadRequestError(check["reason"])

    history = TicketReopenHistory(
        ticket=ticket,
        reopened_by=current_user.id,
        reopen_reason=reason,
        previous_status=ticket.status,
        previous_closed_at=ticket.closed_at,
        reopen_number=(ticket.reopen_count or 0) + 1,
        reopened_at=now,
    )
    db.session.add(history)

    ticket.reopen_count = (ticket.reopen_count or 0) + 1
    ticket.status = "in_progress" if ticket.assigned_to_engineer_id else "open"
    ticket.closed_at = None
    ticket.resolved_at = None
    sla_tracking.restart_after_reopen(ticket, current_user, now)

    log_activity(
        "ticket_reopened",
        user=current_user,
        target=ticket,
        summary=f"Reopened ticket {ticket.ticket_number}",
        meta={"reopen_number": history.reopen_number, "reason": reason},
    )
    db.session.commit()
    return success(ticket.to_dict(), "Ticket reopened successfully")


@tickets_bp.get("/<int:ticket_id>/reopen-history")
@permission_required("tickets.read")
def reopen_history(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    history = sorted(ticket.reopen_history, key=lambda h: h.reopened_at, reverse=True)
    return success([h.to_dict() for h in history], "Reopen history retrieved successfully")


# --- linked assets ---
@tickets_bp.get("/my-assets")
@login_required
def my_linkable_assets():
    assets = (
        Asset.query.filter(Asset.assigned_to == current_user.id, Asset.is_active.is_(True))
        .order_by(Asset.asset_tag.asc())
        .all()
    )
    parents = [a for a in assets if a.installed_components()]
    components = [c for parent in parents for c in parent.installed_components()]
    grouped = {
        "standalone": [a.to_dict() for a in assets if a not in parents],
        "parent": [a.to_dict() for a in parents],
        "components": [c.to_dict() for c in components],
    }
    data = {"assets": [a.to_dict() for a in assets + components], "grouped": grouped, "total": len(assets) + len(components)}
    return success(data, "Assets retrieved successfully")


@tickets_bp.get("/<int:ticket_id>/assets")
@permission_required("tickets.read")
def list_ticket_assets(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    assets = _linked_assets(ticket)
    return success({"assets": assets, "count": len(assets)}, "Ticket assets retrieved successfully")


@tickets_bp.get("/<int:ticket_id>/assets/<int:asset_id>/check")
@permission_required("tickets.read")
def check_asset_link(ticket_id: int, asset_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    return success({"is_linked": _is_linked(ticket, asset_id)}, "Asset link checked")


@tickets_bp.post("/<int:ticket_id>/assets")
@permission_required("tickets.read")
def link_ticket_asset(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    _ensure_open(ticket)

    payload = get_json_body()
    asset_id = parse_int(payload.get("asset_id"))
    if asset_id is None:
        raise ValidationError({"asset_id": "Asset ID is required"})
    asset = _get_linkable_asset(ticket, asset_id)
    if _is_linked(ticket, asset.id):
        raise ConflictError("Asset is already linked to this ticket")

    link = _link_asset(ticket, asset, clean_str(payload.get("notes")))
    if ticket.sla_tracking is None:
        sla_tracking.initialize_tracking(ticket)
    log_activity(
        "ticket_asset_linked",
        user=current_user,
        target=ticket,
        summary=f"Linked {asset.asset_tag} to {ticket.ticket_number}",
        meta={"asset_id": asset.id},
    )
    db.session.commit()
    return created(link.to_dict(), "Asset linked to ticket successfully")


@tickets_bp.post("/<int:ticket_id>/assets/bulk")
@permission_required("tickets.read")
def link_ticket_assets(ticket_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    _ensure_open(ticket)

    asset_ids = _parse_asset_ids(get_json_body().get("asset_ids"))
    if not asset_ids:
        raise ValidationError({"asset_ids": "Asset IDs array is required"})
    assets = [_get_linkable_asset(ticket, asset_id) for asset_id in asset_ids]
    links = [_link_asset(ticket, asset) for asset in assets if not _is_linked(ticket, asset.id)]

    if links and ticket.sla_tracking is None:
        sla_tracking.initialize_tracking(ticket)
    log_activity(
        "ticket_asset_linked",
        user=current_user,
        target=ticket,
        summary=f"Linked {len(links)} asset(s) to {ticket.ticket_number}",
        meta={"asset_ids": [link.asset_id for link in links]},
    )
    db.session.commit()
    data = {"linked_count": len(links), "assets": [link.to_dict() for link in links]}
    return created(data, f"{len(links)} assets linked to ticket")


@tickets_bp.delete("/<int:ticket_id>/assets/<int:asset_id>")
@permission_required("tickets.read")
def unlink_ticket_asset(ticket_id: int, asset_id: int):
    ticket = _get_ticket_or_404(ticket_id)
    _ensure_can_view(ticket)
    _ensure_open(ticket)

    link = TicketAsset.query.filter_by(ticket_id=ticket.id, asset_id=asset_id).first()
    if link is None:
        raise NotFoundError("Asset link not found")

    db.session.delete(link)
    log_activity(
        "ticket_asset_unlinked",
        user=current_user,
        target=ticket,
        summary=f"Unlinked asset {asset_id} from {ticket.ticket_number}",
        meta={"asset_id": asset_id},
    )
    db.session.commit()
    return success(None, "Asset unlinked from ticket successfully")
