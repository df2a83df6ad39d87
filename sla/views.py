from typing import Any, Dict, List

from flask import request
from flask_login import current_user

from middleware.permissions import permission_required, roles_required
from utilities import sla_tracking
from utilities.business_hours import format_duration
from utilities.constants import (
    ADMIN_ROLES,
    COORDINATOR_ROLES,
    ROLE_EMPLOYEE,
    ROLE_SUPERADMIN,
    TICKET_MANAGER_ROLES,
    TICKET_PRIORITIES,
)
from utilities.database import (
    db,
    BreakHours,
    BusinessHoursDetail,
    BusinessHoursSchedule,
    HolidayCalendar,
    HolidayDate,
    SlaRule,
    Ticket,
    TicketSlaTracking,
    log_activity,
)
from utilities.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from utilities.responses import created, success
from utilities.seed import seed_sla_rules
from utilities.validators import clean_str, get_json_body, parse_bool, parse_date, parse_int, parse_time
from . import sla_bp

VALID_DAYS = {str(d) for d in range(7)}
RULE_DEFAULTS = {"min_tat_minutes": 30, "avg_tat_minutes": 240, "max_tat_minutes": 480}


def _get_or_404(model, object_id: int, label: str):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


# --- rules ---
def _validate_rule(payload: Dict[str, Any], rule: SlaRule = None) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if rule is None or "rule_name" in payload:
        if not clean_str(payload.get("rule_name")):
            errors["rule_name"] = "Rule name is required"

    tat = {}
    for field, default in RULE_DEFAULTS.items():
        raw = payload.get(field)
        value = parse_int(raw) if raw not in (None, "") else (getattr(rule, field) if rule else default)
        if value is None or value < 1:
            errors[field] = f"{field.replace('_', ' ').capitalize()} must be a positive number of minutes"
        tat[field] = value
    if not errors and not tat["min_tat_minutes"] <= tat["avg_tat_minutes"] <= tat["max_tat_minutes"]:
        errors["max_tat_minutes"] = "TAT values must satisfy min <= avg <= max"

    priorities = clean_str(payload.get("applicable_priority"))
    if priorities and priorities.lower() != "all":
        unknown = [p.strip() for p in priorities.split(",") if p.strip().lower() not in TICKET_PRIORITIES]
        if unknown:
            errors["applicable_priority"] = "Unknown priorities: " + ", ".join(unknown)

    for field, model, label in (
        ("business_hours_schedule_id", BusinessHoursSchedule, "Business hours schedule"),
        ("holiday_calendar_id", HolidayCalendar, "Holiday calendar"),
    ):
        raw = payload.get(field)
        if raw not in (None, "") and db.session.get(model, parse_int(raw) or 0) is None:
            errors[field] = f"{label} not found"
    return errors


def _apply_rule(rule: SlaRule, payload: Dict[str, Any]):
    if "rule_name" in payload:
        rule.rule_name = clean_str(payload.get("rule_name"))
    if "description" in payload:
        rule.description = clean_str(payload.get("description"))
    if "priority_order" in payload:
        priority_order = parse_int(payload.get("priority_order"))
        rule.priority_order = 100 if priority_order is None else priority_order
    if "applicable_priority" in payload:
        rule.applicable_priority = (clean_str(payload.get("applicable_priority")) or "all").lower()
    for field in RULE_DEFAULTS:
        if payload.get(field) not in (None, ""):
            setattr(rule, field, parse_int(payload.get(field)))
    for field in ("business_hours_schedule_id", "holiday_calendar_id"):
        if field in payload:
            setattr(rule, field, parse_int(payload.get(field)))
    for field in ("allow_pause_resume", "is_active"):
        if field in payload:
            setattr(rule, field, parse_bool(payload.get(field), getattr(rule, field)))


def _ensure_unique_rule_name(name: str, rule_id: int = 0):
    clash = SlaRule.query.filter(SlaRule.rule_name == name, SlaRule.id != rule_id).first()
    if clash:
        raise ConflictError("SLA rule name already exists")


@sla_bp.get("/rules")
@roles_required(*TICKET_MANAGER_ROLES)
def list_rules():
    query = SlaRule.query
    is_active = parse_bool(request.args.get("is_active"))
    if is_active is not None:
        query = query.filter(SlaRule.is_active.is_(is_active))
    rules = query.order_by(SlaRule.priority_order.asc(), SlaRule.id.asc()).all()
    return success([r.to_dict() for r in rules], "SLA rules retrieved successfully")


@sla_bp.get("/rules/<int:rule_id>")
@roles_required(*TICKET_MANAGER_ROLES)
def get_rule(rule_id: int):
    return success(_get_or_404(SlaRule, rule_id, "SLA rule").to_dict(), "SLA rule retrieved successfully")


@sla_bp.get("/rules/match")
@roles_required(*TICKET_MANAGER_ROLES)
def match_rule():
    priority = clean_str(request.args.get("priority"))
    rule = sla_tracking.find_matching_rule(priority)
    if rule is None:
        raise NotFoundError("No SLA rules configured")
    return success(rule.to_dict(), "Matching SLA rule retrieved successfully")


@sla_bp.post("/rules")
@roles_required(*ADMIN_ROLES)
def create_rule():
    payload = get_json_body()
    errors = _validate_rule(payload)
    if errors:
        raise ValidationError(errors)
    _ensure_unique_rule_name(clean_str(payload.get("rule_name")))

    rule = SlaRule(**RULE_DEFAULTS)
    payload.setdefault("applicable_priority", "all")
    _apply_rule(rule, payload)
    db.session.add(rule)
    db.session.flush()

    log_activity("sla_rule_created", user=current_user, target=rule, summary=f"Created SLA rule {rule.rule_name}")
    db.session.commit()
    return created(rule.to_dict(), "SLA rule created successfully")


@sla_bp.put("/rules/<int:rule_id>")
@roles_required(*ADMIN_ROLES)
def update_rule(rule_id: int):
    rule = _get_or_404(SlaRule, rule_id, "SLA rule")
    payload = get_json_body()
    if not payload:
        raise BadRequestError("No fields to update")

    errors = _validate_rule(payload, rule)
    if errors:
        raise ValidationError(errors)
    if "rule_name" in payload:
        _ensure_unique_rule_name(clean_str(payload.get("rule_name")), rule.id)

    _apply_rule(rule, payload)
    log_activity(
        "sla_rule_updated",
        user=current_user,
        target=rule,
        summary=f"Updated SLA rule {rule.rule_name}",
        meta={"fields": sorted(payload)},
    )
    db.session.commit()
    return success(rule.to_dict(), "SLA rule updated successfully")


@sla_bp.delete("/rules/<int:rule_id>")
@roles_required(*ADMIN_ROLES)
def delete_rule(rule_id: int):
    rule = _get_or_404(SlaRule, rule_id, "SLA rule")
    # Rules referenced by tracking rows are only deactivated.
    if TicketSlaTracking.query.filter_by(sla_rule_id=rule.id).first() is not None:
        rule.is_active = False
        message = "SLA rule is in use and has been deactivated"
    else:
        db.session.delete(rule)
        message = "SLA rule deleted successfully"

    log_activity(
        "sla_rule_deleted",
        user=current_user,
        target_type="SlaRule",
        target_id=rule_id,
        summary=f"Removed SLA rule {rule.rule_name}",
    )
    db.session.commit()
    return success(None, message)


# --- business hours ---
def _build_details(schedule: BusinessHoursSchedule, days: List[Dict[str, Any]], errors: Dict[str, str]):
    seen = set()
    for index, day in enumerate(days):
        if not isinstance(day, dict):
            errors[f"details[{index}]"] = "Each working day must be an object"
            continue
        dow = parse_int(day.get("day_of_week"))
        if dow is None or not 0 <= dow <= 6:
            errors[f"details[{index}].day_of_week"] = "Day of week must be between 0 (Sunday) and 6"
            continue
        if dow in seen:
            errors[f"details[{index}].day_of_week"] = "Each day of week may only appear once"
            continue
        seen.add(dow)

        working = parse_bool(day.get("is_working_day"), True)
        try:
            start = parse_time(day.get("start_time"))
            end = parse_time(day.get("end_time"))
        except ValueError:
            errors[f"details[{index}]"] = "Times must use HH:MM format"
            continue
        if working and (start is None or end is None or start >= end):
            errors[f"details[{index}]"] = "Working days need a start time before the end time"
            continue
        schedule.details.append(BusinessHoursDetail(
            day_of_week=dow, is_working_day=working, start_time=start if working else None, end_time=end if working else None,
        ))


def _build_breaks(schedule: BusinessHoursSchedule, breaks: List[Dict[str, Any]], errors: Dict[str, str]):
    for index, entry in enumerate(breaks):
        if not isinstance(entry, dict):
            errors[f"breaks[{index}]"] = "Each break must be an object"
            continue
        try:
            start = parse_time(entry.get("start_time"))
            end = parse_time(entry.get("end_time"))
        except ValueError:
            errors[f"breaks[{index}]"] = "Times must use HH:MM format"
            continue
        if start is None or end is None or start >= end:
            errors[f"breaks[{index}]"] = "Breaks need a start time before the end time"
            continue
        days = clean_str(entry.get("applies_to_days"))
        if days and any(d.strip() not in VALID_DAYS for d in days.split(",")):
            errors[f"breaks[{index}].applies_to_days"] = "Applies to days must be a comma separated list of 0-6"
            continue
        schedule.breaks.append(BreakHours(
            break_name=clean_str(entry.get("break_name")) or "Break",
            start_time=start,
            end_time=end,
            applies_to_days=days,
        ))


@sla_bp.get("/business-hours")
@roles_required(*TICKET_MANAGER_ROLES)
def list_business_hours():
    schedules = BusinessHoursSchedule.query.order_by(BusinessHoursSchedule.schedule_name.asc()).all()
    return success([s.to_dict() for s in schedules], "Business hours retrieved successfully")


@sla_bp.get("/business-hours/<int:schedule_id>")
@roles_required(*TICKET_MANAGER_ROLES)
def get_business_hours(schedule_id: int):
    schedule = _get_or_404(BusinessHoursSchedule, schedule_id, "Business hours schedule")
    return success(schedule.to_dict(include_details=True), "Business hours retrieved successfully")


@sla_bp.post("/business-hours")
@roles_required(*ADMIN_ROLES)
def create_business_hours():
    payload = get_json_body()
    name = clean_str(payload.get("schedule_name"))
    errors: Dict[str, str] = {}
    if not name:
        errors["schedule_name"] = "Schedule name is required"
    elif BusinessHoursSchedule.query.filter_by(schedule_name=name).first():
        raise ConflictError("Business hours schedule name already exists")

    schedule = BusinessHoursSchedule(
        schedule_name=name,
        description=clean_str(payload.get("description")),
        timezone=clean_str(payload.get("timezone")) or "UTC",
        is_24x7=bool(parse_bool(payload.get("is_24x7"), False)),
        is_default=bool(parse_bool(payload.get("is_default"), False)),
    )
    if not schedule.is_24x7:
        days = payload.get("details") or []
        if not isinstance(days, list) or not days:
            errors["details"] = "Working days are required unless the schedule is 24x7"
        else:
            _build_details(schedule, days, errors)
        breaks = payload.get("breaks") or []
        if not isinstance(breaks, list):
            errors["breaks"] = "Breaks must be a list"
        else:
            _build_breaks(schedule, breaks, errors)
    if errors:
        raise ValidationError(errors)

    if schedule.is_default:
        BusinessHoursSchedule.query.filter_by(is_default=True).update({"is_default": False})
    db.session.add(schedule)
    db.session.flush()

    log_activity(
        "business_hours_created",
        user=current_user,
        target=schedule,
        summary=f"Created business hours {schedule.schedule_name}",
    )
    db.session.commit()
    return created(schedule.to_dict(include_details=True), "Business hours created successfully")


@sla_bp.delete("/business-hours/<int:schedule_id>")
@roles_required(*ADMIN_ROLES)
def delete_business_hours(schedule_id: int):
    schedule = _get_or_404(BusinessHoursSchedule, schedule_id, "Business hours schedule")
    in_use = SlaRule.query.filter_by(business_hours_schedule_id=schedule.id).count()
    if in_use:
        raise ConflictError(f"Cannot delete schedule. It is used by {in_use} SLA rule(s).")

    name = schedule.schedule_name
    db.session.delete(schedule)
    log_activity(
        "business_hours_deleted",
        user=current_user,
        target_type="BusinessHoursSchedule",
        target_id=schedule_id,
        summary=f"Deleted business hours {name}",
    )
    db.session.commit()
    return success(None, "Business hours deleted successfully")


# --- holidays ---
@sla_bp.get("/holidays")
@roles_required(*TICKET_MANAGER_ROLES)
def list_holiday_calendars():
    calendars = HolidayCalendar.query.order_by(HolidayCalendar.calendar_name.asc()).all()
    return success([c.to_dict() for c in calendars], "Holiday calendars retrieved successfully")


@sla_bp.get("/holidays/<int:calendar_id>/dates")
@roles_required(*TICKET_MANAGER_ROLES)
def list_holiday_dates(calendar_id: int):
    calendar = _get_or_404(HolidayCalendar, calendar_id, "Holiday calendar")
    dates = sorted(calendar.dates, key=lambda d: d.holiday_date)
    year = parse_int(request.args.get("year"))
    if year:
        dates = [d for d in dates if d.holiday_date.year == year]
    return success([d.to_dict() for d in dates], "Holiday dates retrieved successfully")


@sla_bp.post("/holidays")
@roles_required(*ADMIN_ROLES)
def create_holiday_calendar():
    payload = get_json_body()
    name = clean_str(payload.get("calendar_name"))
    if not name:
        raise ValidationError({"calendar_name": "Calendar name is required"})
    if HolidayCalendar.query.filter_by(calendar_name=name).first():
        raise ConflictError("Holiday calendar name already exists")

    calendar = HolidayCalendar(
        calendar_name=name,
        description=clean_str(payload.get("description")),
        year=parse_int(payload.get("year")),
    )
    dates = payload.get("dates") or []
    if not isinstance(dates, list):
        raise ValidationError({"dates": "Dates must be a list"})
    errors: Dict[str, str] = {}
    for index, entry in enumerate(dates):
        try:
            holiday = _holiday_from_payload(entry)
        except ValidationError as exc:
            errors.update({f"dates[{index}].{k}": v for k, v in exc.errors.items()})
            continue
        calendar.dates.append(holiday)
    if errors:
        raise ValidationError(errors)

    db.session.add(calendar)
    db.session.flush()
    log_activity("holiday_calendar_created", user=current_user, target=calendar, summary=f"Created holiday calendar {name}")
    db.session.commit()
    return created(calendar.to_dict(), "Holiday calendar created successfully")


def _holiday_from_payload(payload: Dict[str, Any]) -> HolidayDate:
    if not isinstance(payload, dict):
        raise ValidationError({"holiday": "Holiday must be an object"})
    errors: Dict[str, str] = {}
    name = clean_str(payload.get("holiday_name"))
    if not name:
        errors["holiday_name"] = "Holiday name is required"
    try:
        day = parse_date(payload.get("holiday_date"))
    except ValueError:
        day = None
    if day is None:
        errors["holiday_date"] = "Holiday date must be a valid date"

    full_day = parse_bool(payload.get("is_full_day"), True)
    start = end = None
    if not full_day:
        try:
            start = parse_time(payload.get("start_time"))
            end = parse_time(payload.get("end_time"))
        except ValueError:
            errors["start_time"] = "Times must use HH:MM format"
        if start is None or end is None or start >= end:
            errors.setdefault("start_time", "Partial holidays need a start time before the end time")
    if errors:
        raise ValidationError(errors)
    return HolidayDate(holiday_date=day, holiday_name=name, is_full_day=full_day, start_time=start, end_time=end)


@sla_bp.post("/holidays/<int:calendar_id>/dates")
@roles_required(*ADMIN_ROLES)
def add_holiday_date(calendar_id: int):
    calendar = _get_or_404(HolidayCalendar, calendar_id, "Holiday calendar")
    holiday = _holiday_from_payload(get_json_body())
    if any(d.holiday_date == holiday.holiday_date for d in calendar.dates):
        raise ConflictError("A holiday already exists on this date")

    calendar.dates.append(holiday)
    db.session.flush()
    log_activity(
        "holiday_date_added",
        user=current_user,
        target=calendar,
        summary=f"Added {holiday.holiday_name} to {calendar.calendar_name}",
        meta={"holiday_date": holiday.holiday_date.isoformat()},
    )
    db.session.commit()
    return created(holiday.to_dict(), "Holiday added successfully")


@sla_bp.delete("/holidays/<int:calendar_id>")
@roles_required(*ADMIN_ROLES)
def delete_holiday_calendar(calendar_id: int):
    calendar = _get_or_404(HolidayCalendar, calendar_id, "Holiday calendar")
    in_use = SlaRule.query.filter_by(holiday_calendar_id=calendar.id).count()
    if in_use:
        raise ConflictError(f"Cannot delete holiday calendar. It is used by {in_use} SLA rule(s).")

    name = calendar.calendar_name
    db.session.delete(calendar)
    log_activity(
        "holiday_calendar_deleted",
        user=current_user,
        target_type="HolidayCalendar",
        target_id=calendar_id,
        summary=f"Deleted holiday calendar {name}",
    )
    db.session.commit()
    return success(None, "Holiday calendar deleted successfully")


@sla_bp.delete("/holidays/dates/<int:holiday_id>")
@roles_required(*ADMIN_ROLES)
def delete_holiday_date(holiday_id: int):
    holiday = _get_or_404(HolidayDate, holiday_id, "Holiday")
    db.session.delete(holiday)
    log_activity(
        "holiday_date_deleted",
        user=current_user,
        target_type="HolidayDate",
        target_id=holiday_id,
        summary=f"Deleted holiday {holiday.holiday_name}",
    )
    db.session.commit()
    return success(None, "Holiday deleted successfully")


# --- tracking ---
def _tracking_for(ticket_id: int):
    ticket = _get_or_404(Ticket, ticket_id, "Ticket")
    if current_user.role == ROLE_EMPLOYEE and ticket.created_by_user_id != current_user.id:
        raise ForbiddenError("Access denied. You can only view your own tickets.")
    return ticket, sla_tracking.get_tracking(ticket.id)


def _tracking_payload(tracking) -> Dict[str, Any]:
    details = sla_tracking.refresh_elapsed(tracking)
    data = tracking.to_dict()
    data.update(details)
    data["elapsed_display"] = format_duration(tracking.business_elapsed_minutes)
    data["remaining_display"] = format_duration(details["remaining_minutes"])
    return data


@sla_bp.get("/tracking/<int:ticket_id>")
@permission_required("tickets.read")
def get_ticket_tracking(ticket_id: int):
    _, tracking = _tracking_for(ticket_id)
    data = _tracking_payload(tracking)
    db.session.commit()
    return success(data, "SLA tracking retrieved successfully")


@sla_bp.post("/tracking/<int:ticket_id>/pause")
@roles_required(*TICKET_MANAGER_ROLES)
def pause_ticket_timer(ticket_id: int):
    ticket, tracking = _tracking_for(ticket_id)
    reason = clean_str(get_json_body().get("reason"))
    entry = sla_tracking.pause_timer(tracking, reason, current_user)
    log_activity(
        "sla_paused",
        user=current_user,
        target=ticket,
        summary=f"Paused SLA timer for {ticket.ticket_number}",
        meta={"reason": reason},
    )
    db.session.commit()
    return success({"tracking": tracking.to_dict(), "log": entry.to_dict()}, "SLA timer paused successfully")


@sla_bp.post("/tracking/<int:ticket_id>/resume")
@roles_required(*TICKET_MANAGER_ROLES)
def resume_ticket_timer(ticket_id: int):
    ticket, tracking = _tracking_for(ticket_id)
    entry = sla_tracking.resume_timer(tracking, current_user)
    log_activity(
        "sla_resumed",
        user=current_user,
        target=ticket,
        summary=f"Resumed SLA timer for {ticket.ticket_number}",
        meta={"paused_minutes": entry.paused_duration_minutes},
    )
    db.session.commit()
    return success({"tracking": tracking.to_dict(), "log": entry.to_dict()}, "SLA timer resumed successfully")


@sla_bp.get("/tracking/<int:ticket_id>/history")
@permission_required("tickets.read")
def pause_history(ticket_id: int):
    _, tracking = _tracking_for(ticket_id)
    entries = sorted(tracking.pause_logs, key=lambda e: (e.action_at, e.id), reverse=True)
    return success([e.to_dict() for e in entries], "SLA pause history retrieved successfully")


@sla_bp.get("/dashboard")
@roles_required(*COORDINATOR_ROLES)
def sla_dashboard():
    data = sla_tracking.dashboard_summary()
    db.session.commit()
    return success(data, "SLA dashboard retrieved successfully")


@sla_bp.post("/seed")
@roles_required(ROLE_SUPERADMIN)
def seed_defaults():
    rules = seed_sla_rules()
    log_activity("sla_defaults_seeded", user=current_user, summary="Ensured default SLA configuration")
    db.session.commit()
    return success({"created": [r.to_dict() for r in rules]}, "Default SLA configuration ensured")
