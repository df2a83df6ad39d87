# utilities/sla_tracking.py
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from utilities.business_hours import BusinessCalendar, calculate_sla_status, final_sla_status
from utilities.constants import SLA_PAUSE_STATUSES, TICKET_FINAL_STATUSES
from utilities.database import (
    db,
    SlaRule,
    Ticket,
    TicketSlaPauseLog,
    TicketSlaTracking,
    utc_now,
    _extract_id,
)
from utilities.errors import BadRequestError, ConflictError, NotFoundError

logger = logging.getLogger("itam.sla")


def find_matching_rule(priority: Optional[str]) -> Optional[SlaRule]:
    """First active rule (by priority_order) covering the priority; the last rule is the fallback."""
    rules = (
        SlaRule.query.filter_by(is_active=True)
        .order_by(SlaRule.priority_order.asc(), SlaRule.id.asc())
        .all()
    )
    for rule in rules:
        if rule.applies_to(priority):
            return rule
    return rules[-1] if rules else None


def initialize_tracking(ticket: Ticket, now: Optional[datetime] = None) -> Optional[TicketSlaTracking]:
    if ticket.sla_tracking is not None:
        raise ConflictError("SLA tracking already exists for this ticket")

    rule = find_matching_rule(ticket.priority)
    if rule is None:
        logger.warning("No SLA rules configured; ticket %s is not tracked", ticket.ticket_number)
        return None

    now = now or utc_now()
    calendar = BusinessCalendar.for_rule(rule)
    tracking = TicketSlaTracking(
        ticket=ticket,
        rule=rule,
        sla_start_time=now,
        min_target_time=calendar.add_business_minutes(now, rule.min_tat_minutes),
        avg_target_time=calendar.add_business_minutes(now, rule.avg_tat_minutes),
        max_target_time=calendar.add_business_minutes(now, rule.max_tat_minutes),
        business_elapsed_minutes=0,
        total_paused_minutes=0,
        is_paused=False,
        sla_status="on_track",
        last_calculated_at=now,
    )
    db.session.add(tracking)
    logger.info("SLA rule '%s' applied to ticket %s", rule.rule_name, ticket.ticket_number)
    return tracking


def get_tracking(ticket_id: int) -> TicketSlaTracking:
    tracking = TicketSlaTracking.query.filter_by(ticket_id=ticket_id).first()
    if tracking is None:
        raise NotFoundError("SLA tracking not found for ticket")
    return tracking


def closed_pause_periods(tracking: TicketSlaTracking) -> List[Tuple[datetime, datetime]]:
    """Pair each 'paused' entry with the next 'resumed' entry."""
    periods = []
    opened = None
    for entry in sorted(tracking.pause_logs, key=lambda e: (e.action_at, e.id or 0)):
        if entry.action == "paused":
            opened = entry.action_at
        elif entry.action == "resumed" and opened is not None:
            periods.append((opened, entry.action_at))
            opened = None
    return periods


def refresh_elapsed(tracking: TicketSlaTracking, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Recompute business elapsed minutes and status; returns the status breakdown."""
    rule = tracking.rule
    if tracking.resolved_at is None:
        now = now or utc_now()
        end = tracking.pause_started_at if tracking.is_paused and tracking.pause_started_at else now
        calendar = BusinessCalendar.for_rule(rule)
        elapsed = calendar.elapsed_minutes(tracking.sla_start_time, end, closed_pause_periods(tracking))
        tracking.business_elapsed_minutes = elapsed
        tracking.last_calculated_at = now

    details = calculate_sla_status(
        tracking.business_elapsed_minutes,
        rule.min_tat_minutes,
        rule.avg_tat_minutes,
        rule.max_tat_minutes,
    )
    if tracking.resolved_at is None:
        tracking.sla_status = details["status"]
    return details


def pause_timer(
    tracking: TicketSlaTracking,
    reason: Optional[str] = None,
    user: Any = None,
    now: Optional[datetime] = None,
) -> TicketSlaPauseLog:
    if tracking.resolved_at is not None:
        raise BadRequestError("SLA tracking has already been stopped for this ticket")
    if tracking.is_paused:
        raise BadRequestError("SLA timer is already paused")
    if not tracking.rule.allow_pause_resume:
        raise BadRequestError("Pause/resume is not allowed for this SLA rule")

    now = now or utc_now()
    refresh_elapsed(tracking, now)

    tracking.is_paused = True
    tracking.pause_started_at = now
    tracking.current_pause_reason = reason

    entry = TicketSlaPauseLog(
        tracking=tracking,
        action="paused",
        reason=reason or "Timer paused",
        action_at=now,
        created_by=_extract_id(user),
    )
    db.session.add(entry)
    return entry


def resume_timer(
    tracking: TicketSlaTracking,
    user: Any = None,
    now: Optional[datetime] = None,
) -> TicketSlaPauseLog:
    if not tracking.is_paused:
        raise BadRequestError("SLA timer is not paused")

    now = now or utc_now()
    paused_minutes = 0
    if tracking.pause_started_at is not None:
        paused_minutes = max(int((now - tracking.pause_started_at).total_seconds() // 60), 0)

    tracking.is_paused = False
    tracking.pause_started_at = None
    tracking.current_pause_reason = None
    tracking.total_paused_minutes = (tracking.total_paused_minutes or 0) + paused_minutes

    entry = TicketSlaPauseLog(
        tracking=tracking,
        action="resumed",
        reason="Timer resumed",
        action_at=now,
        paused_duration_minutes=paused_minutes,
        created_by=_extract_id(user),
    )
    db.session.add(entry)
    refresh_elapsed(tracking, now)
    return entry


def stop_tracking(
    ticket: Ticket,
    final_status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[TicketSlaTracking]:
    tracking = ticket.sla_tracking
    if tracking is None or tracking.resolved_at is not None:
        return tracking

    now = now or utc_now()
    if tracking.is_paused:
        resume_timer(tracking, None, now)
    refresh_elapsed(tracking, now)

    rule = tracking.rule
    tracking.resolved_at = now
    tracking.final_status = final_status or final_sla_status(
        tracking.business_elapsed_minutes,
        rule.min_tat_minutes,
        rule.avg_tat_minutes,
        rule.max_tat_minutes,
    )
    logger.info(
        "SLA tracking stopped for ticket %s: %s after %s business minutes",
        ticket.ticket_number,
        tracking.final_status,
        tracking.business_elapsed_minutes,
    )
    return tracking


def restart_after_reopen(ticket: Ticket, user: Any = None, now: Optional[datetime] = None) -> Optional[TicketSlaTracking]:
    """Continue the existing clock, treating the time spent closed as a pause."""
    tracking = ticket.sla_tracking
    if tracking is None:
        return initialize_tracking(ticket, now)
    if tracking.resolved_at is None:
        return tracking

    now = now or utc_now()
    closed_since = tracking.resolved_at
    db.session.add(TicketSlaPauseLog(
        tracking=tracking, action="paused", reason="Ticket closed", action_at=closed_since,
        created_by=_extract_id(user),
    ))
    closed_minutes = max(int((now - closed_since).total_seconds() // 60), 0)
    db.session.add(TicketSlaPauseLog(
        tracking=tracking, action="resumed", reason="Ticket reopened", action_at=now,
        paused_duration_minutes=closed_minutes, created_by=_extract_id(user),
    ))
    tracking.total_paused_minutes = (tracking.total_paused_minutes or 0) + closed_minutes
    tracking.resolved_at = None
    tracking.final_status = None
    refresh_elapsed(tracking, now)
    return tracking


def sync_with_ticket_status(
    ticket: Ticket,
    previous_status: Optional[str],
    user: Any = None,
    now: Optional[datetime] = None,
) -> None:
    """Pause, resume or stop the ticket's SLA clock after a status change."""
    tracking = ticket.sla_tracking
    if tracking is None or tracking.resolved_at is not None or ticket.status == previous_status:
        return

    if ticket.status in TICKET_FINAL_STATUSES:
        stop_tracking(ticket, now=now)
        return

    entering_pause = ticket.status in SLA_PAUSE_STATUSES and previous_status not in SLA_PAUSE_STATUSES
    leaving_pause = previous_status in SLA_PAUSE_STATUSES and ticket.status not in SLA_PAUSE_STATUSES

    if entering_pause and not tracking.is_paused:
        if tracking.rule.allow_pause_resume:
            pause_timer(tracking, f"Ticket status changed to {ticket.status}", user, now)
        else:
            logger.info("SLA rule for ticket %s does not allow pausing", ticket.ticket_number)
    elif leaving_pause and tracking.is_paused:
        resume_timer(tracking, user, now)


def approaching_breach(threshold_minutes: int = 30, now: Optional[datetime] = None) -> List[TicketSlaTracking]:
    now = now or utc_now()
    horizon = now + timedelta(minutes=threshold_minutes)
    return (
        TicketSlaTracking.query.filter(
            TicketSlaTracking.resolved_at.is_(None),
            TicketSlaTracking.is_paused.is_(False),
            TicketSlaTracking.max_target_time.isnot(None),
            TicketSlaTracking.max_target_time > now,
            TicketSlaTracking.max_target_time <= horizon,
        )
        .order_by(TicketSlaTracking.max_target_time.asc())
        .all()
    )


def dashboard_summary(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    open_rows = TicketSlaTracking.query.filter(TicketSlaTracking.resolved_at.is_(None)).all()

    by_status = {"on_track": 0, "warning": 0, "critical": 0, "breached": 0}
    paused = 0
    for tracking in open_rows:
        refresh_elapsed(tracking, now)
        by_status[tracking.sla_status] = by_status.get(tracking.sla_status, 0) + 1
        if tracking.is_paused:
            paused += 1

    closed_rows = (
        db.session.query(TicketSlaTracking.final_status, db.func.count(TicketSlaTracking.id))
        .filter(TicketSlaTracking.resolved_at.isnot(None))
        .group_by(TicketSlaTracking.final_status)
        .all()
    )
    final_counts = {status: count for status, count in closed_rows if status}
    total_closed = sum(final_counts.values())
    met = total_closed - final_counts.get("breached", 0)

    return {
        "open": {"total": len(open_rows), "paused": paused, **by_status},
        "closed": {"total": total_closed, **final_counts},
        "compliance_rate": round(met / total_closed * 100, 1) if total_closed else None,
        "approaching_breach": [t.ticket_id for t in approaching_breach(now=now)],
    }
