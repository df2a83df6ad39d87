"""tickets, close requests, reopen history and SLA tracking

Revision ID: d4f6b8c0e2a4
Revises: c3e5a7b9d1f3
Create Date: 2025-11-12 16:27:09.774051

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "d4f6b8c0e2a4"
down_revision = "c3e5a7b9d1f3"
branch_labels = None
depends_on = None

NOW = sa.text("CURRENT_TIMESTAMP")


def _create_ticket_tables(inspector):
    if not inspector.has_table("tickets"):
        op.create_table(
            "tickets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_number", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("ticket_channel", sa.String(length=20), nullable=False, server_default="portal"),
            sa.Column("ticket_type", sa.String(length=30), nullable=False, server_default="incident"),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("created_by_coordinator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("assigned_to_engineer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("due_date", sa.DateTime(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("reopen_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("ticket_number", name="uq_tickets_ticket_number"),
        )
        for column in (
            "ticket_number",
            "status",
            "priority",
            "created_by_user_id",
            "assigned_to_engineer_id",
            "department_id",
            "location_id",
            "created_at",
        ):
            op.create_index(f"ix_tickets_{column}", "tickets", [column])

    if not inspector.has_table("ticket_comments"):
        op.create_table(
            "ticket_comments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("comment_text", sa.Text(), nullable=False),
            sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
        )
        op.create_index("ix_ticket_comments_ticket_id", "ticket_comments", ["ticket_id"])

    if not inspector.has_table("ticket_close_requests"):
        op.create_table(
            "ticket_close_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("requested_by_engineer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("reviewed_by_coordinator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("request_notes", sa.Text(), nullable=False),
            sa.Column("request_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("review_notes", sa.Text(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.CheckConstraint(
                "request_status IN ('pending', 'approved', 'rejected')", name="ck_close_request_status"
            ),
        )
        op.create_index("ix_ticket_close_requests_ticket_id", "ticket_close_requests", ["ticket_id"])
        op.create_index(
            "ix_ticket_close_requests_requested_by_engineer_id", "ticket_close_requests", ["requested_by_engineer_id"]
        )
        op.create_index("ix_ticket_close_requests_request_status", "ticket_close_requests", ["request_status"])

    if not inspector.has_table("ticket_reopen_config"):
        op.create_table(
            "ticket_reopen_config",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reopen_window_days", sa.Integer(), nullable=False, server_default="7"),
            sa.Column("max_reopen_count", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("require_reopen_reason", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("updated_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
        )

    if not inspector.has_table("ticket_reopen_history"):
        op.create_table(
            "ticket_reopen_history",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("reopened_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("reopen_reason", sa.String(length=1000), nullable=True),
            sa.Column("previous_status", sa.String(length=20), nullable=True),
            sa.Column("previous_closed_at", sa.DateTime(), nullable=True),
            sa.Column("reopen_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("reopened_at", sa.DateTime(), nullable=False, server_default=NOW),
        )
        op.create_index("ix_ticket_reopen_history_ticket_id", "ticket_reopen_history", ["ticket_id"])


def _create_sla_tables(inspector):
    if not inspector.has_table("business_hours_schedules"):
        op.create_table(
            "business_hours_schedules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("schedule_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("timezone", sa.String(length=50), nullable=False, server_default="UTC"),
            sa.Column("is_24x7", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("schedule_name", name="uq_business_hours_schedules_name"),
        )

    if not inspector.has_table("business_hours_details"):
        op.create_table(
            "business_hours_details",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "schedule_id",
                sa.Integer(),
                sa.ForeignKey("business_hours_schedules.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("day_of_week", sa.Integer(), nullable=False),
            sa.Column("is_working_day", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("start_time", sa.Time(), nullable=True),
            sa.Column("end_time", sa.Time(), nullable=True),
            sa.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_business_hours_day"),
            sa.UniqueConstraint("schedule_id", "day_of_week", name="uq_business_hours_day"),
        )
        op.create_index("ix_business_hours_details_schedule_id", "business_hours_details", ["schedule_id"])

    if not inspector.has_table("break_hours"):
        op.create_table(
            "break_hours",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "schedule_id",
                sa.Integer(),
                sa.ForeignKey("business_hours_schedules.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("break_name", sa.String(length=100), nullable=False, server_default="Break"),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("applies_to_days", sa.String(length=20), nullable=True),
        )
        op.create_index("ix_break_hours_schedule_id", "break_hours", ["schedule_id"])

    if not inspector.has_table("holiday_calendars"):
        op.create_table(
            "holiday_calendars",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("calendar_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("calendar_name", name="uq_holiday_calendars_name"),
        )

    if not inspector.has_table("holiday_dates"):
        op.create_table(
            "holiday_dates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "calendar_id", sa.Integer(), sa.ForeignKey("holiday_calendars.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("holiday_date", sa.Date(), nullable=False),
            sa.Column("holiday_name", sa.String(length=200), nullable=False),
            sa.Column("is_full_day", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("start_time", sa.Time(), nullable=True),
            sa.Column("end_time", sa.Time(), nullable=True),
        )
        op.create_index("ix_holiday_dates_calendar_id", "holiday_dates", ["calendar_id"])

    if not inspector.has_table("sla_rules"):
        op.create_table(
            "sla_rules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("rule_name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("priority_order", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("applicable_priority", sa.String(length=200), nullable=True),
            sa.Column("min_tat_minutes", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("avg_tat_minutes", sa.Integer(), nullable=False, server_default="240"),
            sa.Column("max_tat_minutes", sa.Integer(), nullable=False, server_default="480"),
            sa.Column(
                "business_hours_schedule_id", sa.Integer(), sa.ForeignKey("business_hours_schedules.id"), nullable=True
            ),
            sa.Column("holiday_calendar_id", sa.Integer(), sa.ForeignKey("holiday_calendars.id"), nullable=True),
            sa.Column("allow_pause_resume", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("rule_name", name="uq_sla_rules_rule_name"),
        )
        op.create_index("ix_sla_rules_priority_order", "sla_rules", ["priority_order"])

    if not inspector.has_table("ticket_sla_tracking"):
        op.create_table(
            "ticket_sla_tracking",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("sla_rule_id", sa.Integer(), sa.ForeignKey("sla_rules.id"), nullable=False),
            sa.Column("sla_start_time", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("min_target_time", sa.DateTime(), nullable=True),
            sa.Column("avg_target_time", sa.DateTime(), nullable=True),
            sa.Column("max_target_time", sa.DateTime(), nullable=True),
            sa.Column("business_elapsed_minutes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_paused_minutes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("pause_started_at", sa.DateTime(), nullable=True),
            sa.Column("current_pause_reason", sa.String(length=500), nullable=True),
            sa.Column("sla_status", sa.String(length=20), nullable=False, server_default="on_track"),
            sa.Column("final_status", sa.String(length=20), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.Column("last_calculated_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("ticket_id", name="uq_ticket_sla_tracking_ticket_id"),
        )
        op.create_index("ix_ticket_sla_tracking_ticket_id", "ticket_sla_tracking", ["ticket_id"])
        op.create_index("ix_ticket_sla_tracking_sla_status", "ticket_sla_tracking", ["sla_status"])

    if not inspector.has_table("ticket_sla_pause_log"):
        op.create_table(
            "ticket_sla_pause_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "tracking_id", sa.Integer(), sa.ForeignKey("ticket_sla_tracking.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("action_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("paused_duration_minutes", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.CheckConstraint("action IN ('paused', 'resumed')", name="ck_sla_pause_action"),
        )
        op.create_index("ix_ticket_sla_pause_log_tracking_id", "ticket_sla_pause_log", ["tracking_id"])


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    _create_ticket_tables(inspector)
    _create_sla_tables(inspector)


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table in (
        "ticket_sla_pause_log",
        "ticket_sla_tracking",
        "sla_rules",
        "holiday_dates",
        "holiday_calendars",
        "break_hours",
        "business_hours_details",
        "business_hours_schedules",
        "ticket_reopen_history",
        "ticket_reopen_config",
        "ticket_close_requests",
        "ticket_comments",
        "tickets",
    ):
        if inspector.has_table(table):
            op.drop_table(table)
