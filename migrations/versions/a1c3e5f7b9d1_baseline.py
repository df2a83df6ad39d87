"""baseline: organisation, users, assets and activity

Revision ID: a1c3e5f7b9d1
Revises:
Create Date: 2025-11-03 09:12:40.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c3e5f7b9d1"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("departments"):
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.UniqueConstraint("name", name="uq_departments_name"),
        )

    if not inspector.has_table("locations"):
        op.create_table(
            "locations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("address", sa.String(length=500), nullable=False),
            sa.Column("building", sa.String(length=100), nullable=True),
            sa.Column("floor", sa.String(length=50), nullable=True),
            sa.Column("city_name", sa.String(length=100), nullable=True),
            sa.Column("state_name", sa.String(length=100), nullable=True),
            sa.Column("pincode", sa.String(length=10), nullable=True),
            sa.Column("contact_person", sa.String(length=100), nullable=True),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column("contact_phone", sa.String(length=20), nullable=True),
            sa.Column("parent_location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )
        op.create_index("ix_locations_parent_location_id", "locations", ["parent_location_id"])

    if not inspector.has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("employee_id", sa.String(length=50), nullable=True),
            sa.Column("phone", sa.String(length=20), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="employee"),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_vip", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("has_custom_permissions", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("locked_until", sa.DateTime(), nullable=True),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("email", name="uq_users_email"),
            sa.UniqueConstraint("employee_id", name="uq_users_employee_id"),
        )
        op.create_index("ix_users_email", "users", ["email"])
        op.create_index("ix_users_role", "users", ["role"])
        op.create_index("ix_users_department_id", "users", ["department_id"])
        op.create_index("ix_users_location_id", "users", ["location_id"])

    if not inspector.has_table("assets"):
        op.create_table(
            "assets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("asset_tag", sa.String(length=50), nullable=False),
            sa.Column("serial_number", sa.String(length=100), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("asset_type", sa.String(length=20), nullable=False, server_default="asset"),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="available"),
            sa.Column("importance", sa.String(length=20), nullable=True, server_default="medium"),
            sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("is_standby_asset", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("standby_available", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("asset_tag", name="uq_assets_asset_tag"),
        )
        op.create_index("ix_assets_asset_tag", "assets", ["asset_tag"])
        op.create_index("ix_assets_status", "assets", ["status"])
        op.create_index("ix_assets_assigned_to", "assets", ["assigned_to"])
        op.create_index("ix_assets_location_id", "assets", ["location_id"])

    if not inspector.has_table("asset_movements"):
        op.create_table(
            "asset_movements",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("asset_id", sa.Integer(), sa.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("asset_tag", sa.String(length=50), nullable=True),
            sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("previous_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("previous_location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("movement_type", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("performed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("movement_date", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_asset_movements_asset_id", "asset_movements", ["asset_id"])
        op.create_index("ix_asset_movements_assigned_to", "asset_movements", ["assigned_to"])
        op.create_index("ix_asset_movements_movement_date", "asset_movements", ["movement_date"])

    if not inspector.has_table("activity_logs"):
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("action", sa.String(length=120), nullable=False),
            sa.Column("target_type", sa.String(length=120), nullable=True),
            sa.Column("target_id", sa.Integer(), nullable=True),
            sa.Column("summary", sa.String(length=255), nullable=True),
            sa.Column("meta", sa.JSON(), nullable=True),
        )
        op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])
        op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table in ("activity_logs", "asset_movements", "assets", "users", "locations", "departments"):
        if inspector.has_table(table):
            op.drop_table(table)
