"""create standby_assignments table

Revision ID: c3e5a7b9d1f3
Revises: b2d4f6a8c0e2
Create Date: 2025-11-07 11:05:51.902316

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c3e5a7b9d1f3"
down_revision = "b2d4f6a8c0e2"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if not inspector.has_table("standby_assignments"):
        op.create_table(
            "standby_assignments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("standby_asset_id", sa.Integer(), sa.ForeignKey("assets.id"), nullable=False),
            sa.Column("original_asset_id", sa.Integer(), sa.ForeignKey("assets.id"), nullable=True),
            sa.Column("reason", sa.String(length=500), nullable=False),
            sa.Column("reason_category", sa.String(length=50), nullable=False),
            sa.Column("assigned_date", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("expected_return_date", sa.DateTime(), nullable=True),
            sa.Column("actual_return_date", sa.DateTime(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("return_notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("returned_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("returned_at", sa.DateTime(), nullable=True),
            sa.Column("made_permanent_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("made_permanent_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.CheckConstraint("status IN ('active', 'returned', 'permanent')", name="ck_standby_status"),
            sa.CheckConstraint(
                "reason_category IN ('repair', 'maintenance', 'lost', 'stolen', 'other')",
                name="ck_standby_reason_category",
            ),
            sa.CheckConstraint(
                "actual_return_date IS NULL OR actual_return_date >= assigned_date",
                name="ck_standby_return_date",
            ),
        )
        op.create_index("ix_standby_assignments_user_id", "standby_assignments", ["user_id"])
        op.create_index("ix_standby_assignments_standby_asset_id", "standby_assignments", ["standby_asset_id"])
        op.create_index("ix_standby_assignments_original_asset_id", "standby_assignments", ["original_asset_id"])
        op.create_index("ix_standby_assignments_status", "standby_assignments", ["status"])
        op.create_index("ix_standby_assignments_assigned_date", "standby_assignments", ["assigned_date"])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if inspector.has_table("standby_assignments"):
        op.drop_table("standby_assignments")
