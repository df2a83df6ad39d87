"""permission catalogue, role templates and user overrides

Revision ID: b2d4f6a8c0e2
Revises: a1c3e5f7b9d1
Create Date: 2025-11-05 14:40:02.553917

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "b2d4f6a8c0e2"
down_revision = "a1c3e5f7b9d1"
branch_labels = None
depends_on = None

NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("permission_categories"):
        op.create_table(
            "permission_categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("category_key", sa.String(length=100), nullable=False),
            sa.Column("category_name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("category_key", name="uq_permission_categories_key"),
        )

    if not inspector.has_table("permissions"):
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("permission_key", sa.String(length=100), nullable=False),
            sa.Column("permission_name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column(
                "category_id",
                sa.Integer(),
                sa.ForeignKey("permission_categories.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("resource_type", sa.String(length=100), nullable=True),
            sa.Column("action_type", sa.String(length=50), nullable=True),
            sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("permission_key", name="uq_permissions_key"),
        )
        op.create_index("ix_permissions_permission_key", "permissions", ["permission_key"])
        op.create_index("ix_permissions_category_id", "permissions", ["category_id"])

    if not inspector.has_table("role_templates"):
        op.create_table(
            "role_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("role_name", sa.String(length=50), nullable=False),
            sa.Column("display_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("hierarchy_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_system_role", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("role_name", name="uq_role_templates_role_name"),
        )

    if not inspector.has_table("role_permissions"):
        op.create_table(
            "role_permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "role_template_id", sa.Integer(), sa.ForeignKey("role_templates.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("granted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("granted_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.UniqueConstraint("role_template_id", "permission_id", name="uq_role_permission"),
        )
        op.create_index("ix_role_permissions_role_template_id", "role_permissions", ["role_template_id"])
        op.create_index("ix_role_permissions_permission_id", "role_permissions", ["permission_id"])

    if not inspector.has_table("user_custom_permissions"):
        op.create_table(
            "user_custom_permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("is_granted", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("granted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("granted_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.UniqueConstraint("user_id", "permission_id", name="uq_user_custom_permission"),
        )
        op.create_index("ix_user_custom_permissions_user_id", "user_custom_permissions", ["user_id"])
        op.create_index("ix_user_custom_permissions_permission_id", "user_custom_permissions", ["permission_id"])

    if not inspector.has_table("permission_audit_logs"):
        op.create_table(
            "permission_audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("action_type", sa.String(length=20), nullable=False),
            sa.Column("target_type", sa.String(length=20), nullable=False),
            sa.Column("target_id", sa.String(length=100), nullable=False),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="SET NULL"), nullable=True),
            sa.Column("old_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("performed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("performed_at", sa.DateTime(), nullable=False, server_default=NOW),
            sa.Column("ip_address", sa.String(length=50), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("reason", sa.String(length=500), nullable=True),
        )
        op.create_index("ix_permission_audit_logs_action_type", "permission_audit_logs", ["action_type"])
        op.create_index("ix_permission_audit_logs_target_id", "permission_audit_logs", ["target_id"])
        op.create_index("ix_permission_audit_logs_performed_by", "permission_audit_logs", ["performed_by"])
        op.create_index("ix_permission_audit_logs_performed_at", "permission_audit_logs", ["performed_at"])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table in (
        "permission_audit_logs",
        "user_custom_permissions",
        "role_permissions",
        "role_templates",
        "permissions",
        "permission_categories",
    ):
        if inspector.has_table(table):
            op.drop_table(table)
