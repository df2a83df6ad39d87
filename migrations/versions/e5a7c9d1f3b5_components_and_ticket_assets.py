"""asset component hierarchy and ticket asset links

Revision ID: e5a7c9d1f3b5
Revises: d4f6b8c0e2a4
Create Date: 2025-11-18 09:42:16.503217

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "e5a7c9d1f3b5"
down_revision = "d4f6b8c0e2a4"
branch_labels = None
depends_on = None

ASSET_COLUMNS = ["parent_asset_id", "installation_date", "removal_date", "installation_notes", "installed_by"]
MOVEMENT_COLUMNS = ["parent_asset_id", "parent_asset_tag"]


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    asset_columns = {col["name"] for col in inspector.get_columns("assets")}
    with op.batch_alter_table("assets", schema=None) as batch_op:
        if "parent_asset_id" not in asset_columns:
            batch_op.add_column(sa.Column("parent_asset_id", sa.Integer(), nullable=True))
            batch_op.create_foreign_key("fk_assets_parent_asset_id", "assets", ["parent_asset_id"], ["id"])
            batch_op.create_index("ix_assets_parent_asset_id", ["parent_asset_id"])
        if "installation_date" not in asset_columns:
            batch_op.add_column(sa.Column("installation_date", sa.DateTime(), nullable=True))
        if "removal_date" not in asset_columns:
            batch_op.add_column(sa.Column("removal_date", sa.DateTime(), nullable=True))
        if "installation_notes" not in asset_columns:
            batch_op.add_column(sa.Column("installation_notes", sa.Text(), nullable=True))
        if "installed_by" not in asset_columns:
            batch_op.add_column(sa.Column("installed_by", sa.Integer(), nullable=True))
            batch_op.create_foreign_key("fk_assets_installed_by", "users", ["installed_by"], ["id"])

    movement_columns = {col["name"] for col in inspector.get_columns("asset_movements")}
    with op.batch_alter_table("asset_movements", schema=None) as batch_op:
        if "parent_asset_id" not in movement_columns:
            batch_op.add_column(sa.Column("parent_asset_id", sa.Integer(), nullable=True))
            batch_op.create_foreign_key(
                "fk_asset_movements_parent_asset_id", "assets", ["parent_asset_id"], ["id"], ondelete="SET NULL"
            )
        if "parent_asset_tag" not in movement_columns:
            batch_op.add_column(sa.Column("parent_asset_tag", sa.String(length=50), nullable=True))

    if not inspector.has_table("ticket_assets"):
        op.create_table(
            "ticket_assets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("asset_id", sa.Integer(), sa.ForeignKey("assets.id"), nullable=False),
            sa.Column("added_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("added_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.UniqueConstraint("ticket_id", "asset_id", name="uq_ticket_assets_ticket_asset"),
        )
        op.create_index("ix_ticket_assets_ticket_id", "ticket_assets", ["ticket_id"])
        op.create_index("ix_ticket_assets_asset_id", "ticket_assets", ["asset_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if inspector.has_table("ticket_assets"):
        op.drop_table("ticket_assets")

    movement_columns = {col["name"] for col in inspector.get_columns("asset_movements")}
    with op.batch_alter_table("asset_movements", schema=None) as batch_op:
        if "parent_asset_id" in movement_columns:
            batch_op.drop_constraint("fk_asset_movements_parent_asset_id", type_="foreignkey")
        for column in reversed(MOVEMENT_COLUMNS):
            if column in movement_columns:
                batch_op.drop_column(column)

    asset_columns = {col["name"] for col in inspector.get_columns("assets")}
    with op.batch_alter_table("assets", schema=None) as batch_op:
        if "installed_by" in asset_columns:
            batch_op.drop_constraint("fk_assets_installed_by", type_="foreignkey")
        if "parent_asset_id" in asset_columns:
            batch_op.drop_index("ix_assets_parent_asset_id")
            batch_op.drop_constraint("fk_assets_parent_asset_id", type_="foreignkey")
        for column in reversed(ASSET_COLUMNS):
            if column in asset_columns:
                batch_op.drop_column(column)
