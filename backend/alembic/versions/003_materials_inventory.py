"""materials inventory: on-hand and on-order quantities per material

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None


_ORG_PREDICATE = (
    "coalesce(current_setting('app.current_org_id', true), '') = '' "
    "OR org_id = current_setting('app.current_org_id', true)::uuid"
)


def upgrade() -> None:
    bind = op.get_bind()
    # 001 builds from the current models, so fresh databases already have the table.
    if "materials_inventory" not in sa.inspect(bind).get_table_names():
        op.create_table(
            "materials_inventory",
            sa.Column("id", sa.Uuid(), primary_key=True),
            sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
            sa.Column("material_id", sa.Uuid(), sa.ForeignKey("materials.id"), nullable=False),
            sa.Column("quantity_on_hand", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("quantity_on_order", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("org_id", "material_id", name="uq_materials_inventory_material"),
        )
        op.create_index("ix_materials_inventory_org_id", "materials_inventory", ["org_id"])

    if bind.dialect.name != "postgresql":
        return

    op.execute("ALTER TABLE materials_inventory ENABLE ROW LEVEL SECURITY")
    op.execute("DROP POLICY IF EXISTS materials_inventory_org_isolation ON materials_inventory")
    op.execute(
        "CREATE POLICY materials_inventory_org_isolation ON materials_inventory "
        f"USING ({_ORG_PREDICATE}) WITH CHECK ({_ORG_PREDICATE})"
    )


def downgrade() -> None:
    op.drop_table("materials_inventory")
