"""natural-key unique indexes and org-scoped row level security

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


NATURAL_KEYS = (
    ("uq_design_jobs_order_item", "design_jobs", "org_id, order_item_id"),
    ("uq_work_orders_order_item", "work_orders", "org_id, order_item_id"),
    ("uq_production_milestone_code", "production_milestones", "work_order_id, milestone_code"),
    ("uq_purchase_orders_po_number", "purchase_orders", "org_id, po_number"),
    ("uq_fulfillment_milestone_code", "fulfillment_milestones", "org_id, order_id, milestone_code"),
)

ORG_SCOPED_TABLES = (
    "orders",
    "order_items",
    "designers",
    "manufacturers",
    "design_jobs",
    "work_orders",
    "production_milestones",
    "materials",
    "material_requirements",
    "purchase_orders",
    "purchase_order_items",
    "fulfillment_milestones",
    "design_job_events",
    "production_events",
    "purchase_order_events",
    "fulfillment_events",
)

# Sessions that never set app.current_org_id (migrations, maintenance) see every row.
_ORG_PREDICATE = (
    "coalesce(current_setting('app.current_org_id', true), '') = '' "
    "OR org_id = current_setting('app.current_org_id', true)::uuid"
)


def upgrade() -> None:
    # Databases created before the models declared these constraints.
    for name, table, columns in NATURAL_KEYS:
        op.execute(f"CREATE UNIQUE INDEX IF NOT EXISTS {name}_idx ON {table} ({columns})")

    if op.get_bind().dialect.name != "postgresql":
        return

    for table in ORG_SCOPED_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"DROP POLICY IF EXISTS {table}_org_isolation ON {table}")
        op.execute(
            f"CREATE POLICY {table}_org_isolation ON {table} "
            f"USING ({_ORG_PREDICATE}) WITH CHECK ({_ORG_PREDICATE})"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for table in ORG_SCOPED_TABLES:
            op.execute(f"DROP POLICY IF EXISTS {table}_org_isolation ON {table}")
            op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")

    for name, _table, _columns in NATURAL_KEYS:
        op.execute(f"DROP INDEX IF EXISTS {name}_idx")
