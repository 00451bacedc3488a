"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op

from orderflow.database import Base
import orderflow.models  # noqa: F401

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Tables come straight from the SQLAlchemy models; create_all skips existing ones.
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    # No downgrade - tables managed by SQLAlchemy models
    pass
