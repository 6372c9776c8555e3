"""initial schema: org structure, access control, routing rules, orders, history, outbox

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op

from helpdesk.database import Base
import helpdesk.models  # noqa: F401

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Baseline is built straight from the models; later revisions are incremental.
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
