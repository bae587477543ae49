"""Initial schema: accounts, mentions, ingestion events, runs, snapshots."""

from __future__ import annotations

from alembic import op

from app.db import Base

# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create every table registered on the model metadata."""
    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
