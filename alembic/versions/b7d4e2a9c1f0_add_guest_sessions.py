"""Add guest_sessions for anonymous share visits.

Revision ID: b7d4e2a9c1f0
Revises: a1c0e7f3d2b4
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op  # type: ignore[attr-defined]
from sqlmodel import SQLModel

from explorer.schemas.access import GuestSession

revision = "b7d4e2a9c1f0"
down_revision = "a1c0e7f3d2b4"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.create_all(bind=bind, tables=[GuestSession.__table__])  # type: ignore[attr-defined]


def downgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.drop_all(bind=bind, tables=[GuestSession.__table__])  # type: ignore[attr-defined]
