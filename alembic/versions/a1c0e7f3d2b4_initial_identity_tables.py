"""Create identity, access rule, volume and share tables.

Revision ID: a1c0e7f3d2b4
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op  # type: ignore[attr-defined]
from sqlmodel import SQLModel

from explorer.schemas.access import AccessRule, Share, ShareRecipient, UserVolume
from explorer.schemas.auth import AuthLock, AuthSession
from explorer.schemas.users import AuthMethod, User, UserRole

revision = "a1c0e7f3d2b4"
down_revision = None
branch_labels = None
depends_on = None

TABLES = [
    User.__table__,  # type: ignore[attr-defined]
    UserRole.__table__,  # type: ignore[attr-defined]
    AuthMethod.__table__,  # type: ignore[attr-defined]
    AuthLock.__table__,  # type: ignore[attr-defined]
    AuthSession.__table__,  # type: ignore[attr-defined]
    AccessRule.__table__,  # type: ignore[attr-defined]
    UserVolume.__table__,  # type: ignore[attr-defined]
    Share.__table__,  # type: ignore[attr-defined]
    ShareRecipient.__table__,  # type: ignore[attr-defined]
]


def upgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.create_all(bind=bind, tables=TABLES)


def downgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.drop_all(bind=bind, tables=list(reversed(TABLES)))
