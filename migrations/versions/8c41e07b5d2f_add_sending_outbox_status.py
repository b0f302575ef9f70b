"""add sending outbox status

Revision ID: 8c41e07b5d2f
Revises: 3b7f2c9d1a40
Create Date: 2026-10-19 10:02:37.551904

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8c41e07b5d2f'
down_revision: Union[str, Sequence[str], None] = '3b7f2c9d1a40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    """
    Adds 'SENDING' to outboxstatus: a claimed row leaves 'QUEUED' before its send starts.
    Note: 'ALTER TYPE ... ADD VALUE' cannot run inside a transaction block.
    """
    bind = op.get_bind()

    if bind.dialect.name == 'postgresql':
        with op.get_context().autocommit_block():
            op.execute(
                "ALTER TYPE outboxstatus ADD VALUE IF NOT EXISTS 'SENDING'")
    else:
        # SQLite stores the enum as VARCHAR without a CHECK constraint.
        pass


def downgrade():
    """
    PostgreSQL cannot drop an enum value: recreate the type without 'SENDING'.
    In-flight rows go back to 'QUEUED'.
    """
    bind = op.get_bind()

    if bind.dialect.name == 'postgresql':
        op.execute("ALTER TYPE outboxstatus RENAME TO outboxstatus_old")
        op.execute("CREATE TYPE outboxstatus AS ENUM('QUEUED', 'SENT', 'FAILED')")
        op.execute(
            "UPDATE notificationoutbox SET status = 'QUEUED' WHERE status::text = 'SENDING'")
        op.execute((
            "ALTER TABLE notificationoutbox "
            "ALTER COLUMN status TYPE outboxstatus "
            "USING status::text::outboxstatus"
        ))
        op.execute("DROP TYPE outboxstatus_old")
    else:
        pass
