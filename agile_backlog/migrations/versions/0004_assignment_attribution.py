"""assignment_attribution

Add ``assigned_to`` to epics and stories, and task_type / priority /
points / assigned_to to tasks. Existing task rows are backfilled through
server defaults.

Plain ADD / DROP COLUMN only: a batch table rebuild would drop and
recreate tables with ``PRAGMA foreign_keys=ON`` and cascade-delete children.

Revision ID: 0004_assignment_attribution
Revises: 0003_bugs_sprints
Create Date: 2026-10-18 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0004_assignment_attribution"
down_revision = "0003_bugs_sprints"
branch_labels = None
depends_on = None


def _new_columns():
    # Fresh Column objects per call; a Column can only be attached once
    return {
        "epics": [
            sa.Column("assigned_to", sa.String(length=200), nullable=True),
        ],
        "stories": [
            sa.Column("assigned_to", sa.String(length=200), nullable=True),
        ],
        "tasks": [
            sa.Column("task_type", sa.String(length=30), nullable=False, server_default="development"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("points", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.String(length=200), nullable=True),
        ],
    }


def _existing_columns(bind, table):
    return {col["name"] for col in sa_inspect(bind).get_columns(table)}


def upgrade():
    bind = op.get_bind()
    for table, columns in _new_columns().items():
        present = _existing_columns(bind, table)
        for column in columns:
            if column.name not in present:
                op.add_column(table, column)


def downgrade():
    bind = op.get_bind()
    for table, columns in _new_columns().items():
        present = _existing_columns(bind, table)
        for column in reversed(columns):
            if column.name in present:
                op.drop_column(table, column.name)
