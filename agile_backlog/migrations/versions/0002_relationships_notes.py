"""relationships_notes

Create the generalised relationships table and notes.

Revision ID: 0002_relationships_notes
Revises: 0001_core_hierarchy
Create Date: 2026-10-18 09:10:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0002_relationships_notes"
down_revision = "0001_core_hierarchy"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "relationships" not in existing_tables:
        op.create_table(
            "relationships",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("source_type", sa.String(length=20), nullable=False),
            sa.Column("source_id", sa.Integer(), nullable=False),
            sa.Column("target_type", sa.String(length=20), nullable=False),
            sa.Column("target_id", sa.Integer(), nullable=False),
            sa.Column("relationship_type", sa.String(length=20), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="CASCADE",
                name="fk_relationships_project_id_projects",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_relationships"),
            sa.UniqueConstraint(
                "source_type", "source_id", "target_type", "target_id", "relationship_type",
                name="uq_relationships_edge",
            ),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_relationships_project_id", "relationships", ["project_id"])
        op.create_index("ix_relationships_source", "relationships", ["source_type", "source_id"])
        op.create_index("ix_relationships_target", "relationships", ["target_type", "target_id"])

    if "notes" not in existing_tables:
        op.create_table(
            "notes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("parent_type", sa.String(length=20), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("author_name", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="CASCADE",
                name="fk_notes_project_id_projects",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_notes"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_notes_project_id", "notes", ["project_id"])
        op.create_index("ix_notes_parent", "notes", ["parent_type", "parent_id"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "notes" in existing_tables:
        op.drop_table("notes")
    if "relationships" in existing_tables:
        op.drop_table("relationships")
