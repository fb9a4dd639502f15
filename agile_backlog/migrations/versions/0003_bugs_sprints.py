"""bugs_sprints

Create bugs, sprints, sprint_memberships and sprint_snapshots, and seed
the bug status transitions.

Revision ID: 0003_bugs_sprints
Revises: 0002_relationships_notes
Create Date: 2026-10-18 09:20:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0003_bugs_sprints"
down_revision = "0002_relationships_notes"
branch_labels = None
depends_on = None

BUG_TRANSITIONS = (
    ("todo", "in_progress"),
    ("in_progress", "review"),
    ("review", "done"),
    ("review", "in_progress"),
    ("in_progress", "blocked"),
    ("blocked", "in_progress"),
)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "bugs" not in existing_tables:
        op.create_table(
            "bugs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("story_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=False, server_default="major"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="todo"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("points", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.String(length=200), nullable=True),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("last_modified_by", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("points IS NULL OR points >= 0", name="ck_bugs_points_nonnegative"),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="CASCADE",
                name="fk_bugs_project_id_projects",
            ),
            sa.ForeignKeyConstraint(
                ["story_id"], ["stories.id"], ondelete="SET NULL",
                name="fk_bugs_story_id_stories",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_bugs"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_bugs_project_id", "bugs", ["project_id"])
        op.create_index("ix_bugs_story_id", "bugs", ["story_id"])

    if "sprints" not in existing_tables:
        op.create_table(
            "sprints",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("goal", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("capacity_points", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="planning"),
            sa.Column("velocity", sa.Integer(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("end_date > start_date", name="ck_sprints_date_range"),
            sa.CheckConstraint(
                "capacity_points IS NULL OR capacity_points >= 0",
                name="ck_sprints_capacity_nonnegative",
            ),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="CASCADE",
                name="fk_sprints_project_id_projects",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_sprints"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_sprints_project_id", "sprints", ["project_id"])

    if "sprint_memberships" not in existing_tables:
        op.create_table(
            "sprint_memberships",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sprint_id", sa.Integer(), nullable=False),
            sa.Column("story_id", sa.Integer(), nullable=True),
            sa.Column("bug_id", sa.Integer(), nullable=True),
            sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("added_by", sa.String(length=200), nullable=True),
            sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("removed_by", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint(
                "(story_id IS NOT NULL AND bug_id IS NULL) OR (story_id IS NULL AND bug_id IS NOT NULL)",
                name="ck_sprint_memberships_exactly_one_item",
            ),
            sa.ForeignKeyConstraint(
                ["sprint_id"], ["sprints.id"], ondelete="CASCADE",
                name="fk_sprint_memberships_sprint_id_sprints",
            ),
            sa.ForeignKeyConstraint(
                ["story_id"], ["stories.id"], ondelete="CASCADE",
                name="fk_sprint_memberships_story_id_stories",
            ),
            sa.ForeignKeyConstraint(
                ["bug_id"], ["bugs.id"], ondelete="CASCADE",
                name="fk_sprint_memberships_bug_id_bugs",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_sprint_memberships"),
            sa.UniqueConstraint("sprint_id", "story_id", name="uq_sprint_memberships_story"),
            sa.UniqueConstraint("sprint_id", "bug_id", name="uq_sprint_memberships_bug"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_sprint_memberships_sprint_id", "sprint_memberships", ["sprint_id"])
        op.create_index("ix_sprint_memberships_story_id", "sprint_memberships", ["story_id"])
        op.create_index("ix_sprint_memberships_bug_id", "sprint_memberships", ["bug_id"])

    if "sprint_snapshots" not in existing_tables:
        op.create_table(
            "sprint_snapshots",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sprint_id", sa.Integer(), nullable=False),
            sa.Column("snapshot_date", sa.Date(), nullable=False),
            sa.Column("remaining_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("added_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("removed_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["sprint_id"], ["sprints.id"], ondelete="CASCADE",
                name="fk_sprint_snapshots_sprint_id_sprints",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_sprint_snapshots"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_sprint_snapshots_sprint_id", "sprint_snapshots", ["sprint_id"])

    transitions = sa.table(
        "status_transitions",
        sa.column("entity_type", sa.String),
        sa.column("from_status", sa.String),
        sa.column("to_status", sa.String),
    )
    already_seeded = bind.execute(
        sa.select(sa.func.count()).select_from(transitions).where(transitions.c.entity_type == "bug")
    ).scalar()
    if not already_seeded:
        op.bulk_insert(
            transitions,
            [{"entity_type": "bug", "from_status": old, "to_status": new} for old, new in BUG_TRANSITIONS],
        )


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    op.execute("DELETE FROM status_transitions WHERE entity_type = 'bug'")
    for table in ("sprint_snapshots", "sprint_memberships", "sprints", "bugs"):
        if table in existing_tables:
            op.drop_table(table)
