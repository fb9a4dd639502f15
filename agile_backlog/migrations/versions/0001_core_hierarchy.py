"""core_hierarchy

Create projects, security_logs, epics, stories, tasks, dependencies and
the status_transitions allow-list (seeded for epic / story / task).

Revision ID: 0001_core_hierarchy
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001_core_hierarchy"
down_revision = None
branch_labels = None
depends_on = None

TRANSITIONS = (
    ("todo", "in_progress"),
    ("in_progress", "review"),
    ("review", "done"),
    ("review", "in_progress"),
    ("in_progress", "blocked"),
    ("blocked", "in_progress"),
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("identifier", sa.String(length=200), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
            sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_projects"),
            sa.UniqueConstraint("identifier", name="uq_projects_identifier"),
            sqlite_autoincrement=True,
        )

    if "security_logs" not in existing_tables:
        op.create_table(
            "security_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=40), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("attempted_path", sa.String(length=500), nullable=True),
            sa.Column("entity_type", sa.String(length=20), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="SET NULL",
                name="fk_security_logs_project_id_projects",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_security_logs"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_security_logs_event_created", "security_logs", ["event_type", "created_at"])
        op.create_index("ix_security_logs_project_created", "security_logs", ["project_id", "created_at"])

    if "epics" not in existing_tables:
        op.create_table(
            "epics",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="todo"),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("last_modified_by", sa.String(length=200), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="CASCADE",
                name="fk_epics_project_id_projects",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_epics"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_epics_project_id", "epics", ["project_id"])

    if "stories" not in existing_tables:
        op.create_table(
            "stories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("epic_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("acceptance_criteria", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="todo"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("points", sa.Integer(), nullable=True),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("last_modified_by", sa.String(length=200), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("points IS NULL OR points >= 0", name="ck_stories_points_nonnegative"),
            sa.ForeignKeyConstraint(
                ["project_id"], ["projects.id"], ondelete="CASCADE",
                name="fk_stories_project_id_projects",
            ),
            sa.ForeignKeyConstraint(
                ["epic_id"], ["epics.id"], ondelete="SET NULL",
                name="fk_stories_epic_id_epics",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_stories"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_stories_project_id", "stories", ["project_id"])
        op.create_index("ix_stories_epic_id", "stories", ["epic_id"])
        op.create_index("ix_stories_project_status", "stories", ["project_id", "status"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("story_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="todo"),
            sa.Column("agent_identifier", sa.String(length=200), nullable=True),
            sa.Column("last_modified_by", sa.String(length=200), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(
                ["story_id"], ["stories.id"], ondelete="CASCADE",
                name="fk_tasks_story_id_stories",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_tasks"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_tasks_story_id", "tasks", ["story_id"])

    if "dependencies" not in existing_tables:
        op.create_table(
            "dependencies",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("story_id", sa.Integer(), nullable=False),
            sa.Column("depends_on_story_id", sa.Integer(), nullable=False),
            sa.Column("dependency_type", sa.String(length=20), nullable=False, server_default="blocks"),
            *_timestamps(),
            sa.CheckConstraint("story_id <> depends_on_story_id", name="ck_dependencies_no_self_loop"),
            sa.ForeignKeyConstraint(
                ["story_id"], ["stories.id"], ondelete="CASCADE",
                name="fk_dependencies_story_id_stories",
            ),
            sa.ForeignKeyConstraint(
                ["depends_on_story_id"], ["stories.id"], ondelete="CASCADE",
                name="fk_dependencies_depends_on_story_id_stories",
            ),
            sa.PrimaryKeyConstraint("id", name="pk_dependencies"),
            sa.UniqueConstraint("story_id", "depends_on_story_id", name="uq_dependencies_pair"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_dependencies_story_id", "dependencies", ["story_id"])
        op.create_index("ix_dependencies_depends_on_story_id", "dependencies", ["depends_on_story_id"])

    if "status_transitions" not in existing_tables:
        transitions = op.create_table(
            "status_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=20), nullable=False),
            sa.Column("from_status", sa.String(length=30), nullable=False),
            sa.Column("to_status", sa.String(length=30), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_status_transitions"),
            sa.UniqueConstraint(
                "entity_type", "from_status", "to_status",
                name="uq_status_transitions_triple",
            ),
        )
        op.bulk_insert(
            transitions,
            [
                {"entity_type": entity, "from_status": old, "to_status": new}
                for entity in ("epic", "story", "task")
                for old, new in TRANSITIONS
            ],
        )


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # Children first so FK enforcement never sees a dangling reference
    for table in ("status_transitions", "dependencies", "tasks", "stories", "epics", "security_logs", "projects"):
        if table in existing_tables:
            op.drop_table(table)
