"""workflow engine schema: users, project members, templates, instances, history

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Fresh databases are created from the models and stamped at head by the
application; this revision builds the same schema for databases managed
purely through Alembic.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    if not _has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Uuid(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("display_name", sa.String(200), nullable=False),
            sa.Column("role", sa.String(20), server_default="member"),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    op.create_table(
        "project_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "user_id", "role", name="uq_project_members_role"),
    )
    op.create_index("ix_project_members_project_role", "project_members", ["project_id", "role"])

    op.create_table(
        "workflow_templates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("entity_type", "name", name="uq_workflow_templates_name"),
    )
    op.create_index(
        "ix_workflow_templates_entity_type", "workflow_templates", ["entity_type"]
    )

    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Uuid(),
            sa.ForeignKey("workflow_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("position", sa.Integer(), server_default="0"),
        sa.Column("is_initial", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_terminal", sa.Boolean(), server_default=sa.false()),
        sa.Column("default_assignee_role", sa.String(50), nullable=True),
        sa.Column(
            "default_assignee_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("due_hours", sa.Integer(), nullable=True),
    )
    op.create_index("ix_workflow_stages_template_id", "workflow_stages", ["template_id"])

    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Uuid(),
            sa.ForeignKey("workflow_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "from_stage_id",
            sa.Uuid(),
            sa.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_stage_id",
            sa.Uuid(),
            sa.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("action_name", sa.String(50), nullable=False),
        sa.Column("label", sa.String(100), nullable=True),
        sa.Column("is_automatic", sa.Boolean(), server_default=sa.false()),
        sa.Column("guard_expr", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "template_id", "from_stage_id", "action_name", name="uq_workflow_transitions_action"
        ),
    )
    op.create_index("ix_workflow_transitions_from", "workflow_transitions", ["from_stage_id"])

    op.create_table(
        "workflow_instances",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "template_id", sa.Uuid(), sa.ForeignKey("workflow_templates.id"), nullable=False
        ),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column(
            "current_stage_id", sa.Uuid(), sa.ForeignKey("workflow_stages.id"), nullable=True
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("assignee_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("context", _JSON, nullable=True),
        sa.Column("started_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_workflow_instances_project_id", "workflow_instances", ["project_id"])
    op.create_index(
        "ix_workflow_instances_entity", "workflow_instances", ["entity_type", "entity_id"]
    )
    op.create_index(
        "ix_workflow_instances_assignee", "workflow_instances", ["status", "assignee_id"]
    )
    # One active instance per entity
    op.create_index(
        "uq_workflow_instances_active_entity",
        "workflow_instances",
        ["entity_type", "entity_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "workflow_instance_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "instance_id",
            sa.Uuid(),
            sa.ForeignKey("workflow_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "from_stage_id", sa.Uuid(), sa.ForeignKey("workflow_stages.id"), nullable=True
        ),
        sa.Column("to_stage_id", sa.Uuid(), sa.ForeignKey("workflow_stages.id"), nullable=True),
        sa.Column("assignee_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("instance_id", "version", name="uq_workflow_history_version"),
    )
    op.create_index(
        "ix_workflow_history_instance", "workflow_instance_history", ["instance_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("workflow_instance_history")
    op.drop_index("uq_workflow_instances_active_entity", table_name="workflow_instances")
    op.drop_table("workflow_instances")
    op.drop_table("workflow_transitions")
    op.drop_table("workflow_stages")
    op.drop_table("workflow_templates")
    op.drop_table("project_members")
    op.drop_table("users")
