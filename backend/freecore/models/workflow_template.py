"""Workflow template definitions: templates, stages and transitions.

These rows are configuration. The engine never mutates them; it loads them
into the immutable graphs of ``freecore.services.template_registry``.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freecore.models.base import Base, TimestampMixin, UUIDMixin


class WorkflowTemplate(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # submittal / rfi / drawing / punch_item / change_order / ...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    stages = relationship(
        "WorkflowStage",
        lazy="selectin",
        order_by="WorkflowStage.position",
        cascade="all, delete-orphan",
    )
    transitions = relationship(
        "WorkflowTransition", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("entity_type", "name", name="uq_workflow_templates_name"),)


class WorkflowStage(Base, UUIDMixin):
    __tablename__ = "workflow_stages"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    is_initial: Mapped[bool] = mapped_column(Boolean, default=False)
    is_terminal: Mapped[bool] = mapped_column(Boolean, default=False)
    default_assignee_role: Mapped[str | None] = mapped_column(String(50))
    # Fixed assignee; takes precedence over the role lookup while the user is active
    default_assignee_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    # Advisory only; drives external reminders, never acted on by the engine
    due_hours: Mapped[int | None] = mapped_column(Integer)


class WorkflowTransition(Base, UUIDMixin):
    __tablename__ = "workflow_transitions"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False
    )
    from_stage_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workflow_stages.id", ondelete="CASCADE"), nullable=False
    )
    # NULL = the transition ends the process
    to_stage_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("workflow_stages.id", ondelete="CASCADE")
    )
    action_name: Mapped[str] = mapped_column(String(50), nullable=False)
    label: Mapped[str | None] = mapped_column(String(100))
    is_automatic: Mapped[bool] = mapped_column(Boolean, default=False)
    guard_expr: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint(
            "template_id", "from_stage_id", "action_name", name="uq_workflow_transitions_action"
        ),
        Index("ix_workflow_transitions_from", "from_stage_id"),
    )
