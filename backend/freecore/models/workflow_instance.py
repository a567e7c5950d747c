"""Workflow instances and their append-only history ledger."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from freecore.models.base import Base, JSONType, UUIDMixin, utcnow

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
INSTANCE_STATUSES = (STATUS_ACTIVE, STATUS_COMPLETED, STATUS_CANCELLED)
ACTIVE_ENTITY_INDEX = "uq_workflow_instances_active_entity"


class WorkflowInstance(Base, UUIDMixin):
    """A running or finished process bound to exactly one business entity.

    ``version`` increases by one for every history entry written against the
    instance; writers update with ``WHERE version = <read version>`` so that
    two racing actors can never both advance the same state.
    """

    __tablename__ = "workflow_instances"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workflow_templates.id"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # String so integer and UUID keyed entities share one column
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    current_stage_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("workflow_stages.id")
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=STATUS_ACTIVE
    )  # active / completed / cancelled
    assignee_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Entity attributes supplied at start; transition guards evaluate against it
    context: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    started_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        # At most one active instance per entity, enforced by the database
        Index(
            ACTIVE_ENTITY_INDEX,
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_workflow_instances_entity", "entity_type", "entity_id"),
        Index("ix_workflow_instances_assignee", "status", "assignee_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance(id={self.id}, entity={self.entity_type}:{self.entity_id}, "
            f"status={self.status}, version={self.version})>"
        )


class WorkflowHistory(Base, UUIDMixin):
    """One immutable ledger row per applied start / transition / cancel.

    Rows are only ever inserted. ``version`` is the instance version the entry
    produced, so ``(instance_id, version)`` is unique and doubles as the
    ordering tie-break for entries written within the same transaction.
    """

    __tablename__ = "workflow_instance_history"

    instance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)  # start/cancel/<action>
    # NULL for system-applied automatic hops
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    from_stage_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("workflow_stages.id"))
    to_stage_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("workflow_stages.id"))
    assignee_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("instance_id", "version", name="uq_workflow_history_version"),
        Index("ix_workflow_history_instance", "instance_id", "created_at"),
    )
