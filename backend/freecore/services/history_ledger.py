"""
Append-only history ledger for workflow instances.

Every start, transition (manual or automatic) and cancellation appends one
``WorkflowHistory`` row; nothing here updates or deletes a row. Because the
ledger records each ``(from_stage, to_stage)`` hop, the full stage path of
an instance can be rebuilt from it alone (see ``replay``).
"""
from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freecore.core.exceptions import ProcessError
from freecore.models.base import utcnow
from freecore.models.workflow_instance import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    WorkflowHistory,
    WorkflowInstance,
)
from freecore.services.template_registry import FORCE_CANCEL_ACTION, TemplateDef

ACTION_START = "start"
ACTION_FORCE_CANCEL = FORCE_CANCEL_ACTION


def append(
    db: AsyncSession,
    instance: WorkflowInstance,
    *,
    action_type: str,
    actor_id: uuid.UUID | None,
    from_stage_id: uuid.UUID | None,
    to_stage_id: uuid.UUID | None,
    comment: str | None = None,
) -> WorkflowHistory:
    """Stage a ledger row for the instance's current version.

    The timestamp is taken here rather than by the database: every hop of a
    cascade runs in one transaction, where ``now()`` would be constant.
    """
    entry = WorkflowHistory(
        instance_id=instance.id,
        version=instance.version,
        action_type=action_type,
        actor_id=actor_id,
        from_stage_id=from_stage_id,
        to_stage_id=to_stage_id,
        assignee_id=instance.assignee_id,
        comment=comment,
        created_at=utcnow(),
    )
    db.add(entry)
    return entry


async def entries_for(db: AsyncSession, instance_id: uuid.UUID) -> list[WorkflowHistory]:
    """All entries for an instance in version order."""
    result = await db.execute(
        select(WorkflowHistory)
        .where(WorkflowHistory.instance_id == instance_id)
        .order_by(WorkflowHistory.version.asc())
    )
    return list(result.scalars().all())


def replay(
    template: TemplateDef, entries: Sequence[WorkflowHistory]
) -> tuple[uuid.UUID | None, str | None]:
    """Rebuild ``(current_stage_id, status)`` from the ledger alone.

    Raises ``ProcessError`` when the recorded hops do not form a connected
    path starting at a ``start`` entry. Only the first entry is read as the
    start; later entries are hops, whatever the template named their action.
    """
    stage_id: uuid.UUID | None = None
    status: str | None = None
    for entry in entries:
        if status is None:
            if entry.action_type != ACTION_START or entry.from_stage_id is not None:
                raise ProcessError("Ledger does not begin with a start entry")
            stage_id, status = entry.to_stage_id, STATUS_ACTIVE
            continue
        if status != STATUS_ACTIVE:
            raise ProcessError(f"Ledger continues past a closed instance at version {entry.version}")
        if entry.from_stage_id != stage_id:
            raise ProcessError(f"Ledger gap at version {entry.version}")
        stage_id = entry.to_stage_id
        if entry.action_type == ACTION_FORCE_CANCEL:
            status = STATUS_CANCELLED
            continue
        target = template.stage(stage_id)
        status = STATUS_COMPLETED if target is None or target.is_terminal else STATUS_ACTIVE
    return stage_id, status
