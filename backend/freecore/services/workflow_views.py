"""
Read-time projection of workflow rows into display-ready views.

The state machine works on ids only; names (template, stage, actor,
assignee) are layered on here, from the template registry and one batched
user lookup per call.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freecore.models.user import User
from freecore.models.workflow_instance import STATUS_ACTIVE, WorkflowHistory, WorkflowInstance
from freecore.schemas.workflow import (
    AvailableAction,
    HistoryEntryView,
    InstanceView,
    StageResponse,
    TemplateResponse,
    TransitionResponse,
)
from freecore.services.template_registry import TemplateDef, TemplateRegistry


def _str(value: object | None) -> str | None:
    return str(value) if value is not None else None


async def load_user_names(
    db: AsyncSession, user_ids: Iterable[uuid.UUID | None]
) -> dict[uuid.UUID, str]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.display_name).where(User.id.in_(ids)))
    return {uid: name for uid, name in result.all()}


def stage_due_at(
    template: TemplateDef, stage_id: uuid.UUID | None, entered_at: datetime | None
) -> datetime | None:
    """Advisory deadline: time the stage was entered plus its due hours."""
    stage = template.stage(stage_id)
    if stage is None or not stage.due_hours or entered_at is None:
        return None
    return entered_at + timedelta(hours=stage.due_hours)


def is_overdue(
    template: TemplateDef, stage_id: uuid.UUID | None, entered_at: datetime | None, now: datetime
) -> bool:
    due_at = stage_due_at(template, stage_id, entered_at)
    if due_at is None:
        return False
    # SQLite hands back naive datetimes; they were written as UTC
    if due_at.tzinfo is None:
        due_at = due_at.replace(tzinfo=timezone.utc)
    return due_at < now


def instance_view(
    instance: WorkflowInstance, template: TemplateDef, names: dict[uuid.UUID, str]
) -> InstanceView:
    stage = template.stage(instance.current_stage_id)
    due_at = None
    if instance.status == STATUS_ACTIVE:
        due_at = stage_due_at(template, instance.current_stage_id, instance.updated_at)
    return InstanceView(
        id=str(instance.id),
        template_id=str(instance.template_id),
        template_name=template.name,
        entity_type=instance.entity_type,
        entity_id=instance.entity_id,
        project_id=str(instance.project_id),
        current_stage_id=_str(instance.current_stage_id),
        current_stage_name=stage.name if stage else None,
        status=instance.status,
        assignee_id=_str(instance.assignee_id),
        assignee_name=names.get(instance.assignee_id) if instance.assignee_id else None,
        version=instance.version,
        due_at=due_at,
        created_at=instance.created_at,
        updated_at=instance.updated_at,
        completed_at=instance.completed_at,
    )


async def hydrate_instances(
    db: AsyncSession, registry: TemplateRegistry, instances: Sequence[WorkflowInstance]
) -> list[InstanceView]:
    names = await load_user_names(db, (i.assignee_id for i in instances))
    return [instance_view(i, registry.get(i.template_id), names) for i in instances]


async def hydrate_history(
    db: AsyncSession, template: TemplateDef, entries: Sequence[WorkflowHistory]
) -> list[HistoryEntryView]:
    names = await load_user_names(db, (e.actor_id for e in entries))
    return [
        HistoryEntryView(
            id=str(e.id),
            version=e.version,
            action_type=e.action_type,
            actor_id=_str(e.actor_id),
            actor_name=names.get(e.actor_id) if e.actor_id else None,
            from_stage_id=_str(e.from_stage_id),
            from_stage_name=template.stage_name(e.from_stage_id),
            to_stage_id=_str(e.to_stage_id),
            to_stage_name=template.stage_name(e.to_stage_id),
            assignee_id=_str(e.assignee_id),
            comment=e.comment,
            created_at=e.created_at,
        )
        for e in entries
    ]


def available_actions(template: TemplateDef, instance: WorkflowInstance) -> list[AvailableAction]:
    """Manual actions an actor can take from the instance's current stage."""
    if instance.status != STATUS_ACTIVE:
        return []
    return [
        AvailableAction(
            action=t.action_name,
            label=t.label,
            to_stage_name=template.stage_name(t.to_stage_id),
            completes=t.completes,
        )
        for t in template.manual_from(instance.current_stage_id)
    ]


def template_response(template: TemplateDef) -> TemplateResponse:
    stages = sorted(template.stages.values(), key=lambda s: (s.position, s.name))
    transitions = sorted(
        template.transitions.values(),
        key=lambda t: (template.stages[t.from_stage_id].position, t.action_name),
    )
    return TemplateResponse(
        id=str(template.id),
        name=template.name,
        entity_type=template.entity_type,
        description=template.description,
        is_default=template.is_default,
        is_active=template.is_active,
        stages=[
            StageResponse(
                id=str(s.id),
                name=s.name,
                position=s.position,
                is_initial=s.is_initial,
                is_terminal=s.is_terminal,
                default_assignee_role=s.default_assignee_role,
                default_assignee_id=str(s.default_assignee_id) if s.default_assignee_id else None,
                due_hours=s.due_hours,
            )
            for s in stages
        ],
        transitions=[
            TransitionResponse(
                id=str(t.id),
                from_stage_id=str(t.from_stage_id),
                to_stage_id=_str(t.to_stage_id),
                action=t.action_name,
                label=t.label,
                is_automatic=t.is_automatic,
                guard=t.guard_expr,
            )
            for t in transitions
        ],
    )
