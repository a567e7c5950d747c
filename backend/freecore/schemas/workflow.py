from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class WorkflowStart(BaseModel):
    entity_type: str = Field(min_length=1, max_length=50)
    entity_id: str | int
    project_id: uuid.UUID
    context: dict | None = None


class WorkflowTransitionRequest(BaseModel):
    action: str = Field(min_length=1, max_length=50)
    comment: str | None = None
    expected_version: int | None = None


class WorkflowCancelRequest(BaseModel):
    model_config = {"str_strip_whitespace": True}

    reason: str = Field(min_length=1)


class InstanceView(BaseModel):
    """Display-ready projection of a workflow instance."""

    id: str
    template_id: str
    template_name: str
    entity_type: str
    entity_id: str
    project_id: uuid.UUID
    current_stage_id: str | None = None
    current_stage_name: str | None = None
    status: str
    assignee_id: str | None = None
    assignee_name: str | None = None
    version: int
    due_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class HistoryEntryView(BaseModel):
    id: str
    version: int
    action_type: str
    actor_id: str | None = None
    actor_name: str | None = None
    from_stage_id: str | None = None
    from_stage_name: str | None = None
    to_stage_id: str | None = None
    to_stage_name: str | None = None
    assignee_id: str | None = None
    comment: str | None = None
    created_at: datetime | None = None


class AvailableAction(BaseModel):
    action: str
    label: str | None = None
    to_stage_name: str | None = None
    completes: bool = False


class StageResponse(BaseModel):
    id: str
    name: str
    position: int
    is_initial: bool
    is_terminal: bool
    default_assignee_role: str | None = None
    default_assignee_id: str | None = None
    due_hours: int | None = None


class TransitionResponse(BaseModel):
    id: str
    from_stage_id: str
    to_stage_id: str | None = None
    action: str
    label: str | None = None
    is_automatic: bool
    guard: str | None = None


class TemplateResponse(BaseModel):
    id: str
    name: str
    entity_type: str
    description: str | None = None
    is_default: bool
    is_active: bool
    stages: list[StageResponse] = []
    transitions: list[TransitionResponse] = []


class WorkflowStats(BaseModel):
    """Per-entity-type counters for a project dashboard."""

    entity_type: str
    total: int = 0
    active: int = 0
    completed: int = 0
    cancelled: int = 0
    overdue: int = 0
    assignees: int = 0
