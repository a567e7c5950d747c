"""Workflow engine endpoints: start / transition / cancel and the read-side queries.

Entity-owning modules remain responsible for authorising access to their
entities; these endpoints only require an authenticated actor, plus the
admin role for force-cancel.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException

from freecore.api.deps import get_current_user, get_engine, require_admin
from freecore.models.user import User
from freecore.schemas.workflow import (
    AvailableAction,
    HistoryEntryView,
    InstanceView,
    TemplateResponse,
    WorkflowCancelRequest,
    WorkflowStart,
    WorkflowStats,
    WorkflowTransitionRequest,
)
from freecore.services.workflow_engine import WorkflowEngine
from freecore.services.workflow_views import template_response

router = APIRouter(prefix="/workflows", tags=["workflows"])


# ── Start ───────────────────────────────────────────────────────────────


@router.post("/start", status_code=201, response_model=InstanceView)
async def start_workflow(
    body: WorkflowStart,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Start the default workflow for an entity."""
    return await engine.start(
        body.entity_type, body.entity_id, body.project_id, user.id, context=body.context
    )


# ── Lists and lookups ───────────────────────────────────────────────────


@router.get("/entity/{entity_type}/{entity_id}", response_model=InstanceView)
async def get_workflow_for_entity(
    entity_type: str,
    entity_id: str,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    view = await engine.get_workflow_for_entity(entity_type, entity_id)
    if view is None:
        raise HTTPException(404, "No workflow found for this entity")
    return view


@router.get("/tasks/my-tasks", response_model=list[InstanceView])
async def my_tasks(
    project_id: uuid.UUID | None = None,
    entity_type: str | None = None,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """The current user's work queue."""
    return await engine.get_user_tasks(user.id, project_id=project_id, entity_type=entity_type)


@router.get("/project/{project_id}", response_model=list[InstanceView])
async def project_workflows(
    project_id: uuid.UUID,
    entity_type: str | None = None,
    status: str | None = None,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.get_project_workflows(project_id, entity_type=entity_type, status=status)


@router.get("/stats/project/{project_id}", response_model=list[WorkflowStats])
async def project_stats(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Per-entity-type totals, status counts, overdue and distinct assignees."""
    return await engine.get_project_stats(project_id)


# ── Templates ───────────────────────────────────────────────────────────


@router.get("/templates", response_model=list[TemplateResponse])
async def list_templates(
    entity_type: str | None = None,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    return [template_response(t) for t in engine.registry.templates(entity_type)]


@router.get("/templates/{entity_type}", response_model=TemplateResponse)
async def get_template(
    entity_type: str,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """The template new workflows for this entity type would use."""
    return template_response(engine.registry.resolve_template(entity_type))


# ── Single instance ─────────────────────────────────────────────────────


@router.get("/{instance_id}", response_model=InstanceView)
async def get_workflow(
    instance_id: uuid.UUID,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.get_workflow(instance_id)


@router.get("/{instance_id}/history", response_model=list[HistoryEntryView])
async def get_history(
    instance_id: uuid.UUID,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.get_workflow_history(instance_id)


@router.get("/{instance_id}/transitions", response_model=list[AvailableAction])
async def get_available_transitions(
    instance_id: uuid.UUID,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.available_actions(instance_id)


@router.post("/{instance_id}/transition", response_model=InstanceView)
async def transition_workflow(
    instance_id: uuid.UUID,
    body: WorkflowTransitionRequest,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.transition(
        instance_id,
        body.action,
        user.id,
        comment=body.comment,
        expected_version=body.expected_version,
    )


@router.post("/{instance_id}/cancel", response_model=InstanceView)
async def cancel_workflow(
    instance_id: uuid.UUID,
    body: WorkflowCancelRequest,
    user: User = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Administrative force-cancel; the reason is recorded in the history."""
    require_admin(user)
    return await engine.cancel(instance_id, user.id, body.reason)
