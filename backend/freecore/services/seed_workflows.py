"""Seed the default construction workflow templates.

Definitions are plain dicts so they can be reviewed (and extended) without
touching ORM code: stages by name, transitions referencing stage names.
"""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freecore.models.workflow_template import WorkflowStage, WorkflowTemplate, WorkflowTransition
from freecore.services.template_registry import build_template_def

logger = logging.getLogger(__name__)

SUBMITTAL_REVIEW = {
    "name": "Standard Submittal Review",
    "entity_type": "submittal",
    "description": "GC Review → Architect Review → Engineer Review → Distribution",
    "is_default": True,
    "stages": [
        {"name": "Submitted", "initial": True},
        {"name": "GC Review", "role": "superintendent", "due_hours": 48},
        {"name": "Architect Review", "role": "architect", "due_hours": 72},
        {"name": "Engineer Review", "role": "engineer", "due_hours": 72},
        {"name": "Distribution", "role": "project_manager", "due_hours": 24},
        {"name": "Approved", "terminal": True},
        {"name": "Rejected", "terminal": True},
    ],
    "transitions": [
        {"from": "Submitted", "to": "GC Review", "action": "submit_for_review", "automatic": True},
        {"from": "GC Review", "to": "Architect Review", "action": "approve",
         "label": "Approve & Forward to Architect"},
        {"from": "GC Review", "to": "Rejected", "action": "reject", "label": "Reject Submittal"},
        {"from": "Architect Review", "to": "Engineer Review", "action": "approve",
         "label": "Approve & Forward to Engineer"},
        {"from": "Architect Review", "to": "GC Review", "action": "revise",
         "label": "Request Revisions"},
        {"from": "Architect Review", "to": "Rejected", "action": "reject"},
        {"from": "Engineer Review", "to": "Distribution", "action": "approve",
         "label": "Approve & Distribute"},
        {"from": "Engineer Review", "to": "Architect Review", "action": "revise"},
        {"from": "Distribution", "to": "Approved", "action": "distribute", "label": "Distribute"},
    ],
}

RFI_RESPONSE = {
    "name": "RFI Response - Standard",
    "entity_type": "rfi",
    "description": "Superintendent → Architect → Response",
    "is_default": True,
    "stages": [
        {"name": "Open", "initial": True},
        {"name": "Superintendent Review", "role": "superintendent", "due_hours": 24},
        {"name": "Architect Response", "role": "architect", "due_hours": 72},
        {"name": "Answered", "terminal": True},
        {"name": "Void", "terminal": True},
    ],
    "transitions": [
        {"from": "Open", "to": "Superintendent Review", "action": "route", "automatic": True},
        {"from": "Superintendent Review", "to": "Architect Response", "action": "forward",
         "label": "Forward to Architect"},
        {"from": "Superintendent Review", "to": "Answered", "action": "respond"},
        {"from": "Superintendent Review", "to": "Void", "action": "void"},
        {"from": "Architect Response", "to": "Answered", "action": "respond"},
        {"from": "Architect Response", "to": "Superintendent Review", "action": "request_info",
         "label": "Request Clarification"},
    ],
}

CHANGE_ORDER_APPROVAL = {
    "name": "Change Order Approval",
    "entity_type": "change_order",
    "description": "PM → Owner (if >$50k) → Final Approval",
    "is_default": True,
    "stages": [
        {"name": "Draft", "initial": True},
        {"name": "PM Review", "role": "project_manager", "due_hours": 48},
        {"name": "Value Check"},
        {"name": "Owner Approval", "role": "owner", "due_hours": 120},
        {"name": "Approved", "terminal": True},
        {"name": "Rejected", "terminal": True},
    ],
    "transitions": [
        {"from": "Draft", "to": "PM Review", "action": "submit", "automatic": True},
        {"from": "PM Review", "to": "Value Check", "action": "approve"},
        {"from": "PM Review", "to": "Rejected", "action": "reject"},
        {"from": "Value Check", "to": "Owner Approval", "action": "route_to_owner",
         "automatic": True, "guard": "COALESCE(amount, 0) > 50000"},
        {"from": "Value Check", "to": "Approved", "action": "auto_approve",
         "automatic": True, "guard": "COALESCE(amount, 0) <= 50000"},
        {"from": "Owner Approval", "to": "Approved", "action": "approve"},
        {"from": "Owner Approval", "to": "Rejected", "action": "reject"},
    ],
}

DRAWING_REVIEW = {
    "name": "Drawing Review",
    "entity_type": "drawing",
    "description": "Multi-Discipline Review → Coordination → Distribution",
    "is_default": True,
    "stages": [
        {"name": "Uploaded", "initial": True},
        {"name": "Discipline Review", "role": "architect", "due_hours": 72},
        {"name": "Revision Required", "role": "engineer"},
        {"name": "Coordination", "role": "project_manager", "due_hours": 48},
        {"name": "Distributed", "terminal": True},
        {"name": "Superseded", "terminal": True},
    ],
    "transitions": [
        {"from": "Uploaded", "to": "Discipline Review", "action": "submit_for_review",
         "automatic": True},
        {"from": "Discipline Review", "to": "Coordination", "action": "approve"},
        {"from": "Discipline Review", "to": "Revision Required", "action": "request_changes"},
        {"from": "Revision Required", "to": "Discipline Review", "action": "resubmit"},
        {"from": "Coordination", "to": "Distributed", "action": "distribute"},
        {"from": "Coordination", "to": "Revision Required", "action": "incorporate_asi",
         "label": "Incorporate ASI"},
        {"from": "Discipline Review", "to": "Superseded", "action": "supersede"},
    ],
}

PUNCH_ITEM_RESOLUTION = {
    "name": "Punch Item Resolution",
    "entity_type": "punch_item",
    "description": "Assigned → In Progress → Completed → Verified → Closed",
    "is_default": True,
    "stages": [
        {"name": "Assigned", "initial": True, "role": "subcontractor", "due_hours": 72},
        {"name": "In Progress", "role": "subcontractor"},
        {"name": "Completed", "role": "superintendent", "due_hours": 24},
        {"name": "Verified"},
        {"name": "Closed", "terminal": True},
    ],
    "transitions": [
        {"from": "Assigned", "to": "In Progress", "action": "start_work"},
        {"from": "In Progress", "to": "Completed", "action": "complete"},
        {"from": "Completed", "to": "Verified", "action": "verify"},
        {"from": "Completed", "to": "In Progress", "action": "reopen"},
        {"from": "Verified", "to": "Closed", "action": "close", "automatic": True},
    ],
}

DEFAULT_TEMPLATES = [
    SUBMITTAL_REVIEW,
    RFI_RESPONSE,
    CHANGE_ORDER_APPROVAL,
    DRAWING_REVIEW,
    PUNCH_ITEM_RESOLUTION,
]


def create_template(db: AsyncSession, definition: dict) -> WorkflowTemplate:
    """Build a template with its stages and transitions and add it to the session.

    Raises ``ValueError`` for a transition naming an unknown stage and
    ``ProcessError`` if the resulting graph is malformed.
    """
    template = WorkflowTemplate(
        id=uuid.uuid4(),
        name=definition["name"],
        entity_type=definition["entity_type"],
        description=definition.get("description"),
        is_active=definition.get("is_active", True),
        is_default=definition.get("is_default", False),
    )
    stage_ids: dict[str, uuid.UUID] = {}
    stages = []
    for position, s in enumerate(definition["stages"], start=1):
        stage = WorkflowStage(
            id=uuid.uuid4(),
            template_id=template.id,
            name=s["name"],
            position=position,
            is_initial=s.get("initial", False),
            is_terminal=s.get("terminal", False),
            default_assignee_role=s.get("role"),
            default_assignee_id=s.get("assignee_id"),
            due_hours=s.get("due_hours"),
        )
        stage_ids[stage.name] = stage.id
        stages.append(stage)

    transitions = []
    for t in definition.get("transitions", []):
        if t["from"] not in stage_ids or (t.get("to") is not None and t["to"] not in stage_ids):
            raise ValueError(f"Transition {t['action']!r} references an unknown stage")
        transitions.append(
            WorkflowTransition(
                id=uuid.uuid4(),
                template_id=template.id,
                from_stage_id=stage_ids[t["from"]],
                to_stage_id=stage_ids[t["to"]] if t.get("to") is not None else None,
                action_name=t["action"],
                label=t.get("label"),
                is_automatic=t.get("automatic", False),
                guard_expr=t.get("guard"),
            )
        )

    template.stages = stages
    template.transitions = transitions
    build_template_def(template)
    db.add(template)
    return template


async def seed_workflow_templates(db: AsyncSession, definitions: list[dict] | None = None) -> dict:
    """Insert default templates that do not exist yet (matched on entity type + name)."""
    created = skipped = 0
    for definition in definitions if definitions is not None else DEFAULT_TEMPLATES:
        exists = await db.execute(
            select(WorkflowTemplate.id).where(
                WorkflowTemplate.entity_type == definition["entity_type"],
                WorkflowTemplate.name == definition["name"],
            )
        )
        if exists.scalar_one_or_none() is not None:
            skipped += 1
            continue
        create_template(db, definition)
        created += 1
    await db.commit()
    if created:
        logger.info("Seeded %d workflow templates (%d already present)", created, skipped)
    return {"created": created, "skipped": skipped}
