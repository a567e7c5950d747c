"""
In-memory registry of workflow templates.

Template rows are loaded once into immutable graphs (``TemplateDef``) with
stages indexed by id and transitions indexed by ``(from_stage_id, action)``.
The engine dispatches on these structured lookups only. A registry is a
read-only snapshot and can be shared by any number of concurrent callers;
refreshing means building a new registry and swapping the reference.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freecore.core.exceptions import NotFoundError, ProcessError
from freecore.models.workflow_template import WorkflowTemplate

logger = logging.getLogger(__name__)

# Ledger action type of an administrative cancel; no template may declare it
FORCE_CANCEL_ACTION = "force_cancel"


@dataclass(frozen=True)
class StageDef:
    id: uuid.UUID
    name: str
    position: int = 0
    is_initial: bool = False
    is_terminal: bool = False
    default_assignee_role: str | None = None
    default_assignee_id: uuid.UUID | None = None
    due_hours: int | None = None


@dataclass(frozen=True)
class TransitionDef:
    id: uuid.UUID
    from_stage_id: uuid.UUID
    to_stage_id: uuid.UUID | None
    action_name: str
    label: str | None = None
    is_automatic: bool = False
    guard_expr: str | None = None
    # True when the target is NULL or a terminal stage: the process ends here
    completes: bool = False


@dataclass(frozen=True)
class TemplateDef:
    id: uuid.UUID
    name: str
    entity_type: str
    initial_stage_id: uuid.UUID
    stages: Mapping[uuid.UUID, StageDef] = field(compare=False)
    transitions: Mapping[tuple[uuid.UUID, str], TransitionDef] = field(compare=False)
    description: str | None = None
    is_active: bool = True
    is_default: bool = False
    created_at: datetime | None = None
    _outgoing: Mapping[uuid.UUID, tuple[TransitionDef, ...]] = field(
        default_factory=dict, compare=False, repr=False
    )

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    @property
    def initial_stage(self) -> StageDef:
        return self.stages[self.initial_stage_id]

    def stage(self, stage_id: uuid.UUID | None) -> StageDef | None:
        if stage_id is None:
            return None
        return self.stages.get(stage_id)

    def stage_name(self, stage_id: uuid.UUID | None) -> str | None:
        stage = self.stage(stage_id)
        return stage.name if stage else None

    def transition(self, from_stage_id: uuid.UUID | None, action_name: str) -> TransitionDef | None:
        if from_stage_id is None:
            return None
        return self.transitions.get((from_stage_id, action_name))

    def outgoing(self, stage_id: uuid.UUID | None) -> tuple[TransitionDef, ...]:
        if stage_id is None:
            return ()
        return self._outgoing.get(stage_id, ())

    def automatic_from(self, stage_id: uuid.UUID | None) -> tuple[TransitionDef, ...]:
        return tuple(t for t in self.outgoing(stage_id) if t.is_automatic)

    def manual_from(self, stage_id: uuid.UUID | None) -> tuple[TransitionDef, ...]:
        return tuple(t for t in self.outgoing(stage_id) if not t.is_automatic)


def build_template_def(row: WorkflowTemplate) -> TemplateDef:
    """Turn a template row (with stages and transitions loaded) into a graph.

    Raises ``ProcessError`` if the template is malformed: no or several
    initial stages, a transition pointing outside the template, or a
    transition using the reserved ``force_cancel`` action.
    """
    stages = {
        s.id: StageDef(
            id=s.id,
            name=s.name,
            position=s.position or 0,
            is_initial=bool(s.is_initial),
            is_terminal=bool(s.is_terminal),
            default_assignee_role=s.default_assignee_role,
            default_assignee_id=s.default_assignee_id,
            due_hours=s.due_hours,
        )
        for s in row.stages
    }
    initial = [s.id for s in stages.values() if s.is_initial]
    if len(initial) != 1:
        raise ProcessError(
            f"Template {row.name!r} must have exactly one initial stage (found {len(initial)})"
        )

    transitions: dict[tuple[uuid.UUID, str], TransitionDef] = {}
    outgoing: dict[uuid.UUID, list[TransitionDef]] = {}
    for t in row.transitions:
        if t.from_stage_id not in stages or (
            t.to_stage_id is not None and t.to_stage_id not in stages
        ):
            raise ProcessError(
                f"Transition {t.action_name!r} of template {row.name!r} references a foreign stage"
            )
        if t.action_name == FORCE_CANCEL_ACTION:
            raise ProcessError(
                f"Action {t.action_name!r} of template {row.name!r} is reserved"
            )
        key = (t.from_stage_id, t.action_name)
        if key in transitions:
            raise ProcessError(
                f"Duplicate action {t.action_name!r} from one stage in template {row.name!r}"
            )
        target = stages.get(t.to_stage_id) if t.to_stage_id else None
        tdef = TransitionDef(
            id=t.id,
            from_stage_id=t.from_stage_id,
            to_stage_id=t.to_stage_id,
            action_name=t.action_name,
            label=t.label,
            is_automatic=bool(t.is_automatic),
            guard_expr=t.guard_expr,
            completes=target is None or target.is_terminal,
        )
        transitions[key] = tdef
        outgoing.setdefault(t.from_stage_id, []).append(tdef)

    return TemplateDef(
        id=row.id,
        name=row.name,
        entity_type=row.entity_type,
        initial_stage_id=initial[0],
        stages=MappingProxyType(stages),
        transitions=MappingProxyType(transitions),
        description=row.description,
        is_active=bool(row.is_active),
        is_default=bool(row.is_default),
        created_at=row.created_at,
        _outgoing=MappingProxyType(
            {k: tuple(sorted(v, key=lambda t: t.action_name)) for k, v in outgoing.items()}
        ),
    )


class TemplateRegistry:
    """Read-only lookup of template graphs by id and by entity type."""

    def __init__(self, templates: Iterable[TemplateDef] = ()) -> None:
        self._by_id: dict[uuid.UUID, TemplateDef] = {}
        self._by_entity: dict[str, list[TemplateDef]] = {}
        for tpl in templates:
            self._by_id[tpl.id] = tpl
            if tpl.is_active:
                self._by_entity.setdefault(tpl.entity_type, []).append(tpl)
        # Default template first, then oldest
        for candidates in self._by_entity.values():
            candidates.sort(key=lambda t: (not t.is_default, t.created_at is None, t.created_at or 0))

    @classmethod
    async def load(cls, db: AsyncSession) -> TemplateRegistry:
        """Snapshot every template in the database.

        Inactive templates are kept so existing instances still resolve, but
        they are never chosen for new instances. Malformed templates are
        logged and left out.
        """
        result = await db.execute(select(WorkflowTemplate).order_by(WorkflowTemplate.created_at))
        defs: list[TemplateDef] = []
        for row in result.scalars().all():
            try:
                defs.append(build_template_def(row))
            except ProcessError:
                logger.error("Skipping malformed workflow template %s", row.name, exc_info=True)
        logger.info("Loaded %d workflow templates", len(defs))
        return cls(defs)

    def resolve_template(self, entity_type: str) -> TemplateDef:
        candidates = self._by_entity.get(entity_type)
        if not candidates:
            raise NotFoundError("Workflow template for entity type", entity_type)
        return candidates[0]

    def get(self, template_id: uuid.UUID) -> TemplateDef:
        tpl = self._by_id.get(template_id)
        if tpl is None:
            raise NotFoundError("WorkflowTemplate", template_id)
        return tpl

    def templates(self, entity_type: str | None = None) -> list[TemplateDef]:
        items = [t for t in self._by_id.values() if entity_type is None or t.entity_type == entity_type]
        return sorted(items, key=lambda t: (t.entity_type, t.name))

    def __len__(self) -> int:
        return len(self._by_id)
