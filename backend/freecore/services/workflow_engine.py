"""
Workflow lifecycle engine.

Drives template-defined processes for arbitrary entity types:

    start       create an instance at the template's initial stage
    transition  apply a named action from the instance's current stage
    cancel      administrative force-cancel, outside the transition table

Every mutating operation is one database transaction. Instance rows are
written with a conditional update on ``version`` (optimistic concurrency):
if another writer advanced the instance since it was read, zero rows match
and the operation fails with ``ConflictError``. After each start or manual
transition the automatic-transition cascade runs inside the same
transaction, so an instance is observed either fully advanced past the
cascade or not advanced at all.

Events for the new history entries are published only after commit.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy import distinct, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from freecore.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NoSuchTransitionError,
    NotFoundError,
    ProcessError,
    WorkflowError,
)
from freecore.core.metrics import workflow_operation_failures_total, workflow_transitions_total
from freecore.models.base import utcnow
from freecore.models.user import User
from freecore.models.workflow_instance import (
    ACTIVE_ENTITY_INDEX,
    INSTANCE_STATUSES,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    WorkflowInstance,
)
from freecore.schemas.workflow import AvailableAction, HistoryEntryView, InstanceView, WorkflowStats
from freecore.services import history_ledger, workflow_views
from freecore.services.assignment_resolver import AssignmentResolver
from freecore.services.event_bus import EventBus, WorkflowEventType
from freecore.services.guard_evaluator import build_guard_context, evaluate_guard
from freecore.services.template_registry import TemplateDef, TemplateRegistry, TransitionDef

logger = logging.getLogger("freecore.workflow")


def _violates_active_entity_index(exc: IntegrityError) -> bool:
    """True when the error is the one-active-instance-per-entity index.

    PostgreSQL names the index; SQLite names the indexed columns.
    """
    message = str(exc.orig)
    return ACTIVE_ENTITY_INDEX in message or "workflow_instances.entity_type" in message


@dataclass(frozen=True)
class _AppliedEntry:
    """A history entry written in the current unit of work, published after commit."""

    event_type: WorkflowEventType
    trigger: str  # start / manual / automatic / cancel
    template_name: str
    instance_id: uuid.UUID
    entity_type: str
    entity_id: str
    project_id: uuid.UUID
    action: str
    from_stage: str | None
    to_stage: str | None
    actor_id: uuid.UUID | None
    assignee_id: uuid.UUID | None
    status: str
    version: int


class WorkflowEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: TemplateRegistry,
        resolver: AssignmentResolver | None = None,
        event_bus: EventBus | None = None,
        max_cascade_hops: int = 0,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._resolver = resolver or AssignmentResolver()
        self._event_bus = event_bus
        self._max_cascade_hops = max_cascade_hops

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    async def reload_templates(self) -> TemplateRegistry:
        """Load a fresh registry snapshot and swap it in."""
        async with self._session_factory() as db:
            self._registry = await TemplateRegistry.load(db)
        return self._registry

    # ── Unit of work ────────────────────────────────────────────────────

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[AsyncSession]:
        """One session, one transaction; rolled back on any exception."""
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    yield db
            except WorkflowError as exc:
                workflow_operation_failures_total.labels(operation, exc.code).inc()
                logger.warning("Workflow %s rejected: %s", operation, exc)
                raise

    async def _publish(self, applied: list[_AppliedEntry]) -> None:
        for entry in applied:
            workflow_transitions_total.labels(entry.template_name, entry.action, entry.trigger).inc()
            if self._event_bus is None:
                continue
            await self._event_bus.publish(
                entry.event_type,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                user_id=entry.actor_id,
                payload={
                    "instance_id": str(entry.instance_id),
                    "project_id": str(entry.project_id),
                    "template": entry.template_name,
                    "action": entry.action,
                    "automatic": entry.trigger == "automatic",
                    "from_stage": entry.from_stage,
                    "to_stage": entry.to_stage,
                    "assignee_id": str(entry.assignee_id) if entry.assignee_id else None,
                    "status": entry.status,
                    "version": entry.version,
                },
            )

    # ── Mutations ───────────────────────────────────────────────────────

    async def start(
        self,
        entity_type: str,
        entity_id: str | int | uuid.UUID,
        project_id: uuid.UUID,
        actor_id: uuid.UUID | None,
        context: dict | None = None,
    ) -> InstanceView:
        entity_key = str(entity_id)
        applied: list[_AppliedEntry] = []
        async with self._unit_of_work("start") as db:
            template = self._registry.resolve_template(entity_type)
            await self._require_actor(db, actor_id)

            existing = await db.execute(
                select(WorkflowInstance.id).where(
                    WorkflowInstance.entity_type == entity_type,
                    WorkflowInstance.entity_id == entity_key,
                    WorkflowInstance.status == STATUS_ACTIVE,
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise ConflictError(f"Active workflow already exists for {entity_type} {entity_key}")

            now = utcnow()
            instance = WorkflowInstance(
                id=uuid.uuid4(),
                template_id=template.id,
                entity_type=entity_type,
                entity_id=entity_key,
                project_id=project_id,
                current_stage_id=template.initial_stage_id,
                status=STATUS_ACTIVE,
                version=1,
                context=dict(context or {}),
                started_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            instance.assignee_id = await self._resolver.resolve(db, template.initial_stage, instance)
            db.add(instance)
            history_ledger.append(
                db,
                instance,
                action_type=history_ledger.ACTION_START,
                actor_id=actor_id,
                from_stage_id=None,
                to_stage_id=template.initial_stage_id,
            )
            try:
                # The partial unique index closes the window between the check
                # above and this insert
                await db.flush()
            except IntegrityError as exc:
                if not _violates_active_entity_index(exc):
                    raise
                raise ConflictError(
                    f"Active workflow already exists for {entity_type} {entity_key}"
                ) from exc

            applied.append(
                self._applied(
                    template, instance, "start", history_ledger.ACTION_START, None,
                    actor_id, WorkflowEventType.STARTED,
                )
            )
            logger.info(
                "Started workflow %s for %s %s at %s",
                template.name,
                entity_type,
                entity_key,
                template.initial_stage.name,
                extra={"instance_id": str(instance.id), "entity_type": entity_type, "entity_id": entity_key},
            )

            await self._cascade(db, template, instance, applied)
            view = await self._view(db, template, instance)

        await self._publish(applied)
        return view

    async def transition(
        self,
        instance_id: uuid.UUID,
        action_name: str,
        actor_id: uuid.UUID | None,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> InstanceView:
        applied: list[_AppliedEntry] = []
        async with self._unit_of_work("transition") as db:
            instance = await self._load(db, instance_id)
            await self._require_actor(db, actor_id)
            if instance.status != STATUS_ACTIVE:
                raise InvalidStateError(instance.id, instance.status)
            if expected_version is not None and instance.version != expected_version:
                raise ConflictError(
                    f"Workflow {instance.id} is at version {instance.version}, "
                    f"expected {expected_version}"
                )

            template = self._registry.get(instance.template_id)
            transition = template.transition(instance.current_stage_id, action_name)
            if transition is None:
                raise NoSuchTransitionError(action_name, template.stage_name(instance.current_stage_id))

            await self._advance(db, template, instance, transition, actor_id, comment, applied, "manual")
            if instance.status == STATUS_ACTIVE:
                await self._cascade(db, template, instance, applied)
            view = await self._view(db, template, instance)

        await self._publish(applied)
        return view

    async def cancel(
        self, instance_id: uuid.UUID, actor_id: uuid.UUID | None, reason: str
    ) -> InstanceView:
        """Privileged force-cancel that bypasses the template's transitions.

        The instance keeps its current stage; the ledger records a
        ``force_cancel`` entry carrying the mandatory reason.
        """
        if not reason or not reason.strip():
            raise ValueError("A reason is required to cancel a workflow")

        applied: list[_AppliedEntry] = []
        async with self._unit_of_work("cancel") as db:
            instance = await self._load(db, instance_id)
            await self._require_actor(db, actor_id)
            if instance.status != STATUS_ACTIVE:
                raise InvalidStateError(instance.id, instance.status)
            template = self._registry.get(instance.template_id)
            stage_id = instance.current_stage_id

            now = utcnow()
            await self._write(
                db,
                instance,
                current_stage_id=stage_id,
                status=STATUS_CANCELLED,
                assignee_id=None,
                updated_at=now,
                completed_at=now,
            )
            history_ledger.append(
                db,
                instance,
                action_type=history_ledger.ACTION_FORCE_CANCEL,
                actor_id=actor_id,
                from_stage_id=stage_id,
                to_stage_id=stage_id,
                comment=reason,
            )
            applied.append(
                self._applied(
                    template, instance, "cancel", history_ledger.ACTION_FORCE_CANCEL, stage_id,
                    actor_id, WorkflowEventType.CANCELLED,
                )
            )
            logger.info(
                "Cancelled workflow %s at %s",
                instance.id,
                template.stage_name(stage_id),
                extra={"instance_id": str(instance.id), "actor_id": str(actor_id) if actor_id else None},
            )
            view = await self._view(db, template, instance)

        await self._publish(applied)
        return view

    # ── Internals ───────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, instance_id: uuid.UUID) -> WorkflowInstance:
        instance = await db.get(WorkflowInstance, instance_id)
        if instance is None:
            raise NotFoundError("WorkflowInstance", instance_id)
        return instance

    async def _require_actor(self, db: AsyncSession, actor_id: uuid.UUID | None) -> None:
        if actor_id is None:
            return
        found = await db.scalar(select(User.id).where(User.id == actor_id))
        if found is None:
            raise NotFoundError("User", actor_id)

    async def _write(self, db: AsyncSession, instance: WorkflowInstance, **values) -> None:
        """Conditionally write the next version of the instance.

        Matches on the version this transaction read; zero rows means a
        concurrent writer got there first.
        """
        expected = instance.version
        values["version"] = expected + 1
        result = await db.execute(
            update(WorkflowInstance)
            .where(WorkflowInstance.id == instance.id, WorkflowInstance.version == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"Workflow {instance.id} was modified concurrently; reload and retry"
            )
        for key, value in values.items():
            set_committed_value(instance, key, value)

    async def _advance(
        self,
        db: AsyncSession,
        template: TemplateDef,
        instance: WorkflowInstance,
        transition: TransitionDef,
        actor_id: uuid.UUID | None,
        comment: str | None,
        applied: list[_AppliedEntry],
        trigger: str,
    ) -> None:
        from_stage_id = instance.current_stage_id
        target = template.stage(transition.to_stage_id)
        completes = transition.completes
        assignee_id = None if completes else await self._resolver.resolve(db, target, instance)

        now = utcnow()
        await self._write(
            db,
            instance,
            current_stage_id=transition.to_stage_id,
            status=STATUS_COMPLETED if completes else STATUS_ACTIVE,
            assignee_id=assignee_id,
            updated_at=now,
            completed_at=now if completes else None,
        )
        history_ledger.append(
            db,
            instance,
            action_type=transition.action_name,
            actor_id=actor_id,
            from_stage_id=from_stage_id,
            to_stage_id=transition.to_stage_id,
            comment=comment,
        )
        applied.append(
            self._applied(
                template, instance, trigger, transition.action_name, from_stage_id, actor_id,
                WorkflowEventType.COMPLETED if completes else WorkflowEventType.TRANSITIONED,
            )
        )
        logger.info(
            "Workflow %s: %s %s -> %s",
            instance.id,
            transition.action_name,
            template.stage_name(from_stage_id),
            template.stage_name(transition.to_stage_id) or "(end)",
            extra={
                "instance_id": str(instance.id),
                "action": transition.action_name,
                "automatic": trigger == "automatic",
            },
        )

    async def _cascade(
        self,
        db: AsyncSession,
        template: TemplateDef,
        instance: WorkflowInstance,
        applied: list[_AppliedEntry],
    ) -> None:
        """Apply automatic transitions until none is eligible.

        A stage hops automatically only when exactly one of its automatic
        transitions has a satisfied guard. The number of hops is bounded by
        the template's stage count; exceeding it means a cycle of automatic
        transitions and aborts the whole operation.
        """
        bound = template.stage_count
        if self._max_cascade_hops:
            bound = min(bound, self._max_cascade_hops)

        hops = 0
        while instance.status == STATUS_ACTIVE:
            stage_name = template.stage_name(instance.current_stage_id)
            guard_context = build_guard_context(instance, stage_name)
            eligible = [
                t
                for t in template.automatic_from(instance.current_stage_id)
                if evaluate_guard(t.guard_expr, guard_context)
            ]
            if not eligible:
                return
            if len(eligible) > 1:
                logger.warning(
                    "Stage %s of %s has %d eligible automatic transitions; waiting for a manual action",
                    stage_name,
                    template.name,
                    len(eligible),
                    extra={"instance_id": str(instance.id)},
                )
                return

            hops += 1
            if hops > bound:
                logger.error(
                    "Automatic transitions of template %s exceed %d hops; aborting",
                    template.name,
                    bound,
                    extra={"instance_id": str(instance.id)},
                )
                raise ProcessError(
                    f"Template {template.name!r} loops through automatic transitions "
                    f"(more than {bound} hops from stage {stage_name!r})"
                )
            await self._advance(db, template, instance, eligible[0], None, None, applied, "automatic")

    def _applied(
        self,
        template: TemplateDef,
        instance: WorkflowInstance,
        trigger: str,
        action: str,
        from_stage_id: uuid.UUID | None,
        actor_id: uuid.UUID | None,
        event_type: WorkflowEventType,
    ) -> _AppliedEntry:
        return _AppliedEntry(
            event_type=event_type,
            trigger=trigger,
            template_name=template.name,
            instance_id=instance.id,
            entity_type=instance.entity_type,
            entity_id=instance.entity_id,
            project_id=instance.project_id,
            action=action,
            from_stage=template.stage_name(from_stage_id),
            to_stage=template.stage_name(instance.current_stage_id),
            actor_id=actor_id,
            assignee_id=instance.assignee_id,
            status=instance.status,
            version=instance.version,
        )

    async def _view(
        self, db: AsyncSession, template: TemplateDef, instance: WorkflowInstance
    ) -> InstanceView:
        names = await workflow_views.load_user_names(db, [instance.assignee_id])
        return workflow_views.instance_view(instance, template, names)

    # ── Queries (read-only) ─────────────────────────────────────────────

    async def get_workflow(self, instance_id: uuid.UUID) -> InstanceView:
        async with self._session_factory() as db:
            instance = await self._load(db, instance_id)
            return await self._view(db, self._registry.get(instance.template_id), instance)

    async def get_workflow_for_entity(
        self, entity_type: str, entity_id: str | int | uuid.UUID
    ) -> InstanceView | None:
        """The active instance for an entity, else its most recent finished one."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowInstance)
                .where(
                    WorkflowInstance.entity_type == entity_type,
                    WorkflowInstance.entity_id == str(entity_id),
                )
                .order_by(
                    (WorkflowInstance.status == STATUS_ACTIVE).desc(),
                    WorkflowInstance.created_at.desc(),
                )
                .limit(1)
            )
            instance = result.scalar_one_or_none()
            if instance is None:
                return None
            return await self._view(db, self._registry.get(instance.template_id), instance)

    async def get_workflow_history(self, instance_id: uuid.UUID) -> list[HistoryEntryView]:
        async with self._session_factory() as db:
            instance = await self._load(db, instance_id)
            entries = await history_ledger.entries_for(db, instance.id)
            return await workflow_views.hydrate_history(
                db, self._registry.get(instance.template_id), entries
            )

    async def get_user_tasks(
        self,
        user_id: uuid.UUID,
        project_id: uuid.UUID | None = None,
        entity_type: str | None = None,
    ) -> list[InstanceView]:
        """Active instances assigned to a user across projects, most urgent first."""
        async with self._session_factory() as db:
            query = select(WorkflowInstance).where(
                WorkflowInstance.status == STATUS_ACTIVE,
                WorkflowInstance.assignee_id == user_id,
            )
            if project_id is not None:
                query = query.where(WorkflowInstance.project_id == project_id)
            if entity_type:
                query = query.where(WorkflowInstance.entity_type == entity_type)
            result = await db.execute(query.order_by(WorkflowInstance.updated_at.asc()))
            views = await workflow_views.hydrate_instances(db, self._registry, result.scalars().all())
        # Instances with a due date first, soonest first; stable on stage entry time
        return sorted(views, key=lambda v: (v.due_at is None, v.due_at.timestamp() if v.due_at else 0))

    async def get_project_workflows(
        self,
        project_id: uuid.UUID,
        entity_type: str | None = None,
        status: str | None = None,
    ) -> list[InstanceView]:
        async with self._session_factory() as db:
            query = select(WorkflowInstance).where(WorkflowInstance.project_id == project_id)
            if entity_type:
                query = query.where(WorkflowInstance.entity_type == entity_type)
            if status:
                query = query.where(WorkflowInstance.status == status)
            result = await db.execute(query.order_by(WorkflowInstance.created_at.desc()))
            return await workflow_views.hydrate_instances(db, self._registry, result.scalars().all())

    async def available_actions(self, instance_id: uuid.UUID) -> list[AvailableAction]:
        async with self._session_factory() as db:
            instance = await self._load(db, instance_id)
            return workflow_views.available_actions(self._registry.get(instance.template_id), instance)

    async def get_project_stats(self, project_id: uuid.UUID) -> list[WorkflowStats]:
        """Dashboard counters for one project, one row per entity type.

        ``overdue`` counts active instances that have sat in their current
        stage past its advisory ``due_hours``.
        """
        async with self._session_factory() as db:
            status_rows = (
                await db.execute(
                    select(
                        WorkflowInstance.entity_type,
                        WorkflowInstance.status,
                        func.count(WorkflowInstance.id),
                    )
                    .where(WorkflowInstance.project_id == project_id)
                    .group_by(WorkflowInstance.entity_type, WorkflowInstance.status)
                )
            ).all()
            assignee_rows = (
                await db.execute(
                    select(
                        WorkflowInstance.entity_type,
                        func.count(distinct(WorkflowInstance.assignee_id)),
                    )
                    .where(WorkflowInstance.project_id == project_id)
                    .group_by(WorkflowInstance.entity_type)
                )
            ).all()
            active_rows = (
                await db.execute(
                    select(
                        WorkflowInstance.entity_type,
                        WorkflowInstance.template_id,
                        WorkflowInstance.current_stage_id,
                        WorkflowInstance.updated_at,
                    ).where(
                        WorkflowInstance.project_id == project_id,
                        WorkflowInstance.status == STATUS_ACTIVE,
                    )
                )
            ).all()

        counts: dict[str, dict[str, int]] = {}
        for entity_type, status, cnt in status_rows:
            counts.setdefault(entity_type, dict.fromkeys(INSTANCE_STATUSES, 0))[status] = cnt

        now = utcnow()
        overdue: dict[str, int] = {}
        for entity_type, template_id, stage_id, entered_at in active_rows:
            template = self._registry.get(template_id)
            if workflow_views.is_overdue(template, stage_id, entered_at, now):
                overdue[entity_type] = overdue.get(entity_type, 0) + 1

        assignees = dict(assignee_rows)
        return [
            WorkflowStats(
                entity_type=entity_type,
                total=sum(by_status.values()),
                active=by_status[STATUS_ACTIVE],
                completed=by_status[STATUS_COMPLETED],
                cancelled=by_status[STATUS_CANCELLED],
                overdue=overdue.get(entity_type, 0),
                assignees=assignees.get(entity_type, 0),
            )
            for entity_type, by_status in sorted(counts.items())
        ]
