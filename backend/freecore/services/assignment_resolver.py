"""Map a workflow stage to the project member responsible for it."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freecore.models.project_member import ProjectMember
from freecore.models.user import User
from freecore.models.workflow_instance import WorkflowInstance
from freecore.services.template_registry import StageDef


class AssignmentResolver:
    """Fixed-user or role lookup against project membership.

    A stage with ``default_assignee_id`` goes to that user while the account
    is active. Otherwise a stage with ``default_assignee_role`` is assigned
    to the active member of the instance's project holding that role who
    joined earliest. No rule, or no such user, leaves the instance
    unassigned; that is not an error, any authorised actor on the project can
    still act on it.
    """

    async def resolve(
        self, db: AsyncSession, stage: StageDef | None, instance: WorkflowInstance
    ) -> uuid.UUID | None:
        if stage is None:
            return None
        if stage.default_assignee_id is not None:
            user_id = await db.scalar(
                select(User.id).where(User.id == stage.default_assignee_id, User.is_active.is_(True))
            )
            if user_id is not None:
                return user_id
        if not stage.default_assignee_role or instance.project_id is None:
            return None
        result = await db.execute(
            select(ProjectMember.user_id)
            .join(User, User.id == ProjectMember.user_id)
            .where(
                ProjectMember.project_id == instance.project_id,
                ProjectMember.role == stage.default_assignee_role,
                User.is_active.is_(True),
            )
            .order_by(ProjectMember.joined_at.asc(), ProjectMember.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()
