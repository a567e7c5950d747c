"""
Workflow exception hierarchy.

Every failure the engine surfaces is one of these types. Each carries the
HTTP status and machine-readable code the API layer responds with, so the
route layer registers a single handler for ``WorkflowError``.

A rejected operation never leaves partial writes behind: the engine raises
inside its transaction scope and the whole unit of work is rolled back.

Usage:
    from freecore.core.exceptions import NotFoundError, ConflictError

    raise NotFoundError("WorkflowInstance", instance_id)
    raise ConflictError("Active workflow already exists for submittal 42")
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all typed workflow failures."""

    status_code: int = 500
    code: str = "ERR_WORKFLOW"


class NotFoundError(WorkflowError):
    """Unknown template, instance, or no template registered for an entity type.

    Args:
        resource: Human-readable model name (e.g. "WorkflowInstance").
        resource_id: The key that was looked up.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: object | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg)


class ConflictError(WorkflowError):
    """Duplicate active instance for an entity, or a concurrent writer won.

    Callers may re-read the instance and retry.
    """

    status_code = 409
    code = "ERR_CONFLICT"


class InvalidStateError(WorkflowError):
    """Operation attempted on an instance that is no longer active."""

    status_code = 409
    code = "ERR_INVALID_STATE"

    def __init__(self, instance_id: object, status: str) -> None:
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Cannot transition workflow {instance_id} with status: {status}")


class NoSuchTransitionError(WorkflowError):
    """No transition matches the action from the instance's current stage."""

    status_code = 422
    code = "ERR_NO_SUCH_TRANSITION"

    def __init__(self, action: str, stage_name: str | None) -> None:
        self.action = action
        self.stage_name = stage_name
        super().__init__(f"Invalid transition: {action!r} from stage {stage_name!r}")


class ProcessError(WorkflowError):
    """A template is misconfigured, e.g. a cycle of automatic transitions."""

    status_code = 500
    code = "ERR_PROCESS"
