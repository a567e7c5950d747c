from freecore.models.base import Base
from freecore.models.project_member import ProjectMember
from freecore.models.user import User
from freecore.models.workflow_instance import WorkflowHistory, WorkflowInstance
from freecore.models.workflow_template import WorkflowStage, WorkflowTemplate, WorkflowTransition

__all__ = [
    "Base",
    "User",
    "ProjectMember",
    "WorkflowTemplate",
    "WorkflowStage",
    "WorkflowTransition",
    "WorkflowInstance",
    "WorkflowHistory",
]
