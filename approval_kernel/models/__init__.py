"""ORM models for the approval kernel."""

from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.document import ApprovableDocumentModel
from approval_kernel.models.instance import WorkflowInstanceModel
from approval_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStageModel

__all__ = [
    "WorkflowDefinitionModel",
    "WorkflowStageModel",
    "WorkflowInstanceModel",
    "WorkflowActionModel",
    "ApprovableDocumentModel",
]
