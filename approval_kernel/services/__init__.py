"""Kernel services: the imperative shell around the pure domain."""

from approval_kernel.services.action_log import ActionLog
from approval_kernel.services.approval_workflow_service import (
    ApprovalWorkflowService,
    TransitionResult,
)
from approval_kernel.services.definition_manager import (
    WorkflowDefinitionManager,
    most_specific_workflow,
)
from approval_kernel.services.document_gateway import SqlDocumentGateway
from approval_kernel.services.instance_coordinator import InstanceCoordinator

__all__ = [
    "ActionLog",
    "ApprovalWorkflowService",
    "TransitionResult",
    "WorkflowDefinitionManager",
    "most_specific_workflow",
    "SqlDocumentGateway",
    "InstanceCoordinator",
]
