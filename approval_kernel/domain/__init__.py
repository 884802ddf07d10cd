"""
Pure domain layer.

This module contains immutable value objects and routing logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected Clock.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.documents import DocumentGateway, DocumentSnapshot
from approval_kernel.domain.permissions import PermissionDecision, PermissionEvaluator
from approval_kernel.domain.stage_catalog import (
    StageCatalog,
    positions_after_delete,
    positions_after_insert,
    positions_after_reorder,
)
from approval_kernel.domain.state_machine import (
    ApprovalStateMachine,
    RoutingState,
    TransitionOutcome,
)
from approval_kernel.domain.workflow import (
    ACTION_ORDER,
    ALLOWED_ACTIONS,
    TERMINAL_STATUSES,
    Actor,
    DocumentStatus,
    EntityRef,
    StageAction,
    StageAssignment,
    StageCapabilities,
    StageDraft,
    WorkflowActionRecord,
    WorkflowActionType,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStage,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Workflow types
    "DocumentStatus",
    "WorkflowActionType",
    "StageAction",
    "TERMINAL_STATUSES",
    "ALLOWED_ACTIONS",
    "ACTION_ORDER",
    "StageCapabilities",
    "StageAssignment",
    "StageDraft",
    "Actor",
    "WorkflowStage",
    "WorkflowDefinition",
    "EntityRef",
    "WorkflowInstance",
    "WorkflowActionRecord",
    # Documents
    "DocumentSnapshot",
    "DocumentGateway",
    # Routing logic
    "StageCatalog",
    "positions_after_insert",
    "positions_after_delete",
    "positions_after_reorder",
    "PermissionEvaluator",
    "PermissionDecision",
    "ApprovalStateMachine",
    "RoutingState",
    "TransitionOutcome",
]
