"""Read-only selectors for workflow data."""

from approval_kernel.selectors.approval_selector import (
    ApprovalSelector,
    PendingApproval,
    WorkflowProgress,
)
from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.stage_selector import StageSelector

__all__ = [
    "BaseSelector",
    "StageSelector",
    "ApprovalSelector",
    "PendingApproval",
    "WorkflowProgress",
]
