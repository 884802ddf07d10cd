"""
Permission evaluation for workflow stages.

Responsibility:
    Decide whether an actor may perform a stage action (view, edit,
    approve, reject, cancel) at a given stage.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A stage action is allowed only if the stage's capabilities grant it.
    - A non-empty assignment must match the actor by user id or role code.
    - An unassigned stage (empty assignment) denies everyone, except that
      the document's creator may always cancel.
    - With no stage (document outside routing) only the creator is allowed,
      and only to view, edit or cancel.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from approval_kernel.domain.workflow import Actor, StageAction, WorkflowStage
from approval_kernel.exceptions import PermissionDeniedError

_CREATOR_ACTIONS_OUTSIDE_ROUTING = frozenset({
    StageAction.VIEW,
    StageAction.EDIT,
    StageAction.CANCEL,
})


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of a permission check."""

    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


class PermissionEvaluator:
    """Stateless evaluator of stage capabilities and assignment."""

    def evaluate(
        self,
        stage: WorkflowStage | None,
        actor: Actor,
        action: StageAction,
        document_creator: UUID | None = None,
    ) -> PermissionDecision:
        """Decide whether ``actor`` may perform ``action`` at ``stage``.

        Args:
            stage: The current stage, or None when the document is not routing.
            actor: The acting user and their role codes.
            action: The requested stage action.
            document_creator: The document's creator, for the cancel rule.
        """
        is_creator = document_creator is not None and actor.user_id == document_creator

        if action == StageAction.CANCEL and is_creator:
            return PermissionDecision(True, "document creator may cancel")

        if stage is None:
            if is_creator and action in _CREATOR_ACTIONS_OUTSIDE_ROUTING:
                return PermissionDecision(True, "document creator outside routing")
            return PermissionDecision(False, "document is not at a workflow stage")

        if not stage.capabilities.grants(action):
            return PermissionDecision(
                False, f"stage '{stage.name}' does not grant {action.value}",
            )

        if stage.assignment.is_empty:
            return PermissionDecision(False, f"stage '{stage.name}' is unassigned")

        if not stage.assignment.matches(actor):
            return PermissionDecision(
                False, f"actor is not assigned to stage '{stage.name}'",
            )

        return PermissionDecision(True, "assigned and granted")

    def require(
        self,
        stage: WorkflowStage | None,
        actor: Actor,
        action: StageAction,
        document_creator: UUID | None = None,
    ) -> None:
        """Raise PermissionDeniedError unless ``evaluate`` allows the action."""
        decision = self.evaluate(stage, actor, action, document_creator)
        if not decision.allowed:
            raise PermissionDeniedError(
                str(actor.user_id),
                action.value,
                decision.reason,
                stage_id=str(stage.stage_id) if stage is not None else None,
            )

    def allowed_actions(
        self,
        stage: WorkflowStage | None,
        actor: Actor,
        document_creator: UUID | None = None,
    ) -> frozenset[StageAction]:
        """All stage actions ``actor`` may perform at ``stage``."""
        return frozenset(
            action
            for action in StageAction
            if self.evaluate(stage, actor, action, document_creator).allowed
        )
