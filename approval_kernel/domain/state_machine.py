"""
Approval state machine -- pure transition rules for routed documents.

Responsibility:
    Given a document's routing state, its workflow's stage catalog and an
    acting user, compute the next routing state for submit, approve, reject,
    return and cancel, or raise the typed error that explains why the
    transition is illegal.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The transactional
    shell that loads state, applies outcomes and writes the action log is
    ``approval_kernel.services.approval_workflow_service``.

Invariants enforced:
    - Terminal statuses (approved, rejected, cancelled) admit no transition.
    - A stage advances only after ``approval_quorum`` distinct approvals.
    - Approving the final stage, or the last stage, yields ``approved`` with
      no current stage, regardless of position.
    - Reject and return require a non-blank comment.
    - Only the document creator may submit or cancel.

Failure modes:
    - InvalidStateTransitionError for an illegal status or a stale stage.
    - DuplicateApprovalError when an approver repeats at the same stage.
    - DocumentFinalizedError when cancelling an externally settled document.
    - PermissionDeniedError from the permission evaluator.
    - EmptyCommentError when a reject/return comment is blank.
    - WorkflowHasNoStagesError when submitting into an empty workflow.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from approval_kernel.domain.permissions import PermissionEvaluator
from approval_kernel.domain.stage_catalog import StageCatalog
from approval_kernel.domain.workflow import (
    ALLOWED_ACTIONS,
    TERMINAL_STATUSES,
    Actor,
    DocumentStatus,
    EntityRef,
    StageAction,
    WorkflowActionType,
    WorkflowStage,
)
from approval_kernel.exceptions import (
    DocumentFinalizedError,
    DuplicateApprovalError,
    EmptyCommentError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    WorkflowHasNoStagesError,
)


@dataclass(frozen=True)
class RoutingState:
    """A document's position in its approval route."""

    status: DocumentStatus
    current_stage_position: int | None = None
    stages_completed: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class TransitionOutcome:
    """
    Result of a legal transition.

    ``stage`` is the stage the action was taken at (None for a cancel from
    draft).  ``log_action`` is False only for a cancel that never left draft.
    ``closes_instance`` is True when the open instance ends with this step.
    """

    action: WorkflowActionType
    from_state: RoutingState
    to_state: RoutingState
    stage: WorkflowStage | None = None
    log_action: bool = True
    closes_instance: bool = False
    quorum_met: bool = False
    approvals_at_stage: int = 0

    @property
    def advanced(self) -> bool:
        return (
            self.from_state.status == DocumentStatus.PENDING
            and self.to_state.status == DocumentStatus.PENDING
            and self.to_state.current_stage_position != self.from_state.current_stage_position
        )


class ApprovalStateMachine:
    """Computes transition outcomes. Holds no state of its own."""

    def __init__(self, evaluator: PermissionEvaluator | None = None):
        self._evaluator = evaluator or PermissionEvaluator()

    @property
    def evaluator(self) -> PermissionEvaluator:
        return self._evaluator

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(
        self,
        state: RoutingState,
        catalog: StageCatalog,
        actor: Actor,
        creator: UUID,
    ) -> TransitionOutcome:
        self.check_status(WorkflowActionType.SUBMIT, state)
        self._require_creator(WorkflowActionType.SUBMIT, actor, creator)

        first = catalog.first_stage()
        if first is None:
            raise WorkflowHasNoStagesError(str(catalog.workflow_id))

        return TransitionOutcome(
            action=WorkflowActionType.SUBMIT,
            from_state=state,
            to_state=RoutingState(DocumentStatus.PENDING, first.position, 0),
            stage=first,
        )

    def approve(
        self,
        state: RoutingState,
        catalog: StageCatalog,
        actor: Actor,
        prior_approvers: frozenset[UUID] = frozenset(),
        expected_stage_id: UUID | None = None,
    ) -> TransitionOutcome:
        """
        Record one approval at the current stage.

        Args:
            prior_approvers: Actors who already approved the current stage
                in the current instance.
            expected_stage_id: The stage the caller believes is current.
        """
        stage = self._current_stage(
            WorkflowActionType.APPROVE, state, catalog, expected_stage_id,
        )
        self._evaluator.require(stage, actor, StageAction.APPROVE)

        if actor.user_id in prior_approvers:
            raise DuplicateApprovalError(str(actor.user_id), stage.position)

        approvals = len(prior_approvers) + 1
        if approvals < stage.approval_quorum:
            return TransitionOutcome(
                action=WorkflowActionType.APPROVE,
                from_state=state,
                to_state=state,
                stage=stage,
                quorum_met=False,
                approvals_at_stage=approvals,
            )

        completed = state.stages_completed + 1
        if catalog.completes_at(stage):
            to_state = RoutingState(DocumentStatus.APPROVED, None, completed)
            closes = True
        else:
            next_stage = catalog.stage_after(stage.position)
            to_state = RoutingState(DocumentStatus.PENDING, next_stage.position, completed)
            closes = False

        return TransitionOutcome(
            action=WorkflowActionType.APPROVE,
            from_state=state,
            to_state=to_state,
            stage=stage,
            closes_instance=closes,
            quorum_met=True,
            approvals_at_stage=approvals,
        )

    def reject(
        self,
        state: RoutingState,
        catalog: StageCatalog,
        actor: Actor,
        comment: str | None,
        expected_stage_id: UUID | None = None,
    ) -> TransitionOutcome:
        stage = self._current_stage(
            WorkflowActionType.REJECT, state, catalog, expected_stage_id,
        )
        _require_comment(WorkflowActionType.REJECT, comment)
        self._evaluator.require(stage, actor, StageAction.REJECT)

        return TransitionOutcome(
            action=WorkflowActionType.REJECT,
            from_state=state,
            to_state=RoutingState(DocumentStatus.REJECTED, None, state.stages_completed),
            stage=stage,
            closes_instance=True,
        )

    def return_(
        self,
        state: RoutingState,
        catalog: StageCatalog,
        actor: Actor,
        comment: str | None,
        expected_stage_id: UUID | None = None,
    ) -> TransitionOutcome:
        """Send the document back to draft for rework."""
        stage = self._current_stage(
            WorkflowActionType.RETURN, state, catalog, expected_stage_id,
        )
        _require_comment(WorkflowActionType.RETURN, comment)
        # Returning needs the same grant as rejecting
        self._evaluator.require(stage, actor, StageAction.REJECT)

        return TransitionOutcome(
            action=WorkflowActionType.RETURN,
            from_state=state,
            to_state=RoutingState(DocumentStatus.DRAFT, None, state.stages_completed),
            stage=stage,
            closes_instance=True,
        )

    def cancel(
        self,
        state: RoutingState,
        catalog: StageCatalog | None,
        actor: Actor,
        creator: UUID,
        entity: EntityRef,
        is_finalized: bool = False,
    ) -> TransitionOutcome:
        self.check_status(WorkflowActionType.CANCEL, state)
        self._require_creator(WorkflowActionType.CANCEL, actor, creator)

        stage = None
        if catalog is not None and state.current_stage_position is not None:
            stage = catalog.stage_at(state.current_stage_position)

        if is_finalized:
            raise DocumentFinalizedError(
                entity.entity_type, str(entity.entity_id), state.status.value,
            )

        left_draft = state.status != DocumentStatus.DRAFT
        return TransitionOutcome(
            action=WorkflowActionType.CANCEL,
            from_state=state,
            to_state=RoutingState(DocumentStatus.CANCELLED, None, state.stages_completed),
            stage=stage,
            log_action=left_draft,
            closes_instance=left_draft,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def check_status(self, action: WorkflowActionType, state: RoutingState) -> None:
        if state.is_terminal:
            raise InvalidStateTransitionError(
                action.value,
                state.status.value,
                reason="document has reached a terminal status",
            )
        if action not in ALLOWED_ACTIONS[state.status]:
            raise InvalidStateTransitionError(
                action.value,
                state.status.value,
                current_stage_position=state.current_stage_position,
            )

    def _require_creator(
        self, action: WorkflowActionType, actor: Actor, creator: UUID,
    ) -> None:
        if actor.user_id != creator:
            raise PermissionDeniedError(
                str(actor.user_id),
                action.value,
                "only the document creator may do this",
            )

    def _current_stage(
        self,
        action: WorkflowActionType,
        state: RoutingState,
        catalog: StageCatalog,
        expected_stage_id: UUID | None,
    ) -> WorkflowStage:
        self.check_status(action, state)

        stage = None
        if state.current_stage_position is not None:
            stage = catalog.stage_at(state.current_stage_position)
        if stage is None:
            raise InvalidStateTransitionError(
                action.value,
                state.status.value,
                reason="current stage no longer exists in the workflow",
                current_stage_position=state.current_stage_position,
            )

        if expected_stage_id is not None and expected_stage_id != stage.stage_id:
            raise InvalidStateTransitionError(
                action.value,
                state.status.value,
                reason=f"stage {expected_stage_id} is not the current stage",
                current_stage_position=state.current_stage_position,
            )
        return stage


def _require_comment(action: WorkflowActionType, comment: str | None) -> None:
    if comment is None or not comment.strip():
        raise EmptyCommentError(action.value)
