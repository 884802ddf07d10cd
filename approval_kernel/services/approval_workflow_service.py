"""
ApprovalWorkflowService -- routes documents through their approval workflow.

Responsibility:
    The transactional shell around the pure ``ApprovalStateMachine``.  For
    each transition it loads the document and its open instance, asks the
    state machine for the outcome, then writes the instance, the document's
    routing fields and the action-log row together.

Architecture position:
    Kernel > Services -- imperative shell.  Composes
    WorkflowDefinitionManager (workflow resolution), StageSelector (stage
    catalogs), InstanceCoordinator (instance lifecycle), ActionLog (audit
    trail) and a DocumentGateway (document status).

Invariants enforced:
    - Each transition runs in one SAVEPOINT: if any write fails, the
      instance, document and log changes of that transition all roll back.
    - The open instance is read ``FOR UPDATE`` and written under its version
      token; a concurrent writer fails with OptimisticLockError.
    - Every logged transition appends exactly one action row.  A cancel from
      draft changes only the document.
    - Flush-only: the caller owns commit/rollback.

Failure modes:
    - DocumentNotFoundError, NoApplicableWorkflowError, InstanceNotFoundError.
    - ActiveInstanceExistsError when submitting with an open instance.
    - InvalidStateTransitionError, DuplicateApprovalError,
      DocumentFinalizedError from the state machine.
    - PermissionDeniedError, EmptyCommentError.
    - OptimisticLockError on a concurrent write.

Audit relevance:
    Every successful transition emits a structured log line and a hash-
    chained action row.  Rejected attempts are logged at WARNING with the
    error code.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.documents import DocumentGateway, DocumentSnapshot
from approval_kernel.domain.permissions import PermissionEvaluator
from approval_kernel.domain.stage_catalog import StageCatalog
from approval_kernel.domain.state_machine import (
    ApprovalStateMachine,
    RoutingState,
    TransitionOutcome,
)
from approval_kernel.domain.workflow import (
    ACTION_ORDER,
    Actor,
    DocumentStatus,
    EntityRef,
    WorkflowActionRecord,
    WorkflowActionType,
    WorkflowInstance,
    WorkflowStage,
)
from approval_kernel.exceptions import (
    ActiveInstanceExistsError,
    ApprovalKernelError,
    InstanceNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.instance import WorkflowInstanceModel
from approval_kernel.selectors.stage_selector import StageSelector
from approval_kernel.services.action_log import ActionLog
from approval_kernel.services.definition_manager import WorkflowDefinitionManager
from approval_kernel.services.document_gateway import SqlDocumentGateway
from approval_kernel.services.instance_coordinator import InstanceCoordinator

logger = get_logger("services.approval_workflow")

# Stands in for the mandatory comment when probing reject/return availability
_DRY_RUN_COMMENT = "available-actions dry run"


@dataclass(frozen=True)
class TransitionResult:
    """What a transition left behind."""

    entity: EntityRef
    action: WorkflowActionType
    status: DocumentStatus
    current_stage_position: int | None
    instance: WorkflowInstance | None
    record: WorkflowActionRecord | None
    outcome: TransitionOutcome


class ApprovalWorkflowService:
    """
    Submit, approve, reject, return and cancel documents.

    Contract:
        Methods flush within the caller's transaction and return frozen
        results.  Wrap calls in ``session_scope()`` (or commit yourself) to
        make them durable.
    """

    def __init__(
        self,
        session: Session,
        documents: DocumentGateway | None = None,
        clock: Clock | None = None,
        evaluator: PermissionEvaluator | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._documents = documents or SqlDocumentGateway(session)
        self._machine = ApprovalStateMachine(evaluator)
        self._definitions = WorkflowDefinitionManager(session)
        self._stages = StageSelector(session)
        self._instances = InstanceCoordinator(session, self._clock)
        self._actions = ActionLog(session, self._clock)

    @property
    def documents(self) -> DocumentGateway:
        return self._documents

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, entity: EntityRef, actor: Actor) -> TransitionResult:
        """Start routing a draft document through its workflow."""
        return self._run(WorkflowActionType.SUBMIT, entity, actor, lambda: self._submit(entity, actor))

    def approve(
        self,
        entity: EntityRef,
        actor: Actor,
        stage_id: UUID | None = None,
        comment: str | None = None,
    ) -> TransitionResult:
        """
        Approve the current stage.

        Args:
            stage_id: The stage the caller saw as current.  When given, the
                call fails if routing has moved on since.
        """
        def transition(doc, model, catalog, state):
            prior = self._actions.approvers_at_stage(model.id, state.current_stage_position)
            return self._machine.approve(state, catalog, actor, prior, stage_id)

        return self._run(
            WorkflowActionType.APPROVE, entity, actor,
            lambda: self._routed(WorkflowActionType.APPROVE, entity, actor, comment, transition),
        )

    def reject(
        self,
        entity: EntityRef,
        actor: Actor,
        comment: str | None,
        stage_id: UUID | None = None,
    ) -> TransitionResult:
        """End routing permanently. A comment is required."""
        def transition(doc, model, catalog, state):
            return self._machine.reject(state, catalog, actor, comment, stage_id)

        return self._run(
            WorkflowActionType.REJECT, entity, actor,
            lambda: self._routed(WorkflowActionType.REJECT, entity, actor, comment, transition),
        )

    def return_(
        self,
        entity: EntityRef,
        actor: Actor,
        comment: str | None,
        stage_id: UUID | None = None,
    ) -> TransitionResult:
        """Send the document back to draft. A comment is required."""
        def transition(doc, model, catalog, state):
            return self._machine.return_(state, catalog, actor, comment, stage_id)

        return self._run(
            WorkflowActionType.RETURN, entity, actor,
            lambda: self._routed(WorkflowActionType.RETURN, entity, actor, comment, transition),
        )

    def cancel(
        self,
        entity: EntityRef,
        actor: Actor,
        comment: str | None = None,
    ) -> TransitionResult:
        """Withdraw a draft or pending document. Creator only."""
        return self._run(
            WorkflowActionType.CANCEL, entity, actor,
            lambda: self._cancel(entity, actor, comment),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_available_actions(self, entity: EntityRef, actor: Actor) -> list[WorkflowActionType]:
        """Actions ``actor`` could take on the document right now, in canonical order."""
        doc = self._documents.get(entity)
        open_instance = self._instances.get_open(entity)
        catalog = (
            self._stages.get_catalog(open_instance.workflow_id)
            if open_instance is not None
            else None
        )
        state = self._state_of(doc, open_instance)

        available = []
        for action in ACTION_ORDER:
            try:
                self._dry_run(action, doc, open_instance, catalog, state, actor)
            except ApprovalKernelError:
                continue
            available.append(action)
        return available

    def get_current_stage(self, entity: EntityRef) -> WorkflowStage | None:
        """The stage the document is waiting at, or None outside routing."""
        instance = self._instances.get_open(entity)
        if instance is None or instance.current_stage_position is None:
            return None
        catalog = self._stages.get_catalog(instance.workflow_id)
        return catalog.stage_at(instance.current_stage_position)

    def get_history(self, entity: EntityRef) -> list[WorkflowActionRecord]:
        """Every logged action for the document, oldest first."""
        self._documents.get(entity)
        return self._actions.list(entity)

    def verify_history(self, entity: EntityRef) -> int:
        """Verify the document's action chain; returns the number of rows checked."""
        return self._actions.verify_chain(entity)

    # ------------------------------------------------------------------
    # Transition bodies
    # ------------------------------------------------------------------

    def _submit(self, entity: EntityRef, actor: Actor) -> TransitionResult:
        doc = self._documents.get_for_update(entity)

        existing = self._instances.get_open(entity)
        if existing is not None:
            raise ActiveInstanceExistsError(
                entity.entity_type, str(entity.entity_id), str(existing.instance_id),
            )

        state = RoutingState(doc.status, doc.current_stage_position)
        self._machine.check_status(WorkflowActionType.SUBMIT, state)
        workflow = self._definitions.resolve_workflow(doc.document_type)
        catalog = self._stages.get_catalog(workflow.workflow_id)

        outcome = self._machine.submit(state, catalog, actor, doc.created_by)
        model = self._instances.open(entity, workflow, catalog, actor.user_id, outcome)
        with LogContext.bind(workflow_id=workflow.workflow_id, instance_id=model.id):
            return self._record(entity, model, outcome, actor, None)

    def _routed(
        self,
        action: WorkflowActionType,
        entity: EntityRef,
        actor: Actor,
        comment: str | None,
        transition: Callable[..., TransitionOutcome],
    ) -> TransitionResult:
        doc = self._documents.get_for_update(entity)
        model = self._instances.load_open_for_update(entity)
        if model is None:
            self._machine.check_status(action, RoutingState(doc.status, doc.current_stage_position))
            raise InstanceNotFoundError(entity.entity_type, str(entity.entity_id))

        catalog = self._stages.get_catalog(model.workflow_id)
        state = RoutingState(
            DocumentStatus(model.status),
            model.current_stage_position,
            model.stages_completed,
        )
        with LogContext.bind(workflow_id=model.workflow_id, instance_id=model.id):
            outcome = transition(doc, model, catalog, state)
            return self._record(entity, model, outcome, actor, comment)

    def _cancel(self, entity: EntityRef, actor: Actor, comment: str | None) -> TransitionResult:
        doc = self._documents.get_for_update(entity)
        model = self._instances.load_open_for_update(entity)
        catalog = None
        if model is not None:
            catalog = self._stages.get_catalog(model.workflow_id)
            state = RoutingState(
                DocumentStatus(model.status),
                model.current_stage_position,
                model.stages_completed,
            )
        else:
            state = RoutingState(doc.status, doc.current_stage_position)
            if state.status == DocumentStatus.PENDING:
                raise InstanceNotFoundError(entity.entity_type, str(entity.entity_id))

        outcome = self._machine.cancel(
            state, catalog, actor, doc.created_by, entity, doc.is_finalized,
        )
        return self._record(entity, model, outcome, actor, comment)

    def _record(
        self,
        entity: EntityRef,
        model: WorkflowInstanceModel | None,
        outcome: TransitionOutcome,
        actor: Actor,
        comment: str | None,
    ) -> TransitionResult:
        """Write instance, document and log for one outcome."""
        instance = None
        if model is not None:
            instance = self._instances.apply(model, outcome)

        target = outcome.to_state
        self._documents.set_routing_state(entity, target.status, target.current_stage_position)

        record = None
        if outcome.log_action:
            record = self._actions.append(
                entity=entity,
                instance_id=model.id,
                actor_id=actor.user_id,
                action=outcome.action,
                stage=outcome.stage,
                comment=comment,
            )

        logger.info(
            _event_name(outcome),
            extra={
                "entity": str(entity),
                "action": outcome.action.value,
                "from_status": outcome.from_state.status.value,
                "to_status": target.status.value,
                "from_stage": outcome.from_state.current_stage_position,
                "to_stage": target.current_stage_position,
                "approvals_at_stage": outcome.approvals_at_stage or None,
            },
        )
        return TransitionResult(
            entity=entity,
            action=outcome.action,
            status=target.status,
            current_stage_position=target.current_stage_position,
            instance=instance,
            record=record,
            outcome=outcome,
        )

    def _run(
        self,
        action: WorkflowActionType,
        entity: EntityRef,
        actor: Actor,
        body: Callable[[], TransitionResult],
    ) -> TransitionResult:
        """Run one transition inside its own savepoint with bound log context."""
        with LogContext.bind(entity_id=str(entity), actor_id=actor.user_id):
            try:
                with self.session.begin_nested():
                    return body()
            except ApprovalKernelError as exc:
                logger.warning(
                    "transition_refused",
                    extra={"action": action.value, "error_code": exc.code, "reason": str(exc)},
                )
                raise

    def _dry_run(
        self,
        action: WorkflowActionType,
        doc: DocumentSnapshot,
        instance: WorkflowInstance | None,
        catalog: StageCatalog | None,
        state: RoutingState,
        actor: Actor,
    ) -> TransitionOutcome:
        if action == WorkflowActionType.CANCEL:
            return self._machine.cancel(
                state, catalog, actor, doc.created_by, doc.entity, doc.is_finalized,
            )
        if action == WorkflowActionType.SUBMIT:
            if instance is not None:
                raise ActiveInstanceExistsError(
                    doc.entity.entity_type, str(doc.entity.entity_id),
                )
            self._machine.check_status(action, state)
            workflow = self._definitions.resolve_workflow(doc.document_type)
            return self._machine.submit(
                state, self._stages.get_catalog(workflow.workflow_id), actor, doc.created_by,
            )

        if instance is None or catalog is None:
            self._machine.check_status(action, state)
            raise InstanceNotFoundError(doc.entity.entity_type, str(doc.entity.entity_id))
        if action == WorkflowActionType.APPROVE:
            prior = self._actions.approvers_at_stage(
                instance.instance_id, state.current_stage_position,
            )
            return self._machine.approve(state, catalog, actor, prior)
        if action == WorkflowActionType.REJECT:
            return self._machine.reject(state, catalog, actor, _DRY_RUN_COMMENT)
        return self._machine.return_(state, catalog, actor, _DRY_RUN_COMMENT)

    @staticmethod
    def _state_of(doc: DocumentSnapshot, instance: WorkflowInstance | None) -> RoutingState:
        if instance is not None:
            return RoutingState(
                instance.status, instance.current_stage_position, instance.stages_completed,
            )
        return RoutingState(doc.status, doc.current_stage_position)


def _event_name(outcome: TransitionOutcome) -> str:
    if outcome.action == WorkflowActionType.APPROVE:
        if not outcome.quorum_met:
            return "approval_recorded"
        if outcome.to_state.status == DocumentStatus.APPROVED:
            return "workflow_approved"
        return "stage_advanced"
    return {
        WorkflowActionType.SUBMIT: "document_submitted",
        WorkflowActionType.REJECT: "workflow_rejected",
        WorkflowActionType.RETURN: "document_returned",
        WorkflowActionType.CANCEL: "document_cancelled",
    }[outcome.action]
