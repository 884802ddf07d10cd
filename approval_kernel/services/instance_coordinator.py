"""
InstanceCoordinator -- lifecycle of workflow instances.

Responsibility:
    Opens an instance when a document is submitted, hands the open instance
    to the workflow service under a row lock, writes transition outcomes
    back under the optimistic version token, and stamps ``completed_at``
    when an instance closes.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - At most one open instance per document: checked here before insert
      and backed by the partial unique index ``uq_workflow_instances_open``.
    - Every write goes through the mapper's ``version_id_col``; a writer
      holding a stale row fails instead of overwriting.
    - Flush-only: never commits.

Failure modes:
    - ActiveInstanceExistsError when a document already has an open instance
      (including the IntegrityError raised by a racing insert).
    - OptimisticLockError when the row changed since it was loaded.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.stage_catalog import StageCatalog
from approval_kernel.domain.state_machine import TransitionOutcome
from approval_kernel.domain.workflow import (
    EntityRef,
    WorkflowDefinition,
    WorkflowInstance,
)
from approval_kernel.exceptions import ActiveInstanceExistsError, OptimisticLockError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.instance import WorkflowInstanceModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.instances")


class InstanceCoordinator(BaseService[WorkflowInstanceModel]):
    """Opens, locks, updates and closes workflow instances."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_open(self, entity: EntityRef) -> WorkflowInstance | None:
        model = self.session.execute(self._open_query(entity)).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def load_open_for_update(self, entity: EntityRef) -> WorkflowInstanceModel | None:
        """
        The open instance row, locked for the rest of the transaction.

        ``populate_existing`` refreshes an instance already in the identity
        map so the version token reflects the row as locked, not as first
        seen by this session.
        """
        return self.session.execute(
            self._open_query(entity)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_instances(self, entity: EntityRef) -> list[WorkflowInstance]:
        """Every instance of a document, oldest first."""
        rows = self.session.execute(
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.entity_type == entity.entity_type,
                WorkflowInstanceModel.entity_id == entity.entity_id,
            )
            .order_by(WorkflowInstanceModel.started_at, WorkflowInstanceModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def latest(self, entity: EntityRef) -> WorkflowInstance | None:
        instances = self.list_instances(entity)
        return instances[-1] if instances else None

    def count_for_workflow(self, workflow_id: UUID, open_only: bool = False) -> int:
        query = select(func.count(WorkflowInstanceModel.id)).where(
            WorkflowInstanceModel.workflow_id == workflow_id,
        )
        if open_only:
            query = query.where(WorkflowInstanceModel.completed_at.is_(None))
        return self.session.execute(query).scalar_one()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def open(
        self,
        entity: EntityRef,
        workflow: WorkflowDefinition,
        catalog: StageCatalog,
        actor_id: UUID,
        outcome: TransitionOutcome,
    ) -> WorkflowInstanceModel:
        """Create the open instance for a submitted document."""
        existing = self.get_open(entity)
        if existing is not None:
            raise ActiveInstanceExistsError(
                entity.entity_type, str(entity.entity_id), str(existing.instance_id),
            )

        model = WorkflowInstanceModel(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            workflow_id=workflow.workflow_id,
            status=outcome.to_state.status.value,
            current_stage_position=outcome.to_state.current_stage_position,
            stages_total=len(catalog),
            stages_completed=outcome.to_state.stages_completed,
            started_at=self._clock.now(),
            started_by=actor_id,
            completed_at=None,
        )
        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "instance_open_conflict",
                extra={"entity": str(entity), "workflow_id": str(workflow.workflow_id)},
            )
            raise ActiveInstanceExistsError(
                entity.entity_type, str(entity.entity_id),
            ) from exc

        logger.info(
            "instance_opened",
            extra={
                "entity": str(entity),
                "instance_id": str(model.id),
                "workflow_id": str(workflow.workflow_id),
                "stages_total": model.stages_total,
            },
        )
        return model

    def apply(
        self,
        model: WorkflowInstanceModel,
        outcome: TransitionOutcome,
    ) -> WorkflowInstance:
        """Write a transition outcome to a locked instance row."""
        target = outcome.to_state
        model.status = target.status.value
        model.current_stage_position = target.current_stage_position
        model.stages_completed = target.stages_completed
        if outcome.closes_instance:
            model.completed_at = self._clock.now()

        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "instance_version_conflict",
                extra={"instance_id": str(model.id), "action": outcome.action.value},
            )
            raise OptimisticLockError("WorkflowInstance", str(model.id)) from exc

        if outcome.closes_instance:
            logger.info(
                "instance_closed",
                extra={
                    "instance_id": str(model.id),
                    "status": model.status,
                    "stages_completed": model.stages_completed,
                },
            )
        return model.to_dto()

    @staticmethod
    def _open_query(entity: EntityRef):
        return select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.entity_type == entity.entity_type,
            WorkflowInstanceModel.entity_id == entity.entity_id,
            WorkflowInstanceModel.completed_at.is_(None),
        )
