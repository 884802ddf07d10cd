"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read models for approvers and document screens -- an
    approver's inbox of documents waiting on them, and a document's
    progress through its workflow.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - The inbox lists only open, pending instances whose current stage lets
      the actor approve, and skips stages the actor has already approved.
    - Results are ordered oldest first so the longest-waiting work leads.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.permissions import PermissionEvaluator
from approval_kernel.domain.workflow import (
    Actor,
    DocumentStatus,
    EntityRef,
    StageAction,
    WorkflowActionType,
    WorkflowStage,
)
from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.models.instance import WorkflowInstanceModel
from approval_kernel.models.workflow import WorkflowDefinitionModel
from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.stage_selector import StageSelector


@dataclass(frozen=True)
class PendingApproval:
    """One document waiting on an approver."""

    entity: EntityRef
    instance_id: UUID
    workflow_id: UUID
    workflow_name: str
    stage: WorkflowStage
    started_at: datetime


@dataclass(frozen=True)
class WorkflowProgress:
    """Where a document stands in its latest workflow run."""

    entity: EntityRef
    instance_id: UUID
    workflow_id: UUID
    workflow_name: str
    status: DocumentStatus
    current_stage: WorkflowStage | None
    stages_total: int
    stages_completed: int
    started_at: datetime
    completed_at: datetime | None


class ApprovalSelector(BaseSelector[WorkflowInstanceModel]):
    """Approver inbox and per-document progress."""

    def __init__(self, session, evaluator: PermissionEvaluator | None = None):
        super().__init__(session)
        self._evaluator = evaluator or PermissionEvaluator()
        self._stages = StageSelector(session)

    def list_pending_for_actor(self, actor: Actor) -> list[PendingApproval]:
        rows = self.session.execute(
            select(WorkflowInstanceModel, WorkflowDefinitionModel.name)
            .join(
                WorkflowDefinitionModel,
                WorkflowDefinitionModel.id == WorkflowInstanceModel.workflow_id,
            )
            .where(
                WorkflowInstanceModel.completed_at.is_(None),
                WorkflowInstanceModel.status == DocumentStatus.PENDING.value,
            )
            .order_by(WorkflowInstanceModel.started_at, WorkflowInstanceModel.id)
        ).all()

        already_approved = self._approved_stages(actor.user_id)
        catalogs = {}
        pending = []
        for instance, workflow_name in rows:
            if instance.workflow_id not in catalogs:
                catalogs[instance.workflow_id] = self._stages.get_catalog(instance.workflow_id)
            stage = catalogs[instance.workflow_id].stage_at(instance.current_stage_position or 0)
            if stage is None:
                continue
            if (instance.id, stage.position) in already_approved:
                continue
            if not self._evaluator.evaluate(stage, actor, StageAction.APPROVE).allowed:
                continue
            pending.append(
                PendingApproval(
                    entity=EntityRef(instance.entity_type, instance.entity_id),
                    instance_id=instance.id,
                    workflow_id=instance.workflow_id,
                    workflow_name=workflow_name,
                    stage=stage,
                    started_at=instance.started_at,
                )
            )
        return pending

    def get_progress(self, entity: EntityRef) -> WorkflowProgress | None:
        """Progress of the document's most recent instance, or None if never submitted."""
        row = self.session.execute(
            select(WorkflowInstanceModel, WorkflowDefinitionModel.name)
            .join(
                WorkflowDefinitionModel,
                WorkflowDefinitionModel.id == WorkflowInstanceModel.workflow_id,
            )
            .where(
                WorkflowInstanceModel.entity_type == entity.entity_type,
                WorkflowInstanceModel.entity_id == entity.entity_id,
            )
            .order_by(
                WorkflowInstanceModel.completed_at.is_(None).desc(),
                WorkflowInstanceModel.started_at.desc(),
            )
            .limit(1)
        ).first()
        if row is None:
            return None

        instance, workflow_name = row
        current_stage = None
        if instance.current_stage_position is not None:
            current_stage = self._stages.get_catalog(instance.workflow_id).stage_at(
                instance.current_stage_position,
            )
        return WorkflowProgress(
            entity=entity,
            instance_id=instance.id,
            workflow_id=instance.workflow_id,
            workflow_name=workflow_name,
            status=DocumentStatus(instance.status),
            current_stage=current_stage,
            stages_total=instance.stages_total,
            stages_completed=instance.stages_completed,
            started_at=instance.started_at,
            completed_at=instance.completed_at,
        )

    def _approved_stages(self, actor_id: UUID) -> set[tuple[UUID, int]]:
        rows = self.session.execute(
            select(WorkflowActionModel.instance_id, WorkflowActionModel.stage_position).where(
                WorkflowActionModel.actor_id == actor_id,
                WorkflowActionModel.action == WorkflowActionType.APPROVE.value,
            )
        ).all()
        return {(instance_id, position) for instance_id, position in rows}
