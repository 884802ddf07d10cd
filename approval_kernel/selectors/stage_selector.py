"""
Module: approval_kernel.selectors.stage_selector
Responsibility: Load a workflow's stages from the database and wrap them in
    a StageCatalog.
Architecture position: Kernel > Selectors.

Failure modes:
    - WorkflowNotFoundError if the workflow does not exist.
    - StageNotFoundError if a stage id does not exist.
"""

from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.stage_catalog import StageCatalog
from approval_kernel.domain.workflow import WorkflowStage
from approval_kernel.exceptions import StageNotFoundError, WorkflowNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStageModel
from approval_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.stage")


class StageSelector(BaseSelector[WorkflowStageModel]):
    """Read access to workflow stages."""

    def get_catalog(self, workflow_id: UUID) -> StageCatalog:
        """
        Ordered stages of a workflow.

        Positions are re-normalized to 1..N if the stored rows have drifted;
        that is logged as a warning because the definition manager should
        never leave gaps behind.
        """
        if self.session.get(WorkflowDefinitionModel, workflow_id) is None:
            raise WorkflowNotFoundError(str(workflow_id))

        rows = self.session.execute(
            select(WorkflowStageModel)
            .where(WorkflowStageModel.workflow_id == workflow_id)
            .order_by(WorkflowStageModel.position, WorkflowStageModel.id)
        ).scalars().all()

        catalog = StageCatalog((row.to_dto() for row in rows), workflow_id=workflow_id)
        if catalog.was_normalized:
            logger.warning(
                "stage_positions_renormalized",
                extra={
                    "workflow_id": str(workflow_id),
                    "stored_positions": [row.position for row in rows],
                },
            )
        return catalog

    def get_stage(self, stage_id: UUID) -> WorkflowStage:
        row = self.session.get(WorkflowStageModel, stage_id)
        if row is None:
            raise StageNotFoundError(str(stage_id))
        return row.to_dto()
