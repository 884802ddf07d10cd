"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions and their stages.
Architecture position: Kernel > Models.  May import from db/base.py, db/types.py
    and (lazily, inside to_dto) domain/.

Invariants enforced:
    - approval_quorum >= 1, position >= 1, timeout_days NULL or >= 0
      (DB check constraints).
    - Stages are owned by their workflow: deleting a workflow deletes its
      stages (ORM cascade plus ON DELETE CASCADE).
    - Position contiguity and the single-final-stage rule are enforced by
      WorkflowDefinitionManager, not by the database; reorders rewrite every
      position in one flush and would trip a unique index mid-flush.

Failure modes:
    - IntegrityError on a check constraint violation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TrackedBase, UUIDString
from approval_kernel.db.types import StringList

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import WorkflowDefinition, WorkflowStage


class WorkflowDefinitionModel(TrackedBase):
    """A named workflow and the document types it applies to."""

    __tablename__ = "workflows"

    __table_args__ = (
        Index("ix_workflows_active", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    applicability: Mapped[list[str]] = mapped_column(
        StringList(), nullable=False, default=list,
    )
    revision: Mapped[int] = mapped_column(nullable=False, default=1)

    stages: Mapped[list["WorkflowStageModel"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStageModel.position",
        lazy="selectin",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Workflow {self.name} active={self.is_active} rev={self.revision}>"

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import WorkflowDefinition as WorkflowDTO

        return WorkflowDTO(
            workflow_id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            applicability=frozenset(self.applicability or ()),
            stages=tuple(
                stage.to_dto()
                for stage in sorted(self.stages, key=lambda s: (s.position, str(s.id)))
            ),
            revision=self.revision,
        )


class WorkflowStageModel(TrackedBase):
    """One stage of a workflow."""

    __tablename__ = "workflow_stages"

    __table_args__ = (
        CheckConstraint("position >= 1", name="ck_workflow_stages_position"),
        CheckConstraint("approval_quorum >= 1", name="ck_workflow_stages_quorum"),
        CheckConstraint(
            "timeout_days IS NULL OR timeout_days >= 0",
            name="ck_workflow_stages_timeout",
        ),
        Index("ix_workflow_stages_workflow_position", "workflow_id", "position"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_quorum: Mapped[int] = mapped_column(nullable=False, default=1)
    timeout_days: Mapped[int | None] = mapped_column(nullable=True)
    is_final: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    can_view: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_reject: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_cancel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    assigned_roles: Mapped[list[str]] = mapped_column(
        StringList(), nullable=False, default=list,
    )
    assigned_users: Mapped[list[str]] = mapped_column(
        StringList(), nullable=False, default=list,
    )

    workflow: Mapped[WorkflowDefinitionModel] = relationship(back_populates="stages")

    def __repr__(self) -> str:
        return f"<WorkflowStage {self.position}:{self.name} workflow={self.workflow_id}>"

    def to_dto(self) -> WorkflowStage:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            StageAssignment,
            StageCapabilities,
            WorkflowStage as StageDTO,
        )

        return StageDTO(
            stage_id=self.id,
            workflow_id=self.workflow_id,
            position=self.position,
            name=self.name,
            description=self.description,
            approval_quorum=self.approval_quorum,
            timeout_days=self.timeout_days,
            is_final=self.is_final,
            capabilities=StageCapabilities(
                can_view=self.can_view,
                can_edit=self.can_edit,
                can_approve=self.can_approve,
                can_reject=self.can_reject,
                can_cancel=self.can_cancel,
            ),
            assignment=StageAssignment(
                role_codes=frozenset(self.assigned_roles or ()),
                user_ids=frozenset(UUID(u) for u in self.assigned_users or ()),
            ),
        )

    def apply_capabilities(self, capabilities) -> None:
        """Copy capability flags from a StageCapabilities value."""
        self.can_view = capabilities.can_view
        self.can_edit = capabilities.can_edit
        self.can_approve = capabilities.can_approve
        self.can_reject = capabilities.can_reject
        self.can_cancel = capabilities.can_cancel

    def apply_assignment(self, assignment) -> None:
        """Copy role codes and user ids from a StageAssignment value."""
        self.assigned_roles = sorted(assignment.role_codes)
        self.assigned_users = sorted(str(u) for u in assignment.user_ids)
