"""
Module: approval_kernel.models.instance
Responsibility: ORM persistence for workflow instances -- one run of one
    document through one workflow.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain/ lazily, inside to_dto).

Invariants enforced:
    - At most one open instance (completed_at IS NULL) per document: partial
      unique index on (entity_type, entity_id).
    - Optimistic concurrency: ``version`` is the mapper's version_id_col, so
      every UPDATE carries ``WHERE version = :expected`` and a stale write
      raises StaleDataError.
    - Status values are limited by a check constraint.

Failure modes:
    - IntegrityError when a second open instance is inserted.
    - StaleDataError when a concurrent writer already bumped ``version``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import WorkflowInstance


class WorkflowInstanceModel(Base):
    """Routing state of one document in one workflow run."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_instances_valid_status",
        ),
        Index(
            "uq_workflow_instances_open",
            "entity_type", "entity_id",
            unique=True,
            postgresql_where=text("completed_at IS NULL"),
            sqlite_where=text("completed_at IS NULL"),
        ),
        Index(
            "ix_workflow_instances_entity",
            "entity_type", "entity_id", "started_at",
        ),
        Index(
            "ix_workflow_instances_routing",
            "status", "workflow_id", "current_stage_position",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflows.id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    current_stage_position: Mapped[int | None] = mapped_column(nullable=True)
    stages_total: Mapped[int] = mapped_column(nullable=False)
    stages_completed: Mapped[int] = mapped_column(nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    started_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.entity_type}:{self.entity_id} "
            f"status={self.status} stage={self.current_stage_position} v{self.version}>"
        )

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    def to_dto(self) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            DocumentStatus,
            EntityRef,
            WorkflowInstance as InstanceDTO,
        )

        return InstanceDTO(
            instance_id=self.id,
            entity=EntityRef(self.entity_type, self.entity_id),
            workflow_id=self.workflow_id,
            status=DocumentStatus(self.status),
            current_stage_position=self.current_stage_position,
            started_at=self.started_at,
            started_by=self.started_by,
            stages_total=self.stages_total,
            stages_completed=self.stages_completed,
            completed_at=self.completed_at,
            version=self.version,
        )
