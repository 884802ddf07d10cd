"""
Module: approval_kernel.models.action
Responsibility: ORM persistence for the workflow action log -- the
    append-only record of who did what to a document, and when.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py (domain/ lazily, inside to_dto).

Invariants enforced:
    - Append-only: ORM before_update / before_delete listeners raise
      ImmutabilityViolationError.
    - Per-document ordering: UNIQUE(entity_type, entity_id, seq).
    - Tamper evidence: each row stores the hash of the previous row of the
      same document, forming a verifiable chain.

Failure modes:
    - ImmutabilityViolationError on any UPDATE or DELETE through the ORM.
    - IntegrityError when two writers race for the same seq.

Audit relevance:
    This table is the source of truth for the routing history of every
    document.  Instance rows carry redundant current-state fields for fast
    reads; the log is what auditors replay.
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
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import WorkflowActionRecord


class WorkflowActionModel(Base):
    """One executed routing transition. Append-only."""

    __tablename__ = "workflow_actions"

    __table_args__ = (
        CheckConstraint(
            "action IN ('submit', 'approve', 'reject', 'return', 'cancel')",
            name="ck_workflow_actions_valid_action",
        ),
        UniqueConstraint(
            "entity_type", "entity_id", "seq",
            name="uq_workflow_actions_entity_seq",
        ),
        Index(
            "ix_workflow_actions_entity_created",
            "entity_type", "entity_id", "created_at",
        ),
        Index(
            "ix_workflow_actions_instance_stage",
            "instance_id", "stage_position", "action",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    # Stage rows may later be deleted or renumbered; the log keeps what was
    # true when the action happened.
    stage_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    stage_position: Mapped[int | None] = mapped_column(nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkflowAction {self.entity_type}:{self.entity_id} "
            f"#{self.seq} {self.action} by {self.actor_id}>"
        )

    def to_dto(self) -> WorkflowActionRecord:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            EntityRef,
            WorkflowActionRecord as ActionDTO,
            WorkflowActionType,
        )

        return ActionDTO(
            action_id=self.id,
            entity=EntityRef(self.entity_type, self.entity_id),
            instance_id=self.instance_id,
            stage_id=self.stage_id,
            stage_position=self.stage_position,
            actor_id=self.actor_id,
            action=WorkflowActionType(self.action),
            comment=self.comment,
            created_at=self.created_at,
            seq=self.seq,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(WorkflowActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    """Prevent updates to workflow action records."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowAction",
        entity_id=str(target.id),
        reason="Workflow actions are immutable -- cannot modify",
    )


@event.listens_for(WorkflowActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    """Prevent deletion of workflow action records."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowAction",
        entity_id=str(target.id),
        reason="Workflow actions are immutable -- cannot delete",
    )
