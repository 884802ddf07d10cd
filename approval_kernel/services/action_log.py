"""
ActionLog -- append-only audit trail of routing transitions.

Responsibility:
    Appends one immutable row per executed transition and reads a
    document's history back in order.  Each row is chained to the previous
    row of the same document by hash, so any edit made outside the ORM is
    detectable with ``verify_chain``.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by ApprovalWorkflowService inside the same savepoint as the
    instance write.

Invariants enforced:
    - ``append`` is the only write.  Rows are never updated or deleted
      (ORM listeners in ``models/action.py``).
    - ``seq`` is 1, 2, 3 ... per document; ``prev_hash`` is the hash of the
      row with ``seq - 1`` (None for the first row).
    - Flush-only: never commits.

Failure modes:
    - AuditChainBrokenError from ``verify_chain`` on a hash mismatch or a
      broken link.
    - IntegrityError if two writers race for the same ``seq``.

Audit relevance:
    This is the source of truth for "who did what, when" on every document.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    EntityRef,
    WorkflowActionRecord,
    WorkflowActionType,
    WorkflowStage,
)
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.action import WorkflowActionModel
from approval_kernel.services.base import BaseService
from approval_kernel.utils.hashing import hash_action, hash_payload

logger = get_logger("services.action_log")


def _compute_action_hash(
    *,
    entity_type: str,
    entity_id: UUID,
    seq: int,
    action: str,
    instance_id: UUID,
    stage_id: UUID | None,
    stage_position: int | None,
    actor_id: UUID,
    comment: str | None,
    created_at,
    prev_hash: str | None,
) -> str:
    payload_hash = hash_payload({
        "instance_id": instance_id,
        "stage_id": stage_id,
        "stage_position": stage_position,
        "actor_id": actor_id,
        "comment": comment,
        "created_at": created_at,
    })
    return hash_action(
        entity_type, str(entity_id), seq, action, payload_hash, prev_hash,
    )


class ActionLog(BaseService[WorkflowActionModel]):
    """Append-only log of workflow actions."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def append(
        self,
        entity: EntityRef,
        instance_id: UUID,
        actor_id: UUID,
        action: WorkflowActionType,
        stage: WorkflowStage | None = None,
        comment: str | None = None,
    ) -> WorkflowActionRecord:
        """Append one action row and return its record."""
        last = self._last(entity)
        seq = 1 if last is None else last.seq + 1
        prev_hash = None if last is None else last.hash
        created_at = self._clock.now()
        stage_id = stage.stage_id if stage is not None else None
        stage_position = stage.position if stage is not None else None

        row_hash = _compute_action_hash(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            seq=seq,
            action=action.value,
            instance_id=instance_id,
            stage_id=stage_id,
            stage_position=stage_position,
            actor_id=actor_id,
            comment=comment,
            created_at=created_at,
            prev_hash=prev_hash,
        )

        model = WorkflowActionModel(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            instance_id=instance_id,
            stage_id=stage_id,
            stage_position=stage_position,
            actor_id=actor_id,
            action=action.value,
            comment=comment,
            created_at=created_at,
            seq=seq,
            prev_hash=prev_hash,
            hash=row_hash,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "action_appended",
            extra={
                "entity": str(entity),
                "action": action.value,
                "seq": seq,
                "stage_position": stage_position,
            },
        )
        return model.to_dto()

    def list(self, entity: EntityRef) -> list[WorkflowActionRecord]:
        """All actions for a document, oldest first."""
        return [row.to_dto() for row in self._rows(entity)]

    def count(self, entity: EntityRef) -> int:
        return self.session.execute(
            select(func.count(WorkflowActionModel.id)).where(
                WorkflowActionModel.entity_type == entity.entity_type,
                WorkflowActionModel.entity_id == entity.entity_id,
            )
        ).scalar_one()

    def approvers_at_stage(self, instance_id: UUID, stage_position: int) -> frozenset[UUID]:
        """Distinct actors who approved ``stage_position`` within one instance."""
        actor_ids = self.session.execute(
            select(WorkflowActionModel.actor_id).where(
                WorkflowActionModel.instance_id == instance_id,
                WorkflowActionModel.stage_position == stage_position,
                WorkflowActionModel.action == WorkflowActionType.APPROVE.value,
            )
        ).scalars().all()
        return frozenset(actor_ids)

    def verify_chain(self, entity: EntityRef) -> int:
        """
        Recompute every hash of a document's log.

        Returns:
            Number of rows verified.

        Raises:
            AuditChainBrokenError: on the first row whose stored link or
                hash does not match.
        """
        expected_prev: str | None = None
        rows = sorted(self._rows(entity), key=lambda r: r.seq)
        for expected_seq, row in enumerate(rows, start=1):
            if row.seq != expected_seq or row.prev_hash != expected_prev:
                raise AuditChainBrokenError(
                    str(row.id), expected_prev or "GENESIS", row.prev_hash or "GENESIS",
                )
            computed = _compute_action_hash(
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                seq=row.seq,
                action=row.action,
                instance_id=row.instance_id,
                stage_id=row.stage_id,
                stage_position=row.stage_position,
                actor_id=row.actor_id,
                comment=row.comment,
                created_at=row.created_at,
                prev_hash=row.prev_hash,
            )
            if computed != row.hash:
                logger.error(
                    "action_chain_broken",
                    extra={"entity": str(entity), "seq": row.seq, "action_id": str(row.id)},
                )
                raise AuditChainBrokenError(str(row.id), computed, row.hash)
            expected_prev = row.hash

        logger.debug(
            "action_chain_verified",
            extra={"entity": str(entity), "rows": len(rows)},
        )
        return len(rows)

    def _rows(self, entity: EntityRef):
        return self.session.execute(
            select(WorkflowActionModel)
            .where(
                WorkflowActionModel.entity_type == entity.entity_type,
                WorkflowActionModel.entity_id == entity.entity_id,
            )
            .order_by(WorkflowActionModel.created_at, WorkflowActionModel.seq)
        ).scalars().all()

    def _last(self, entity: EntityRef) -> WorkflowActionModel | None:
        return self.session.execute(
            select(WorkflowActionModel)
            .where(
                WorkflowActionModel.entity_type == entity.entity_type,
                WorkflowActionModel.entity_id == entity.entity_id,
            )
            .order_by(WorkflowActionModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
