"""
StageCatalog -- Ordered, read-only view of a workflow's stages.

Responsibility:
    Sorts a workflow's stages by position, re-normalizes stored positions
    to the contiguous range 1..N when they have drifted, and answers the
    routing questions the state machine asks ("what is the first stage?",
    "what comes after position p?").  Also provides the pure position
    arithmetic the definition manager uses for insert, delete and reorder.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Positions exposed by a catalog are exactly 1..N.
    - Every ``positions_after_*`` helper returns a total id -> position map
      whose values are exactly 1..N.
    - Normalization is stable: ties on stored position are broken by stage id.

Failure modes:
    - ValidationError if an insert position is outside 1..N+1.
    - StageSetMismatchError if a reorder request does not name exactly the
      existing stage ids.
    - StageNotFoundError if a deleted id is not part of the workflow.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import replace
from uuid import UUID

from approval_kernel.domain.workflow import WorkflowStage
from approval_kernel.exceptions import (
    StageNotFoundError,
    StageSetMismatchError,
    ValidationError,
)


class StageCatalog:
    """Ordered stages of one workflow, positions guaranteed 1..N."""

    def __init__(
        self,
        stages: Iterable[WorkflowStage],
        workflow_id: UUID | None = None,
    ):
        self.workflow_id = workflow_id
        ordered = sorted(stages, key=lambda s: (s.position, str(s.stage_id)))
        self._normalized = any(
            stage.position != index for index, stage in enumerate(ordered, start=1)
        )
        if self._normalized:
            ordered = [
                replace(stage, position=index)
                for index, stage in enumerate(ordered, start=1)
            ]
        self._stages: tuple[WorkflowStage, ...] = tuple(ordered)
        self._by_id = {stage.stage_id: stage for stage in self._stages}

    @property
    def was_normalized(self) -> bool:
        """True if stored positions had gaps or duplicates."""
        return self._normalized

    @property
    def stages(self) -> tuple[WorkflowStage, ...]:
        return self._stages

    @property
    def stage_ids(self) -> tuple[UUID, ...]:
        return tuple(stage.stage_id for stage in self._stages)

    @property
    def final_stage(self) -> WorkflowStage | None:
        """The stage marked final, if any."""
        for stage in self._stages:
            if stage.is_final:
                return stage
        return None

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[WorkflowStage]:
        return iter(self._stages)

    def __bool__(self) -> bool:
        return bool(self._stages)

    def first_stage(self) -> WorkflowStage | None:
        return self._stages[0] if self._stages else None

    def stage_at(self, position: int) -> WorkflowStage | None:
        if 1 <= position <= len(self._stages):
            return self._stages[position - 1]
        return None

    def stage_after(self, position: int) -> WorkflowStage | None:
        """The stage at ``position + 1``, or None at or past the end."""
        return self.stage_at(position + 1)

    def get(self, stage_id: UUID) -> WorkflowStage | None:
        return self._by_id.get(stage_id)

    def completes_at(self, stage: WorkflowStage) -> bool:
        """True if approving ``stage`` ends routing instead of advancing."""
        return stage.is_final or self.stage_after(stage.position) is None


# =========================================================================
# Position arithmetic
# =========================================================================


def _as_positions(ordered_ids: Sequence[UUID]) -> dict[UUID, int]:
    return {stage_id: index for index, stage_id in enumerate(ordered_ids, start=1)}


def positions_after_insert(
    ordered_ids: Sequence[UUID],
    new_id: UUID,
    position: int | None = None,
) -> dict[UUID, int]:
    """
    Positions after inserting ``new_id``.

    With no position the new stage is appended at N+1.  With an explicit
    position p the new stage takes p and every stage at p or later shifts
    up by one.
    """
    count = len(ordered_ids)
    if position is None:
        position = count + 1
    if position < 1 or position > count + 1:
        raise ValidationError(
            f"Stage position must be between 1 and {count + 1}, got {position}",
            field="position",
        )
    ids = list(ordered_ids)
    ids.insert(position - 1, new_id)
    return _as_positions(ids)


def positions_after_delete(
    ordered_ids: Sequence[UUID],
    removed_id: UUID,
) -> dict[UUID, int]:
    """Positions after removing ``removed_id``; later stages move down by one."""
    if removed_id not in ordered_ids:
        raise StageNotFoundError(str(removed_id))
    return _as_positions([i for i in ordered_ids if i != removed_id])


def positions_after_reorder(
    ordered_ids: Sequence[UUID],
    requested_ids: Sequence[UUID],
    workflow_id: UUID | str = "",
) -> dict[UUID, int]:
    """
    Positions that follow ``requested_ids`` exactly.

    Raises:
        StageSetMismatchError: the request has missing, unknown or
            repeated ids.
    """
    existing = set(ordered_ids)
    requested = Counter(requested_ids)
    missing = sorted(str(i) for i in existing - requested.keys())
    unexpected = sorted(str(i) for i in requested.keys() - existing)
    duplicated = sorted(str(i) for i, n in requested.items() if n > 1)
    if missing or unexpected or duplicated:
        raise StageSetMismatchError(
            str(workflow_id), missing, unexpected, duplicated,
        )
    return _as_positions(requested_ids)
