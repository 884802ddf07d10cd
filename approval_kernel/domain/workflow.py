"""
Workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval engine: document statuses and the
status-level transition table, workflow/stage definitions, stage
capabilities and assignment, actors, instances and action records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``ALLOWED_ACTIONS`` lists the only actions legal from each status.
  Terminal statuses have no outgoing actions.
* ``WorkflowDefinition.stages`` is ordered by position.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


# =========================================================================
# Statuses and actions
# =========================================================================


class DocumentStatus(str, Enum):
    """Routing status shared by documents and workflow instances."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.APPROVED,
    DocumentStatus.REJECTED,
    DocumentStatus.CANCELLED,
})


class WorkflowActionType(str, Enum):
    """Transitions recorded in the action log."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    CANCEL = "cancel"


ALLOWED_ACTIONS: dict[DocumentStatus, frozenset[WorkflowActionType]] = {
    DocumentStatus.DRAFT: frozenset({
        WorkflowActionType.SUBMIT,
        WorkflowActionType.CANCEL,
    }),
    DocumentStatus.PENDING: frozenset({
        WorkflowActionType.APPROVE,
        WorkflowActionType.REJECT,
        WorkflowActionType.RETURN,
        WorkflowActionType.CANCEL,
    }),
    DocumentStatus.APPROVED: frozenset(),
    DocumentStatus.REJECTED: frozenset(),
    DocumentStatus.CANCELLED: frozenset(),
}

# Canonical order for UI enablement lists
ACTION_ORDER: tuple[WorkflowActionType, ...] = (
    WorkflowActionType.SUBMIT,
    WorkflowActionType.APPROVE,
    WorkflowActionType.REJECT,
    WorkflowActionType.RETURN,
    WorkflowActionType.CANCEL,
)


class StageAction(str, Enum):
    """Actions a stage can grant to its assignees."""

    VIEW = "view"
    EDIT = "edit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


# =========================================================================
# Stage configuration
# =========================================================================


@dataclass(frozen=True)
class StageCapabilities:
    """Capability flags of a stage."""

    can_view: bool = True
    can_edit: bool = False
    can_approve: bool = True
    can_reject: bool = True
    can_cancel: bool = False

    def grants(self, action: StageAction) -> bool:
        return bool(getattr(self, f"can_{action.value}"))

    def granted(self) -> frozenset[StageAction]:
        return frozenset(a for a in StageAction if self.grants(a))


@dataclass(frozen=True)
class StageAssignment:
    """Who may act at a stage: role codes and/or individual users.

    An empty assignment means the stage is unassigned.
    """

    role_codes: frozenset[str] = frozenset()
    user_ids: frozenset[UUID] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.role_codes and not self.user_ids

    def matches(self, actor: Actor) -> bool:
        if actor.user_id in self.user_ids:
            return True
        return bool(self.role_codes & actor.role_codes)


@dataclass(frozen=True)
class Actor:
    """A user acting on a document, with the role codes they hold."""

    user_id: UUID
    role_codes: frozenset[str] = frozenset()

    @classmethod
    def of(cls, user_id: UUID, *roles: str) -> Actor:
        return cls(user_id=user_id, role_codes=frozenset(roles))


@dataclass(frozen=True)
class WorkflowStage:
    """One step of a workflow. Immutable snapshot."""

    stage_id: UUID
    workflow_id: UUID
    position: int
    name: str
    approval_quorum: int = 1
    timeout_days: int | None = None
    is_final: bool = False
    capabilities: StageCapabilities = field(default_factory=StageCapabilities)
    assignment: StageAssignment = field(default_factory=StageAssignment)
    description: str | None = None


@dataclass(frozen=True)
class StageDraft:
    """Input for a new stage; the position is assigned by the definition manager."""

    name: str
    approval_quorum: int = 1
    timeout_days: int | None = None
    is_final: bool = False
    capabilities: StageCapabilities = field(default_factory=StageCapabilities)
    assignment: StageAssignment = field(default_factory=StageAssignment)
    description: str | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named, ordered sequence of stages. Immutable snapshot.

    ``revision`` increases on every mutation of the definition or its
    stages; a caller holding an older revision holds a stale view.
    """

    workflow_id: UUID
    name: str
    is_active: bool
    applicability: frozenset[str]
    stages: tuple[WorkflowStage, ...] = ()
    description: str | None = None
    revision: int = 1

    def applies_to(self, document_type: str) -> bool:
        return document_type in self.applicability


# =========================================================================
# Runtime records
# =========================================================================


@dataclass(frozen=True)
class EntityRef:
    """Reference to a routed document (invoice, payment, ...)."""

    entity_type: str
    entity_id: UUID

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


@dataclass(frozen=True)
class WorkflowInstance:
    """One run of one document through one workflow."""

    instance_id: UUID
    entity: EntityRef
    workflow_id: UUID
    status: DocumentStatus
    current_stage_position: int | None
    started_at: datetime
    started_by: UUID
    stages_total: int
    stages_completed: int = 0
    completed_at: datetime | None = None
    version: int = 1

    @property
    def is_open(self) -> bool:
        return self.completed_at is None


@dataclass(frozen=True)
class WorkflowActionRecord:
    """Immutable audit record of one executed transition."""

    action_id: UUID
    entity: EntityRef
    instance_id: UUID
    stage_id: UUID | None
    stage_position: int | None
    actor_id: UUID
    action: WorkflowActionType
    comment: str | None
    created_at: datetime
    seq: int
    prev_hash: str | None
    hash: str
