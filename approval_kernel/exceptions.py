"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (HTTP handlers, batch jobs, the admin UI
backend) must react to failures precisely: a PermissionDeniedError becomes a
403, a ConflictError tells a retrying client that its submission already
landed, an InvalidStateTransitionError means the document moved on.

Every exception therefore has:
  1. A TYPED class (catch by type, not by message)
  2. A class-level CODE attribute (machine-readable, API-safe)
  3. Structured attributes carrying the context (not just a message)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ValidationError
    |   +-- EmptyCommentError
    |   +-- StageSetMismatchError
    |   +-- AmbiguousWorkflowError
    |   +-- WorkflowHasNoStagesError
    |
    +-- NotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- StageNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- NoApplicableWorkflowError
    |
    +-- PermissionDeniedError
    |
    +-- InvalidStateTransitionError
    |   +-- DuplicateApprovalError
    |   +-- DocumentFinalizedError
    |
    +-- ConflictError
    |   +-- ActiveInstanceExistsError
    |   +-- WorkflowInUseError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                         | When Raised
--------------|------------------------------|-------------------------------------
Validation    | VALIDATION_ERROR             | Malformed input (empty name, ...)
              | EMPTY_COMMENT                | reject/return without a comment
              | STAGE_SET_MISMATCH           | reorder ids != existing stage ids
              | AMBIGUOUS_WORKFLOW           | >1 equally specific active workflow
              | WORKFLOW_HAS_NO_STAGES       | submit against an empty workflow
--------------|------------------------------|-------------------------------------
Not found     | WORKFLOW_NOT_FOUND           | Unknown workflow id
              | STAGE_NOT_FOUND              | Unknown stage id / position
              | INSTANCE_NOT_FOUND           | No open instance for a document
              | DOCUMENT_NOT_FOUND           | Unknown document reference
              | NO_APPLICABLE_WORKFLOW       | No active workflow for doc type
--------------|------------------------------|-------------------------------------
Permission    | PERMISSION_DENIED            | Capability or assignment check fails
--------------|------------------------------|-------------------------------------
Transition    | INVALID_STATE_TRANSITION     | Action illegal from status/stage
              | DUPLICATE_APPROVAL           | Same approver twice at one stage
              | DOCUMENT_FINALIZED           | Cancel on an externally settled doc
--------------|------------------------------|-------------------------------------
Conflict      | ACTIVE_INSTANCE_EXISTS       | Submit with an open instance
              | WORKFLOW_IN_USE              | Topology edit while routing
--------------|------------------------------|-------------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT     | Instance changed by another txn
Immutability  | IMMUTABILITY_VIOLATION       | UPDATE/DELETE of an action row
Audit         | AUDIT_CHAIN_BROKEN           | Action hash chain mismatch

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        service.approve(ref, actor, stage_id=stage_id)
    except PermissionDeniedError as e:
        return forbidden(code=e.code, action=e.action)
    except InvalidStateTransitionError as e:
        return conflict(code=e.code, status=e.current_status)

Retried submissions must treat ActiveInstanceExistsError as "already
submitted" rather than as a failure to retry again.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation


class ValidationError(ApprovalKernelError):
    """Malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class EmptyCommentError(ValidationError):
    """A comment is mandatory for this action."""

    code: str = "EMPTY_COMMENT"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A comment is required to {action}", field="comment")


class StageSetMismatchError(ValidationError):
    """Reorder request does not name exactly the workflow's stages."""

    code: str = "STAGE_SET_MISMATCH"

    def __init__(
        self,
        workflow_id: str,
        missing: list[str],
        unexpected: list[str],
        duplicated: list[str],
    ):
        self.workflow_id = workflow_id
        self.missing = missing
        self.unexpected = unexpected
        self.duplicated = duplicated
        super().__init__(
            f"Stage order for workflow {workflow_id} does not match its stages: "
            f"missing={missing}, unexpected={unexpected}, duplicated={duplicated}",
            field="ordered_stage_ids",
        )


class AmbiguousWorkflowError(ValidationError):
    """More than one active workflow claims the same document type."""

    code: str = "AMBIGUOUS_WORKFLOW"

    def __init__(self, document_type: str, workflow_ids: list[str]):
        self.document_type = document_type
        self.workflow_ids = workflow_ids
        super().__init__(
            f"Document type {document_type!r} is claimed by several active "
            f"workflows: {', '.join(workflow_ids)}",
            field="applicability",
        )


class WorkflowHasNoStagesError(ValidationError):
    """Cannot route a document through a workflow without stages."""

    code: str = "WORKFLOW_HAS_NO_STAGES"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} has no stages")


# Not found


class NotFoundError(ApprovalKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class WorkflowNotFoundError(NotFoundError):
    """Workflow definition does not exist."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class StageNotFoundError(NotFoundError):
    """Workflow stage does not exist."""

    code: str = "STAGE_NOT_FOUND"

    def __init__(self, stage_ref: str):
        self.stage_ref = stage_ref
        super().__init__(f"Workflow stage not found: {stage_ref}")


class InstanceNotFoundError(NotFoundError):
    """No open workflow instance for the document."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"No open workflow instance for {entity_type} {entity_id}")


class DocumentNotFoundError(NotFoundError):
    """Document is unknown to the gateway."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Document not found: {entity_type} {entity_id}")


class NoApplicableWorkflowError(NotFoundError):
    """No active workflow applies to the document type."""

    code: str = "NO_APPLICABLE_WORKFLOW"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"No active workflow applies to document type {document_type!r}")


# Permission


class PermissionDeniedError(ApprovalKernelError):
    """Actor may not perform the action at this stage."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, action: str, reason: str, stage_id: str | None = None):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        self.stage_id = stage_id
        where = f" at stage {stage_id}" if stage_id else ""
        super().__init__(f"Actor {actor_id} may not {action}{where}: {reason}")


# State transitions


class InvalidStateTransitionError(ApprovalKernelError):
    """Action is illegal from the current status or stage."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        action: str,
        current_status: str,
        reason: str | None = None,
        current_stage_position: int | None = None,
    ):
        self.action = action
        self.current_status = current_status
        self.current_stage_position = current_stage_position
        self.reason = reason
        message = f"Cannot {action} from status {current_status}"
        if current_stage_position is not None:
            message += f" at stage {current_stage_position}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DuplicateApprovalError(InvalidStateTransitionError):
    """Approver already approved this stage of this instance."""

    code: str = "DUPLICATE_APPROVAL"

    def __init__(self, actor_id: str, stage_position: int):
        self.actor_id = actor_id
        super().__init__(
            "approve",
            "pending",
            reason=f"actor {actor_id} already approved this stage",
            current_stage_position=stage_position,
        )


class DocumentFinalizedError(InvalidStateTransitionError):
    """Document was settled outside the workflow (e.g. paid)."""

    code: str = "DOCUMENT_FINALIZED"

    def __init__(self, entity_type: str, entity_id: str, current_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            "cancel",
            current_status,
            reason=f"{entity_type} {entity_id} is already finalized",
        )


# Conflicts


class ConflictError(ApprovalKernelError):
    """Operation collides with existing state."""

    code: str = "CONFLICT"


class ActiveInstanceExistsError(ConflictError):
    """Document already has an open workflow instance."""

    code: str = "ACTIVE_INSTANCE_EXISTS"

    def __init__(self, entity_type: str, entity_id: str, instance_id: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.instance_id = instance_id
        super().__init__(
            f"{entity_type} {entity_id} already has an open workflow instance"
            + (f" ({instance_id})" if instance_id else "")
        )


class WorkflowInUseError(ConflictError):
    """Workflow has instances that depend on its current shape."""

    code: str = "WORKFLOW_IN_USE"

    def __init__(self, workflow_id: str, operation: str, instance_count: int):
        self.workflow_id = workflow_id
        self.operation = operation
        self.instance_count = instance_count
        super().__init__(
            f"Cannot {operation} on workflow {workflow_id}: "
            f"{instance_count} instance(s) depend on it"
        )


# Concurrency


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit


class AuditError(ApprovalKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Action hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, action_id: str, expected_hash: str, actual_hash: str):
        self.action_id = action_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Action chain broken at {action_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
