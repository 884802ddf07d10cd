"""
WorkflowDefinitionManager -- authoring of workflows and their stages.

Responsibility:
    Create, update, clone, activate/deactivate and delete workflow
    definitions; add, update, reorder and delete stages; resolve which
    active workflow routes a given document type.

Architecture position:
    Kernel > Services -- imperative shell.  Position arithmetic is delegated
    to the pure helpers in ``approval_kernel.domain.stage_catalog``.

Invariants enforced:
    - Stage positions are exactly 1..N after every add, delete and reorder.
    - At most one stage per workflow is marked final.
    - ``approval_quorum >= 1``; ``timeout_days`` is None or >= 0; names are
      non-blank; applicability is non-empty.
    - Every mutation bumps ``revision`` and returns a fresh frozen snapshot.
    - Stage topology (add, delete, reorder, final marker) is frozen while
      open instances route against the workflow.
    - Among active workflows, every document type resolves to exactly one
      most specific workflow (fewest document types); activation that would
      break this is refused.
    - Each mutation runs in its own SAVEPOINT; a refused call leaves no
      partial change in the session.
    - Flush-only: never commits.

Failure modes:
    - ValidationError (and StageSetMismatchError, AmbiguousWorkflowError)
      for malformed input or ambiguous activation.
    - WorkflowNotFoundError / StageNotFoundError for unknown ids.
    - NoApplicableWorkflowError when no active workflow applies.
    - WorkflowInUseError when instances depend on the workflow.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select

from approval_kernel.domain.stage_catalog import (
    StageCatalog,
    positions_after_delete,
    positions_after_insert,
    positions_after_reorder,
)
from approval_kernel.domain.workflow import (
    StageAssignment,
    StageCapabilities,
    StageDraft,
    WorkflowDefinition,
)
from approval_kernel.exceptions import (
    AmbiguousWorkflowError,
    ApprovalKernelError,
    NoApplicableWorkflowError,
    StageNotFoundError,
    ValidationError,
    WorkflowInUseError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStageModel
from approval_kernel.services.base import BaseService
from approval_kernel.services.instance_coordinator import InstanceCoordinator

logger = get_logger("services.definitions")

WORKFLOW_PATCH_FIELDS = frozenset({"name", "description", "is_active", "applicability"})
STAGE_PATCH_FIELDS = frozenset({
    "name",
    "description",
    "approval_quorum",
    "timeout_days",
    "is_final",
    "capabilities",
    "assignment",
})


# =========================================================================
# Validation helpers
# =========================================================================


def _require_name(name: str | None, field: str = "name") -> str:
    if name is None or not str(name).strip():
        raise ValidationError("Name must not be empty", field=field)
    return str(name).strip()


def _require_applicability(applicability: Iterable[str] | None) -> list[str]:
    if applicability is None or isinstance(applicability, str):
        raise ValidationError(
            "Applicability must be a collection of document types",
            field="applicability",
        )
    types = sorted({str(t).strip() for t in applicability if str(t).strip()})
    if not types:
        raise ValidationError(
            "Workflow must apply to at least one document type",
            field="applicability",
        )
    return types


def _require_quorum(quorum: Any) -> int:
    if isinstance(quorum, bool) or not isinstance(quorum, int) or quorum < 1:
        raise ValidationError(
            f"approval_quorum must be an integer >= 1, got {quorum!r}",
            field="approval_quorum",
        )
    return quorum


def _require_timeout(timeout_days: Any) -> int | None:
    if timeout_days is None:
        return None
    if isinstance(timeout_days, bool) or not isinstance(timeout_days, int) or timeout_days < 0:
        raise ValidationError(
            f"timeout_days must be None or an integer >= 0, got {timeout_days!r}",
            field="timeout_days",
        )
    return timeout_days


def _check_patch(patch: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(patch) - allowed)
    if unknown:
        raise ValidationError(
            f"Cannot update field(s) {unknown}; allowed: {sorted(allowed)}",
            field=unknown[0],
        )


def most_specific_workflow(
    candidates: Sequence[WorkflowDefinition],
    document_type: str,
) -> WorkflowDefinition:
    """
    Pick the workflow that routes ``document_type``.

    The candidate with the fewest document types wins; a tie at the
    smallest size is ambiguous.
    """
    matching = [w for w in candidates if w.is_active and w.applies_to(document_type)]
    if not matching:
        raise NoApplicableWorkflowError(document_type)
    narrowest = min(len(w.applicability) for w in matching)
    winners = sorted(
        (w for w in matching if len(w.applicability) == narrowest),
        key=lambda w: str(w.workflow_id),
    )
    if len(winners) > 1:
        raise AmbiguousWorkflowError(
            document_type, [str(w.workflow_id) for w in winners],
        )
    return winners[0]


# =========================================================================
# Service
# =========================================================================


class WorkflowDefinitionManager(BaseService[WorkflowDefinitionModel]):
    """Authoring operations on workflow definitions and stages."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_workflow(self, workflow_id: UUID) -> WorkflowDefinition:
        return self._load(workflow_id).to_dto()

    def list_workflows(self, active_only: bool = False) -> list[WorkflowDefinition]:
        query = select(WorkflowDefinitionModel).order_by(
            WorkflowDefinitionModel.name, WorkflowDefinitionModel.id,
        )
        if active_only:
            query = query.where(WorkflowDefinitionModel.is_active.is_(True))
        return [m.to_dto() for m in self.session.execute(query).scalars().all()]

    def list_applicable_workflows(self, document_type: str) -> list[WorkflowDefinition]:
        """Active workflows that apply to ``document_type``, by name."""
        return [
            w for w in self.list_workflows(active_only=True)
            if w.applies_to(document_type)
        ]

    def resolve_workflow(self, document_type: str) -> WorkflowDefinition:
        """The single active workflow that routes ``document_type``."""
        return most_specific_workflow(
            self.list_applicable_workflows(document_type), document_type,
        )

    # ------------------------------------------------------------------
    # Workflow mutations
    # ------------------------------------------------------------------

    def create_workflow(
        self,
        name: str,
        applicability: Iterable[str],
        actor_id: UUID,
        description: str | None = None,
        is_active: bool = True,
    ) -> WorkflowDefinition:
        """Create a workflow with no stages."""
        with self._savepoint("create_workflow"):
            model = WorkflowDefinitionModel(
                id=uuid4(),
                name=_require_name(name),
                description=description,
                is_active=bool(is_active),
                applicability=_require_applicability(applicability),
                revision=1,
                created_by_id=actor_id,
            )
            if model.is_active:
                self._check_activation(model)

            self.session.add(model)
            self.session.flush()

        logger.info(
            "workflow_created",
            extra={
                "workflow_id": str(model.id),
                "workflow_name": model.name,
                "applicability": model.applicability,
                "is_active": model.is_active,
            },
        )
        return model.to_dto()

    def update_workflow(
        self,
        workflow_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID,
    ) -> WorkflowDefinition:
        """Change name, description, is_active or applicability."""
        _check_patch(patch, WORKFLOW_PATCH_FIELDS)
        with self._savepoint("update_workflow"):
            model = self._load(workflow_id)

            if "name" in patch:
                model.name = _require_name(patch["name"])
            if "description" in patch:
                model.description = patch["description"]
            if "applicability" in patch:
                model.applicability = _require_applicability(patch["applicability"])
            if "is_active" in patch:
                model.is_active = bool(patch["is_active"])
            if model.is_active and ("applicability" in patch or "is_active" in patch):
                self._check_activation(model)

            return self._touch(model, actor_id, "workflow_updated", fields=sorted(patch))

    def toggle_active(
        self,
        workflow_id: UUID,
        is_active: bool,
        actor_id: UUID,
    ) -> WorkflowDefinition:
        with self._savepoint("toggle_active"):
            model = self._load(workflow_id)
            model.is_active = bool(is_active)
            if model.is_active:
                self._check_activation(model)
            return self._touch(
                model, actor_id, "workflow_activation_changed", is_active=model.is_active,
            )

    def clone_workflow(
        self,
        workflow_id: UUID,
        new_name: str,
        actor_id: UUID,
    ) -> WorkflowDefinition:
        """Deep copy with fresh ids, same positions, inactive."""
        source = self._load(workflow_id)
        clone = WorkflowDefinitionModel(
            name=_require_name(new_name),
            description=source.description,
            is_active=False,
            applicability=list(source.applicability),
            revision=1,
            created_by_id=actor_id,
        )
        for stage in sorted(source.stages, key=lambda s: s.position):
            clone.stages.append(
                WorkflowStageModel(
                    position=stage.position,
                    name=stage.name,
                    description=stage.description,
                    approval_quorum=stage.approval_quorum,
                    timeout_days=stage.timeout_days,
                    is_final=stage.is_final,
                    can_view=stage.can_view,
                    can_edit=stage.can_edit,
                    can_approve=stage.can_approve,
                    can_reject=stage.can_reject,
                    can_cancel=stage.can_cancel,
                    assigned_roles=list(stage.assigned_roles),
                    assigned_users=list(stage.assigned_users),
                    created_by_id=actor_id,
                )
            )
        self.session.add(clone)
        self.session.flush()

        logger.info(
            "workflow_cloned",
            extra={
                "source_workflow_id": str(source.id),
                "workflow_id": str(clone.id),
                "stage_count": len(clone.stages),
            },
        )
        return clone.to_dto()

    def delete_workflow(self, workflow_id: UUID) -> None:
        """
        Remove a workflow and its stages.

        Refused while any instance references the workflow; historical
        instances keep their routing record, so retire such workflows with
        ``toggle_active`` instead.
        """
        model = self._load(workflow_id)
        in_use = InstanceCoordinator(self.session).count_for_workflow(workflow_id)
        if in_use:
            raise WorkflowInUseError(str(workflow_id), "delete", in_use)

        self.session.delete(model)
        self.session.flush()
        logger.info("workflow_deleted", extra={"workflow_id": str(workflow_id)})

    # ------------------------------------------------------------------
    # Stage mutations
    # ------------------------------------------------------------------

    def add_stage(
        self,
        workflow_id: UUID,
        stage: StageDraft,
        actor_id: UUID,
        position: int | None = None,
    ) -> WorkflowDefinition:
        """Append a stage, or insert it at ``position`` shifting later stages up."""
        with self._savepoint("add_stage"):
            model = self._load(workflow_id)
            self._require_idle(model, "add_stage")

            row = WorkflowStageModel(
                id=uuid4(),
                name=_require_name(stage.name),
                description=stage.description,
                approval_quorum=_require_quorum(stage.approval_quorum),
                timeout_days=_require_timeout(stage.timeout_days),
                is_final=bool(stage.is_final),
                created_by_id=actor_id,
            )
            row.apply_capabilities(stage.capabilities)
            row.apply_assignment(stage.assignment)
            if row.is_final:
                self._require_no_other_final(model, None)

            positions = positions_after_insert(
                [s.id for s in self._ordered_stages(model)], row.id, position,
            )
            model.stages.append(row)
            self._assign_positions(model, positions)

            return self._touch(
                model, actor_id, "stage_added",
                stage_id=str(row.id), position=row.position,
            )

    def update_stage(
        self,
        stage_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID,
    ) -> WorkflowDefinition:
        """Change stage attributes other than its position."""
        _check_patch(patch, STAGE_PATCH_FIELDS)
        with self._savepoint("update_stage"):
            row = self._load_stage(stage_id)
            model = row.workflow

            if "name" in patch:
                row.name = _require_name(patch["name"])
            if "description" in patch:
                row.description = patch["description"]
            if "approval_quorum" in patch:
                row.approval_quorum = _require_quorum(patch["approval_quorum"])
            if "timeout_days" in patch:
                row.timeout_days = _require_timeout(patch["timeout_days"])
            if "is_final" in patch and bool(patch["is_final"]) != row.is_final:
                self._require_idle(model, "update_stage")
                if patch["is_final"]:
                    self._require_no_other_final(model, row.id)
                row.is_final = bool(patch["is_final"])
            if "capabilities" in patch:
                capabilities = patch["capabilities"]
                if not isinstance(capabilities, StageCapabilities):
                    raise ValidationError("capabilities must be StageCapabilities", field="capabilities")
                row.apply_capabilities(capabilities)
            if "assignment" in patch:
                assignment = patch["assignment"]
                if not isinstance(assignment, StageAssignment):
                    raise ValidationError("assignment must be StageAssignment", field="assignment")
                row.apply_assignment(assignment)

            row.updated_by_id = actor_id
            return self._touch(
                model, actor_id, "stage_updated",
                stage_id=str(row.id), fields=sorted(patch),
            )

    def reorder_stages(
        self,
        workflow_id: UUID,
        ordered_stage_ids: Sequence[UUID],
        actor_id: UUID,
    ) -> WorkflowDefinition:
        """Reassign every position to follow ``ordered_stage_ids``."""
        with self._savepoint("reorder_stages"):
            model = self._load(workflow_id)
            positions = positions_after_reorder(
                [s.id for s in self._ordered_stages(model)],
                list(ordered_stage_ids),
                workflow_id,
            )
            self._require_idle(model, "reorder_stages")
            self._assign_positions(model, positions)

            return self._touch(
                model, actor_id, "stages_reordered",
                order=[str(i) for i in ordered_stage_ids],
            )

    def delete_stage(self, stage_id: UUID, actor_id: UUID) -> WorkflowDefinition:
        """Remove a stage and close the gap it leaves."""
        with self._savepoint("delete_stage"):
            row = self._load_stage(stage_id)
            model = row.workflow
            self._require_idle(model, "delete_stage")

            positions = positions_after_delete(
                [s.id for s in self._ordered_stages(model)], row.id,
            )
            model.stages.remove(row)
            self._assign_positions(model, positions)

            return self._touch(
                model, actor_id, "stage_deleted",
                stage_id=str(stage_id),
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _savepoint(self, operation: str) -> Iterator[None]:
        """Run one mutation in a SAVEPOINT; a refusal rolls back everything it touched."""
        try:
            with self.session.begin_nested():
                yield
        except ApprovalKernelError as exc:
            logger.warning(
                "definition_change_refused",
                extra={"operation": operation, "error_code": exc.code, "reason": str(exc)},
            )
            raise

    def _load(self, workflow_id: UUID) -> WorkflowDefinitionModel:
        model = self.session.get(WorkflowDefinitionModel, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model

    def _load_stage(self, stage_id: UUID) -> WorkflowStageModel:
        row = self.session.get(WorkflowStageModel, stage_id)
        if row is None:
            raise StageNotFoundError(str(stage_id))
        return row

    @staticmethod
    def _ordered_stages(model: WorkflowDefinitionModel) -> list[WorkflowStageModel]:
        catalog = StageCatalog((s.to_dto() for s in model.stages), workflow_id=model.id)
        by_id = {s.id: s for s in model.stages}
        return [by_id[stage_id] for stage_id in catalog.stage_ids]

    @staticmethod
    def _assign_positions(
        model: WorkflowDefinitionModel,
        positions: Mapping[UUID, int],
    ) -> None:
        for stage in model.stages:
            stage.position = positions[stage.id]

    def _require_idle(self, model: WorkflowDefinitionModel, operation: str) -> None:
        open_count = InstanceCoordinator(self.session).count_for_workflow(model.id, open_only=True)
        if open_count:
            raise WorkflowInUseError(str(model.id), operation, open_count)

    @staticmethod
    def _require_no_other_final(
        model: WorkflowDefinitionModel,
        except_stage_id: UUID | None,
    ) -> None:
        for stage in model.stages:
            if stage.is_final and stage.id != except_stage_id:
                raise ValidationError(
                    f"Workflow already has a final stage: {stage.name!r}",
                    field="is_final",
                )

    def _check_activation(self, model: WorkflowDefinitionModel) -> None:
        """Refuse a configuration in which some document type has no single winner."""
        others = [
            m for m in self.session.execute(
                select(WorkflowDefinitionModel).where(
                    WorkflowDefinitionModel.is_active.is_(True),
                )
            ).scalars().all()
            if m.id != model.id
        ]
        candidate = WorkflowDefinition(
            workflow_id=model.id,
            name=model.name,
            is_active=True,
            applicability=frozenset(model.applicability),
        )
        active = [candidate] + [
            WorkflowDefinition(
                workflow_id=m.id,
                name=m.name,
                is_active=True,
                applicability=frozenset(m.applicability),
            )
            for m in others
        ]
        for document_type in sorted(candidate.applicability):
            most_specific_workflow(active, document_type)

    def _touch(
        self,
        model: WorkflowDefinitionModel,
        actor_id: UUID,
        event: str,
        **fields: Any,
    ) -> WorkflowDefinition:
        model.revision += 1
        model.updated_by_id = actor_id
        self.session.flush()

        with LogContext.bind(workflow_id=str(model.id), actor_id=str(actor_id)):
            logger.info(event, extra={"revision": model.revision, **fields})
        return model.to_dto()
