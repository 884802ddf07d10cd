"""
Workflow configuration validator (``approval_config.validator``).

Checks a ``WorkflowConfigSet`` before it is seeded, collecting every
problem instead of stopping at the first one.

Errors (must not be seeded):
    * duplicate workflow names
    * empty names or empty applicability
    * more than one final stage in a workflow
    * approval_quorum < 1 or negative timeout_days
    * user ids that are not UUIDs
    * two active workflows equally specific for the same document type

Warnings (seeded, but worth a look):
    * workflows without stages
    * stages with no role or user assigned (nobody can approve them)
    * stages after the final stage (never reached)
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from uuid import UUID

from approval_config.schema import WorkflowConfigSet, WorkflowDef


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_workflow_set(config: WorkflowConfigSet) -> ConfigValidationResult:
    """Validate every workflow in a configuration set."""
    result = ConfigValidationResult()

    _validate_name_uniqueness(config, result)
    for workflow in config.workflows:
        _validate_workflow(workflow, result)
    _validate_resolution(config, result)

    return result


def _validate_name_uniqueness(config: WorkflowConfigSet, result: ConfigValidationResult) -> None:
    seen: set[str] = set()
    for workflow in config.workflows:
        if workflow.name in seen:
            result.add_error(f"Duplicate workflow name: {workflow.name!r}")
        seen.add(workflow.name)


def _validate_workflow(workflow: WorkflowDef, result: ConfigValidationResult) -> None:
    label = workflow.name or "<unnamed>"
    if not workflow.name or not workflow.name.strip():
        result.add_error("Workflow name must not be empty")
    if not workflow.applicability:
        result.add_error(f"Workflow {label!r} has no applicability")
    if not workflow.stages:
        result.add_warning(f"Workflow {label!r} has no stages")

    finals = [i for i, s in enumerate(workflow.stages, start=1) if s.is_final]
    if len(finals) > 1:
        result.add_error(f"Workflow {label!r} has {len(finals)} final stages at positions {finals}")
    elif finals and finals[0] < len(workflow.stages):
        result.add_warning(
            f"Workflow {label!r}: stages after final position {finals[0]} are never reached"
        )

    for position, stage in enumerate(workflow.stages, start=1):
        where = f"Workflow {label!r} stage {position}"
        if not stage.name or not stage.name.strip():
            result.add_error(f"{where}: name must not be empty")
        if stage.approval_quorum < 1:
            result.add_error(f"{where}: approval_quorum must be >= 1")
        if stage.timeout_days is not None and stage.timeout_days < 0:
            result.add_error(f"{where}: timeout_days must be >= 0")
        if not stage.roles and not stage.users:
            result.add_warning(f"{where}: no roles or users assigned")
        for user in stage.users:
            try:
                UUID(user)
            except ValueError:
                result.add_error(f"{where}: user {user!r} is not a UUID")


def _validate_resolution(config: WorkflowConfigSet, result: ConfigValidationResult) -> None:
    by_type: dict[str, list[WorkflowDef]] = defaultdict(list)
    for workflow in config.workflows:
        if workflow.is_active:
            for document_type in workflow.applicability:
                by_type[document_type].append(workflow)

    for document_type, workflows in sorted(by_type.items()):
        narrowest = min(len(w.applicability) for w in workflows)
        tied = sorted(w.name for w in workflows if len(w.applicability) == narrowest)
        if len(tied) > 1:
            result.add_error(
                f"Document type {document_type!r} matches {tied} equally; "
                "make one more specific or deactivate it"
            )
