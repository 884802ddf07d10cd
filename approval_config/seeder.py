"""
Seed workflow definitions into the database (``approval_config.seeder``).

Translates parsed ``WorkflowDef`` objects into kernel calls on
``WorkflowDefinitionManager``.  Seeding is idempotent by workflow name:
a workflow that already exists is left untouched and reported as skipped.

Each workflow is created inactive, given its stages, and only then
activated, so the kernel's activation checks see the complete definition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.schema import StageDef, WorkflowConfigSet, WorkflowDef
from approval_kernel.domain.workflow import (
    StageAssignment,
    StageCapabilities,
    StageDraft,
    WorkflowDefinition,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.services.definition_manager import WorkflowDefinitionManager

logger = get_logger("config.seeder")


@dataclass
class SeedReport:
    """Names of workflows created and skipped by one seeding run."""

    checksum: str
    created: list[WorkflowDefinition] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def to_stage_draft(stage: StageDef) -> StageDraft:
    caps = stage.capabilities
    return StageDraft(
        name=stage.name,
        approval_quorum=stage.approval_quorum,
        timeout_days=stage.timeout_days,
        is_final=stage.is_final,
        description=stage.description,
        capabilities=StageCapabilities(
            can_view=caps.can_view,
            can_edit=caps.can_edit,
            can_approve=caps.can_approve,
            can_reject=caps.can_reject,
            can_cancel=caps.can_cancel,
        ),
        assignment=StageAssignment(
            role_codes=frozenset(stage.roles),
            user_ids=frozenset(UUID(u) for u in stage.users),
        ),
    )


def seed_workflow(
    manager: WorkflowDefinitionManager,
    workflow: WorkflowDef,
    actor_id: UUID,
) -> WorkflowDefinition:
    definition = manager.create_workflow(
        name=workflow.name,
        applicability=workflow.applicability,
        actor_id=actor_id,
        description=workflow.description,
        is_active=False,
    )
    for stage in workflow.stages:
        definition = manager.add_stage(definition.workflow_id, to_stage_draft(stage), actor_id)
    if workflow.is_active:
        definition = manager.toggle_active(definition.workflow_id, True, actor_id)
    return definition


def seed_workflow_set(
    session: Session,
    config: WorkflowConfigSet,
    actor_id: UUID,
) -> SeedReport:
    """Create every workflow of ``config`` that does not exist yet. Flush-only."""
    manager = WorkflowDefinitionManager(session)
    existing = {w.name for w in manager.list_workflows()}
    report = SeedReport(checksum=config.checksum)

    for workflow in config.workflows:
        if workflow.name in existing:
            report.skipped.append(workflow.name)
            continue
        report.created.append(seed_workflow(manager, workflow, actor_id))

    logger.info(
        "workflow_config_seeded",
        extra={
            "config_id": config.config_id,
            "version": config.version,
            "checksum": config.checksum,
            "created": [w.name for w in report.created],
            "skipped": report.skipped,
        },
    )
    return report
