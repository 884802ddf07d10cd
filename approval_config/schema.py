"""
Workflow configuration schema.

Human-authored, reviewable definitions of approval workflows.  YAML files
are parsed into these types by the loader, checked by the validator and
written to the database by ``scripts/seed_workflows.py``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StageCapabilitiesDef:
    """Which actions a stage grants to its assignees."""

    can_view: bool = True
    can_edit: bool = False
    can_approve: bool = True
    can_reject: bool = True
    can_cancel: bool = False


@dataclass(frozen=True)
class StageDef:
    """One stage as written in YAML; list order gives the position."""

    name: str
    approval_quorum: int = 1
    timeout_days: int | None = None
    is_final: bool = False
    description: str | None = None
    capabilities: StageCapabilitiesDef = field(default_factory=StageCapabilitiesDef)
    roles: tuple[str, ...] = ()
    users: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowDef:
    """A workflow and its ordered stages."""

    name: str
    applicability: tuple[str, ...]
    stages: tuple[StageDef, ...] = ()
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class WorkflowConfigSet:
    """All workflows from one YAML file, with a checksum of the source data."""

    config_id: str
    version: int
    workflows: tuple[WorkflowDef, ...]
    checksum: str = ""
