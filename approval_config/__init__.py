"""
approval_config -- YAML-authored approval workflow definitions.

Responsibility:
    Parses workflow files into frozen dataclasses, validates them, and
    checksums the source so a seeded configuration can be traced back to
    the exact file it came from.  ``approval_config.seeder`` writes a
    validated set into the database through the kernel's
    WorkflowDefinitionManager; ``scripts/seed_workflows.py`` is its CLI.

Architecture position:
    Configuration tooling.  The kernel MUST NEVER import from
    ``approval_config``.
"""

from approval_config.loader import (
    compute_checksum,
    load_workflow_set,
    load_yaml_file,
    parse_stage,
    parse_workflow,
)
from approval_config.schema import (
    StageCapabilitiesDef,
    StageDef,
    WorkflowConfigSet,
    WorkflowDef,
)
from approval_config.seeder import SeedReport, seed_workflow_set
from approval_config.validator import ConfigValidationResult, validate_workflow_set


__all__ = [
    "StageCapabilitiesDef",
    "StageDef",
    "WorkflowDef",
    "WorkflowConfigSet",
    "ConfigValidationResult",
    "compute_checksum",
    "load_workflow_set",
    "load_yaml_file",
    "parse_stage",
    "parse_workflow",
    "validate_workflow_set",
    "SeedReport",
    "seed_workflow_set",
]
