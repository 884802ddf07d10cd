"""
Workflow configuration loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML workflow files and parses them into the frozen dataclasses of
``approval_config.schema``.

Architecture position
---------------------
**Config layer** -- tooling.  Depends only on PyYAML and the schema; the
kernel never imports this package.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed source data for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrongly typed values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    StageCapabilitiesDef,
    StageDef,
    WorkflowConfigSet,
    WorkflowDef,
)

_CAPABILITY_KEYS = ("can_view", "can_edit", "can_approve", "can_reject", "can_cancel")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _as_str_tuple(value: Any, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"{field} must be a list, got {value!r}")
    return tuple(str(v) for v in value)


def _as_int(value: Any, field: str, allow_none: bool = False) -> int | None:
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field} must be an integer, got {value!r}")
    return value


def parse_capabilities(data: dict[str, Any] | None) -> StageCapabilitiesDef:
    """Parse stage capability flags; omitted flags keep their defaults."""
    if not data:
        return StageCapabilitiesDef()
    unknown = sorted(set(data) - set(_CAPABILITY_KEYS))
    if unknown:
        raise ValueError(f"Unknown capability flag(s): {unknown}")
    return StageCapabilitiesDef(**{k: bool(v) for k, v in data.items()})


def parse_stage(data: dict[str, Any]) -> StageDef:
    """
    Parse a ``StageDef`` from a dict.

    Raises:
        KeyError: if ``name`` is missing.
        ValueError: if a numeric or list field has the wrong type.
    """
    return StageDef(
        name=data["name"],
        approval_quorum=_as_int(data.get("approval_quorum", 1), "approval_quorum"),
        timeout_days=_as_int(data.get("timeout_days"), "timeout_days", allow_none=True),
        is_final=bool(data.get("is_final", False)),
        description=data.get("description"),
        capabilities=parse_capabilities(data.get("capabilities")),
        roles=_as_str_tuple(data.get("roles"), "roles"),
        users=_as_str_tuple(data.get("users"), "users"),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDef:
    """
    Parse a ``WorkflowDef`` from a dict.

    Raises:
        KeyError: if ``name`` or ``applicability`` is missing.
    """
    return WorkflowDef(
        name=data["name"],
        applicability=_as_str_tuple(data["applicability"], "applicability"),
        stages=tuple(parse_stage(s) for s in data.get("stages") or ()),
        description=data.get("description"),
        is_active=bool(data.get("is_active", True)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_workflow_set(path: Path) -> WorkflowConfigSet:
    """
    Load a workflow configuration file.

    The file holds a ``config_id``, a ``version`` and a ``workflows`` list.
    """
    data = load_yaml_file(Path(path))
    return WorkflowConfigSet(
        config_id=data["config_id"],
        version=_as_int(data.get("version", 1), "version"),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows") or ()),
        checksum=compute_checksum(data),
    )
