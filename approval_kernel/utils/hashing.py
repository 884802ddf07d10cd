"""
Deterministic hashing utilities.

All hashing in the approval kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used by the action log
chain and the workflow configuration checksum.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return normalize_timestamp(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def normalize_timestamp(value: datetime) -> str:
    """
    Render a timestamp as naive UTC ISO-8601.

    Aware values are converted to UTC first; naive values are taken to be
    UTC already.  Backends that drop the offset on storage therefore hash
    to the same string as the value that was written.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat()


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID, Enum)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_action(
    entity_type: str,
    entity_id: str,
    seq: int,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for a workflow action log row.

    The hash includes the row's position in the entity's log plus the
    previous row's hash, creating a tamper-evident chain per document.

    Args:
        entity_type: Document type being routed.
        entity_id: ID of the document.
        seq: 1-based position of the row in the document's log.
        action: Action being recorded.
        payload_hash: Hash of the remaining row fields.
        prev_hash: Hash of the previous row (None for the first row).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        entity_type,
        str(entity_id),
        str(seq),
        action,
        payload_hash,
        prev_hash or GENESIS,
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
