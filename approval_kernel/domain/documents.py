"""
Document gateway port (``approval_kernel.domain.documents``).

The engine does not own invoices or payments.  It reads a document's
routing-relevant fields and writes back only its status and current stage,
through any object satisfying ``DocumentGateway``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from approval_kernel.domain.workflow import DocumentStatus, EntityRef


@dataclass(frozen=True)
class DocumentSnapshot:
    """Routing view of a document at read time."""

    entity: EntityRef
    document_type: str
    created_by: UUID
    status: DocumentStatus
    current_stage_position: int | None = None
    is_finalized: bool = False


class DocumentGateway(Protocol):
    """Read and write access to the routing fields of documents."""

    def get(self, entity: EntityRef) -> DocumentSnapshot:
        """Return the document, raising DocumentNotFoundError if unknown."""
        ...

    def get_for_update(self, entity: EntityRef) -> DocumentSnapshot:
        """Like ``get``, but hold the document against concurrent transitions until commit."""
        ...

    def set_routing_state(
        self,
        entity: EntityRef,
        status: DocumentStatus,
        current_stage_position: int | None,
    ) -> None:
        """Persist the document's status and current stage."""
        ...
