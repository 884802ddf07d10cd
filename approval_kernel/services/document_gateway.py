"""
SqlDocumentGateway -- DocumentGateway backed by the approvable_documents table.

Responsibility:
    Reads the routing view of a document and writes back its status and
    current stage.  Also offers the two document-side hooks the engine's
    callers need: registering a new draft document and marking a document
    as externally finalized (e.g. paid).

Architecture position:
    Kernel > Services -- adapter for the ``DocumentGateway`` port in
    ``approval_kernel.domain.documents``.

Invariants enforced:
    - Transitions read the document through ``get_for_update``; the row stays
      locked until the caller's transaction ends.
    - ``version`` guards every write, so a write based on a stale read fails.

Failure modes:
    - DocumentNotFoundError if the document is unknown.
    - OptimisticLockError if another transaction changed the document first.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.documents import DocumentSnapshot
from approval_kernel.domain.workflow import DocumentStatus, EntityRef
from approval_kernel.exceptions import (
    DocumentNotFoundError,
    OptimisticLockError,
    ValidationError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.document import ApprovableDocumentModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.documents")


class SqlDocumentGateway(BaseService[ApprovableDocumentModel]):
    """Document gateway over the kernel's own document table."""

    def get(self, entity: EntityRef) -> DocumentSnapshot:
        return self._load(entity).to_snapshot()

    def get_for_update(self, entity: EntityRef) -> DocumentSnapshot:
        """
        The document, with its row locked for the rest of the transaction.

        ``populate_existing`` refreshes a copy already in the identity map so
        the version token matches the row as locked.
        """
        return self._load(entity, for_update=True).to_snapshot()

    def set_routing_state(
        self,
        entity: EntityRef,
        status: DocumentStatus,
        current_stage_position: int | None,
    ) -> None:
        model = self._load(entity)
        model.status = status.value
        model.current_stage_position = current_stage_position
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "document_version_conflict",
                extra={"entity": str(entity), "status": status.value},
            )
            raise OptimisticLockError("ApprovableDocument", str(entity)) from exc

    def register(
        self,
        entity: EntityRef,
        document_type: str,
        created_by: UUID,
    ) -> DocumentSnapshot:
        """Record a new document in draft."""
        if not document_type or not document_type.strip():
            raise ValidationError("Document type is required", field="document_type")

        model = ApprovableDocumentModel(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            document_type=document_type,
            created_by=created_by,
            status=DocumentStatus.DRAFT.value,
            current_stage_position=None,
            is_finalized=False,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "document_registered",
            extra={"entity": str(entity), "document_type": document_type},
        )
        return model.to_snapshot()

    def mark_finalized(self, entity: EntityRef) -> DocumentSnapshot:
        """Flag the document as settled outside the workflow; it can no longer be cancelled."""
        model = self._load(entity)
        model.is_finalized = True
        self.session.flush()

        logger.info("document_finalized", extra={"entity": str(entity)})
        return model.to_snapshot()

    def _load(self, entity: EntityRef, for_update: bool = False) -> ApprovableDocumentModel:
        query = select(ApprovableDocumentModel).where(
            ApprovableDocumentModel.entity_type == entity.entity_type,
            ApprovableDocumentModel.entity_id == entity.entity_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        model = self.session.execute(query).scalar_one_or_none()
        if model is None:
            raise DocumentNotFoundError(entity.entity_type, str(entity.entity_id))
        return model
