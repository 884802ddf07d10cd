"""
Module: approval_kernel.models.document
Responsibility: Minimal persistence for routable documents -- the fields
    the approval engine reads (type, creator, finalized flag) and the two it
    writes (status, current stage position).
Architecture position: Kernel > Models.  May import from db/base.py only.

The full invoice and payment records live elsewhere; applications with
their own document tables plug in a different DocumentGateway instead of
using this table.

``version`` is the mapper's version_id_col: a status write based on a
stale read fails instead of overwriting a concurrent transition.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.documents import DocumentSnapshot


class ApprovableDocumentModel(Base):
    """Routing-relevant slice of an invoice, payment or similar document."""

    __tablename__ = "approvable_documents"

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_approvable_documents_ref"),
        CheckConstraint(
            "status IN ('draft', 'pending', 'approved', 'rejected', 'cancelled')",
            name="ck_approvable_documents_valid_status",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_type: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    current_stage_position: Mapped[int | None] = mapped_column(nullable=True)
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovableDocument {self.entity_type}:{self.entity_id} "
            f"{self.document_type} status={self.status}>"
        )

    def to_snapshot(self) -> DocumentSnapshot:
        from approval_kernel.domain.documents import DocumentSnapshot
        from approval_kernel.domain.workflow import DocumentStatus, EntityRef

        return DocumentSnapshot(
            entity=EntityRef(self.entity_type, self.entity_id),
            document_type=self.document_type,
            created_by=self.created_by,
            status=DocumentStatus(self.status),
            current_stage_position=self.current_stage_position,
            is_finalized=self.is_finalized,
        )
