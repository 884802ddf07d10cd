"""
Tests for ActionLog -- the append-only, hash-chained audit trail.

Covers:
- sequence numbers and hash links per document
- chain verification and detection of edits made behind the ORM
- ORM-level immutability of action rows
- approvers_at_stage scoping by instance
"""

from datetime import timedelta

import pytest

from approval_kernel.domain.workflow import WorkflowActionType
from approval_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from approval_kernel.models.action import WorkflowActionModel


@pytest.fixture
def routed_invoice(workflow_service, invoice, creator, manager, director):
    """Invoice submitted and approved by manager and director (three rows)."""
    workflow_service.submit(invoice, creator)
    workflow_service.approve(invoice, manager)
    workflow_service.approve(invoice, director, comment="Within budget")
    return invoice


class TestChain:
    def test_rows_linked_by_hash(self, action_log, routed_invoice):
        rows = action_log.list(routed_invoice)

        assert [r.seq for r in rows] == [1, 2, 3]
        assert rows[0].prev_hash is None
        assert rows[1].prev_hash == rows[0].hash
        assert rows[2].prev_hash == rows[1].hash
        assert len({r.hash for r in rows}) == 3
        assert rows[2].comment == "Within budget"

    def test_verify_chain(self, action_log, routed_invoice):
        assert action_log.verify_chain(routed_invoice) == 3
        assert action_log.count(routed_invoice) == 3

    def test_chains_are_per_document(self, action_log, workflow_service, routed_invoice, register_document, creator):
        other = register_document()
        workflow_service.submit(other, creator)

        rows = action_log.list(other)
        assert rows[0].seq == 1
        assert rows[0].prev_hash is None
        assert action_log.verify_chain(other) == 1

    def test_list_ordered_by_time(self, action_log, workflow_service, deterministic_clock, invoice, creator, manager):
        workflow_service.submit(invoice, creator)
        deterministic_clock.advance(3600)
        workflow_service.approve(invoice, manager)

        rows = action_log.list(invoice)
        assert rows[1].created_at - rows[0].created_at == timedelta(hours=1)

    def test_edit_behind_orm_detected(self, session, action_log, routed_invoice):
        table = WorkflowActionModel.__table__
        session.execute(
            table.update()
            .where(table.c.entity_id == str(routed_invoice.entity_id), table.c.seq == 2)
            .values(comment="approved by someone else")
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            action_log.verify_chain(routed_invoice)

    def test_deleted_row_detected(self, session, action_log, routed_invoice):
        table = WorkflowActionModel.__table__
        session.execute(
            table.delete().where(
                table.c.entity_id == str(routed_invoice.entity_id), table.c.seq == 2,
            )
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            action_log.verify_chain(routed_invoice)


class TestImmutability:
    def test_update_refused(self, session, routed_invoice):
        row = session.query(WorkflowActionModel).filter_by(
            entity_id=routed_invoice.entity_id, seq=1,
        ).one()
        row.comment = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_refused(self, session, routed_invoice):
        row = session.query(WorkflowActionModel).filter_by(
            entity_id=routed_invoice.entity_id, seq=1,
        ).one()
        session.delete(row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestApproversAtStage:
    def test_scoped_to_instance_and_stage(self, action_log, workflow_service, routed_invoice, manager, director):
        instance_id = action_log.list(routed_invoice)[0].instance_id

        assert action_log.approvers_at_stage(instance_id, 1) == frozenset({manager.user_id})
        assert action_log.approvers_at_stage(instance_id, 2) == frozenset({director.user_id})
        assert action_log.approvers_at_stage(instance_id, 3) == frozenset()

    def test_only_approvals_count(self, action_log, workflow_service, invoice, creator, manager):
        result = workflow_service.submit(invoice, creator)
        workflow_service.return_(invoice, manager, "Missing PO")

        assert action_log.approvers_at_stage(result.instance.instance_id, 1) == frozenset()
        assert [r.action for r in action_log.list(invoice)] == [
            WorkflowActionType.SUBMIT,
            WorkflowActionType.RETURN,
        ]
