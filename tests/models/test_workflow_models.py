"""
ORM-level tests for the workflow tables.

Covers:
- partial unique index: one open instance per document
- version_id_col: every write bumps the version, stale writes fail
- check constraints on stage rows
- StringList round trip
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.models.instance import WorkflowInstanceModel
from approval_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStageModel

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _instance(workflow_id, entity_id, completed_at=None) -> WorkflowInstanceModel:
    return WorkflowInstanceModel(
        entity_type="invoice",
        entity_id=entity_id,
        workflow_id=workflow_id,
        status="pending" if completed_at is None else "approved",
        current_stage_position=1 if completed_at is None else None,
        stages_total=1,
        stages_completed=0,
        started_at=NOW,
        started_by=uuid4(),
        completed_at=completed_at,
    )


@pytest.fixture
def workflow_row(session, test_actor_id):
    row = WorkflowDefinitionModel(
        name="Model test",
        is_active=False,
        applicability=["invoice", "bill", "invoice"],
        created_by_id=test_actor_id,
    )
    session.add(row)
    session.flush()
    return row


class TestOpenInstanceIndex:
    def test_second_open_instance_rejected(self, session, workflow_row):
        entity_id = uuid4()
        session.add(_instance(workflow_row.id, entity_id))
        session.flush()

        with pytest.raises(IntegrityError):
            with session.begin_nested():
                session.add(_instance(workflow_row.id, entity_id))
                session.flush()

    def test_closed_instances_do_not_count(self, session, workflow_row):
        entity_id = uuid4()
        session.add(_instance(workflow_row.id, entity_id, completed_at=NOW))
        session.add(_instance(workflow_row.id, entity_id, completed_at=NOW))
        session.add(_instance(workflow_row.id, entity_id))
        session.flush()


class TestInstanceVersion:
    def test_version_starts_at_one_and_bumps(self, session, workflow_row):
        instance = _instance(workflow_row.id, uuid4())
        session.add(instance)
        session.flush()
        assert instance.version == 1

        instance.current_stage_position = 2
        session.flush()
        assert instance.version == 2

    def test_stale_write_fails(self, session, workflow_row):
        instance = _instance(workflow_row.id, uuid4())
        session.add(instance)
        session.flush()

        table = WorkflowInstanceModel.__table__
        session.execute(
            table.update().where(table.c.id == str(instance.id)).values(version=5)
        )

        instance.current_stage_position = 2
        with pytest.raises(StaleDataError):
            session.flush()
        session.rollback()


class TestStageConstraints:
    @pytest.mark.parametrize(
        "overrides",
        [{"position": 0}, {"approval_quorum": 0}, {"timeout_days": -1}],
    )
    def test_check_constraints(self, session, workflow_row, test_actor_id, overrides):
        values = {
            "workflow_id": workflow_row.id,
            "position": 1,
            "name": "Bad",
            "approval_quorum": 1,
            "timeout_days": None,
            "created_by_id": test_actor_id,
        }
        values.update(overrides)

        with pytest.raises(IntegrityError):
            with session.begin_nested():
                session.add(WorkflowStageModel(**values))
                session.flush()


class TestStringList:
    def test_sorted_and_deduplicated(self, session, workflow_row):
        workflow_id = workflow_row.id
        session.expire_all()

        reloaded = session.get(WorkflowDefinitionModel, workflow_id)
        assert reloaded.applicability == ["bill", "invoice"]
