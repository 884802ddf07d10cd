"""
Tests for WorkflowDefinitionManager -- workflow and stage authoring.

Covers:
- create/update validation, revision bumps, toggle_active
- clone: fresh ids, same positions, inactive, source untouched
- add_stage (append and insert), update_stage, delete_stage, reorder_stages
- one final stage per workflow
- resolution: most specific workflow wins, ties refused at activation
- WorkflowInUse guards while instances depend on a workflow
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import (
    StageAssignment,
    StageCapabilities,
    StageDraft,
)
from approval_kernel.exceptions import (
    AmbiguousWorkflowError,
    NoApplicableWorkflowError,
    StageNotFoundError,
    StageSetMismatchError,
    ValidationError,
    WorkflowInUseError,
    WorkflowNotFoundError,
)
from tests.conftest import stage


@pytest.fixture
def empty_workflow(definitions, test_actor_id):
    return definitions.create_workflow(
        name="Draft workflow",
        applicability=["credit_note"],
        actor_id=test_actor_id,
        is_active=False,
    )


def _names(workflow) -> list[str]:
    return [s.name for s in workflow.stages]


def _positions(workflow) -> list[int]:
    return [s.position for s in workflow.stages]


# =========================================================================
# Workflows
# =========================================================================


class TestCreateWorkflow:
    def test_create_returns_empty_definition(self, definitions, test_actor_id):
        workflow = definitions.create_workflow(
            name="  Credit notes  ",
            applicability=["credit_note", "credit_note"],
            actor_id=test_actor_id,
            description="Single reviewer",
        )

        assert workflow.name == "Credit notes"
        assert workflow.applicability == frozenset({"credit_note"})
        assert workflow.stages == ()
        assert workflow.is_active
        assert workflow.revision == 1
        assert definitions.get_workflow(workflow.workflow_id) == workflow

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_name_required(self, definitions, test_actor_id, name):
        with pytest.raises(ValidationError) as exc_info:
            definitions.create_workflow(name=name, applicability=["x"], actor_id=test_actor_id)
        assert exc_info.value.field == "name"

    @pytest.mark.parametrize("applicability", [[], [" "], None, "supplier_invoice"])
    def test_applicability_required(self, definitions, test_actor_id, applicability):
        with pytest.raises(ValidationError) as exc_info:
            definitions.create_workflow(
                name="Bad", applicability=applicability, actor_id=test_actor_id,
            )
        assert exc_info.value.field == "applicability"

    def test_unknown_workflow(self, definitions):
        with pytest.raises(WorkflowNotFoundError):
            definitions.get_workflow(uuid4())


class TestUpdateWorkflow:
    def test_update_fields_bumps_revision(self, definitions, empty_workflow, test_actor_id):
        updated = definitions.update_workflow(
            empty_workflow.workflow_id,
            {"name": "Renamed", "description": "New text", "applicability": ["debit_note"]},
            test_actor_id,
        )

        assert updated.name == "Renamed"
        assert updated.description == "New text"
        assert updated.applicability == frozenset({"debit_note"})
        assert updated.revision == empty_workflow.revision + 1

    def test_stage_list_cannot_be_patched(self, definitions, empty_workflow, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            definitions.update_workflow(empty_workflow.workflow_id, {"stages": []}, test_actor_id)
        assert exc_info.value.field == "stages"

    def test_toggle_active(self, definitions, empty_workflow, test_actor_id):
        activated = definitions.toggle_active(empty_workflow.workflow_id, True, test_actor_id)
        assert activated.is_active

        deactivated = definitions.toggle_active(empty_workflow.workflow_id, False, test_actor_id)
        assert not deactivated.is_active
        assert deactivated.revision == empty_workflow.revision + 2

    def test_list_workflows(self, definitions, empty_workflow, three_step_workflow):
        all_names = [w.name for w in definitions.list_workflows()]
        active_names = [w.name for w in definitions.list_workflows(active_only=True)]

        assert "Draft workflow" in all_names
        assert "Supplier invoice approval" in all_names
        assert "Draft workflow" not in active_names


class TestCloneWorkflow:
    def test_clone(self, definitions, three_step_workflow, test_actor_id):
        clone = definitions.clone_workflow(three_step_workflow.workflow_id, "Copy", test_actor_id)

        assert clone.name == "Copy"
        assert not clone.is_active
        assert clone.workflow_id != three_step_workflow.workflow_id
        assert clone.applicability == three_step_workflow.applicability
        assert _names(clone) == _names(three_step_workflow)
        assert _positions(clone) == [1, 2, 3]
        assert {s.stage_id for s in clone.stages}.isdisjoint(
            {s.stage_id for s in three_step_workflow.stages}
        )
        for copied, original in zip(clone.stages, three_step_workflow.stages):
            assert copied.is_final == original.is_final
            assert copied.capabilities == original.capabilities
            assert copied.assignment == original.assignment
            assert copied.timeout_days == original.timeout_days

        assert definitions.get_workflow(three_step_workflow.workflow_id) == three_step_workflow

    def test_clone_unknown(self, definitions, test_actor_id):
        with pytest.raises(WorkflowNotFoundError):
            definitions.clone_workflow(uuid4(), "Copy", test_actor_id)


class TestDeleteWorkflow:
    def test_delete_removes_stages(self, definitions, stage_selector, three_step_workflow):
        definitions.delete_workflow(three_step_workflow.workflow_id)

        with pytest.raises(WorkflowNotFoundError):
            definitions.get_workflow(three_step_workflow.workflow_id)
        with pytest.raises(StageNotFoundError):
            stage_selector.get_stage(three_step_workflow.stages[0].stage_id)

    def test_delete_refused_with_history(self, definitions, workflow_service, invoice, creator, manager):
        workflow_service.submit(invoice, creator)
        workflow_service.reject(invoice, manager, "No")

        workflow = definitions.resolve_workflow("supplier_invoice")
        with pytest.raises(WorkflowInUseError) as exc_info:
            definitions.delete_workflow(workflow.workflow_id)
        assert exc_info.value.operation == "delete"
        assert exc_info.value.instance_count == 1


# =========================================================================
# Stages
# =========================================================================


class TestAddStage:
    def test_append(self, definitions, empty_workflow, test_actor_id):
        workflow = definitions.add_stage(empty_workflow.workflow_id, stage("First", "a"), test_actor_id)
        workflow = definitions.add_stage(empty_workflow.workflow_id, stage("Second", "b"), test_actor_id)

        assert _names(workflow) == ["First", "Second"]
        assert _positions(workflow) == [1, 2]
        assert workflow.revision == empty_workflow.revision + 2

    def test_insert_shifts_later_stages(self, definitions, three_step_workflow, test_actor_id):
        workflow = definitions.add_stage(
            three_step_workflow.workflow_id,
            stage("Compliance", "compliance"),
            test_actor_id,
            position=2,
        )

        assert _names(workflow) == ["Manager", "Compliance", "Director", "Accountant"]
        assert _positions(workflow) == [1, 2, 3, 4]

    def test_stage_fields_persisted(self, definitions, empty_workflow, test_actor_id):
        user_id = uuid4()
        draft = StageDraft(
            name="Treasury",
            approval_quorum=2,
            timeout_days=0,
            description="Two signatures",
            capabilities=StageCapabilities(can_edit=True, can_reject=False),
            assignment=StageAssignment(role_codes=frozenset({"treasury"}), user_ids=frozenset({user_id})),
        )

        workflow = definitions.add_stage(empty_workflow.workflow_id, draft, test_actor_id)
        added = workflow.stages[0]

        assert added.approval_quorum == 2
        assert added.timeout_days == 0
        assert added.description == "Two signatures"
        assert added.capabilities == draft.capabilities
        assert added.assignment == draft.assignment
        assert added.workflow_id == empty_workflow.workflow_id

    @pytest.mark.parametrize("quorum", [0, -1, 1.5, True])
    def test_invalid_quorum(self, definitions, empty_workflow, test_actor_id, quorum):
        with pytest.raises(ValidationError) as exc_info:
            definitions.add_stage(
                empty_workflow.workflow_id, stage("Bad", "a", approval_quorum=quorum), test_actor_id,
            )
        assert exc_info.value.field == "approval_quorum"

    def test_negative_timeout(self, definitions, empty_workflow, test_actor_id):
        with pytest.raises(ValidationError):
            definitions.add_stage(
                empty_workflow.workflow_id, stage("Bad", "a", timeout_days=-1), test_actor_id,
            )

    def test_position_out_of_range(self, definitions, three_step_workflow, test_actor_id):
        with pytest.raises(ValidationError):
            definitions.add_stage(
                three_step_workflow.workflow_id, stage("Late", "a"), test_actor_id, position=5,
            )

    def test_second_final_stage_refused(self, definitions, three_step_workflow, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            definitions.add_stage(
                three_step_workflow.workflow_id, stage("Also final", "a", is_final=True), test_actor_id,
            )
        assert exc_info.value.field == "is_final"


class TestUpdateStage:
    def test_update_attributes(self, definitions, three_step_workflow, test_actor_id):
        director = three_step_workflow.stages[1]

        workflow = definitions.update_stage(
            director.stage_id,
            {
                "name": "Finance director",
                "approval_quorum": 2,
                "timeout_days": None,
                "assignment": StageAssignment(role_codes=frozenset({"cfo"})),
            },
            test_actor_id,
        )

        updated = workflow.stages[1]
        assert updated.name == "Finance director"
        assert updated.approval_quorum == 2
        assert updated.timeout_days is None
        assert updated.assignment.role_codes == frozenset({"cfo"})
        assert updated.position == 2

    def test_position_not_patchable(self, definitions, three_step_workflow, test_actor_id):
        with pytest.raises(ValidationError):
            definitions.update_stage(three_step_workflow.stages[0].stage_id, {"position": 3}, test_actor_id)

    def test_move_final_marker(self, definitions, three_step_workflow, test_actor_id):
        manager, _, accountant = three_step_workflow.stages

        with pytest.raises(ValidationError):
            definitions.update_stage(manager.stage_id, {"is_final": True}, test_actor_id)

        definitions.update_stage(accountant.stage_id, {"is_final": False}, test_actor_id)
        workflow = definitions.update_stage(manager.stage_id, {"is_final": True}, test_actor_id)

        assert [s.is_final for s in workflow.stages] == [True, False, False]

    def test_capabilities_type_checked(self, definitions, three_step_workflow, test_actor_id):
        with pytest.raises(ValidationError):
            definitions.update_stage(
                three_step_workflow.stages[0].stage_id, {"capabilities": {"can_edit": True}}, test_actor_id,
            )

    def test_unknown_stage(self, definitions, test_actor_id):
        with pytest.raises(StageNotFoundError):
            definitions.update_stage(uuid4(), {"name": "x"}, test_actor_id)


class TestReorderStages:
    def test_reorder(self, definitions, three_step_workflow, test_actor_id):
        id1, id2, id3 = (s.stage_id for s in three_step_workflow.stages)

        workflow = definitions.reorder_stages(three_step_workflow.workflow_id, [id3, id1, id2], test_actor_id)

        positions = {s.stage_id: s.position for s in workflow.stages}
        assert positions == {id3: 1, id1: 2, id2: 3}
        assert _names(workflow) == ["Accountant", "Manager", "Director"]

    def test_incomplete_order_rejected(self, definitions, three_step_workflow, test_actor_id):
        id1, id2, _ = (s.stage_id for s in three_step_workflow.stages)

        with pytest.raises(ValidationError) as exc_info:
            definitions.reorder_stages(three_step_workflow.workflow_id, [id1, id2], test_actor_id)

        assert isinstance(exc_info.value, StageSetMismatchError)
        assert _positions(definitions.get_workflow(three_step_workflow.workflow_id)) == [1, 2, 3]

    def test_foreign_stage_rejected(self, definitions, three_step_workflow, test_actor_id):
        ids = [s.stage_id for s in three_step_workflow.stages]

        with pytest.raises(StageSetMismatchError):
            definitions.reorder_stages(three_step_workflow.workflow_id, ids + [uuid4()], test_actor_id)


class TestDeleteStage:
    def test_delete_compacts_positions(self, definitions, three_step_workflow, test_actor_id):
        first = three_step_workflow.stages[0]

        workflow = definitions.delete_stage(first.stage_id, test_actor_id)

        assert _names(workflow) == ["Director", "Accountant"]
        assert _positions(workflow) == [1, 2]

    def test_delete_unknown(self, definitions, test_actor_id):
        with pytest.raises(StageNotFoundError):
            definitions.delete_stage(uuid4(), test_actor_id)


class TestWorkflowInUse:
    @pytest.fixture
    def routing_invoice(self, workflow_service, invoice, creator):
        workflow_service.submit(invoice, creator)
        return invoice

    def test_topology_frozen_while_routing(self, definitions, three_step_workflow, routing_invoice, test_actor_id):
        workflow_id = three_step_workflow.workflow_id
        ids = [s.stage_id for s in three_step_workflow.stages]

        with pytest.raises(WorkflowInUseError):
            definitions.add_stage(workflow_id, stage("Extra", "a"), test_actor_id)
        with pytest.raises(WorkflowInUseError):
            definitions.delete_stage(ids[1], test_actor_id)
        with pytest.raises(WorkflowInUseError):
            definitions.reorder_stages(workflow_id, list(reversed(ids)), test_actor_id)
        with pytest.raises(WorkflowInUseError):
            definitions.update_stage(ids[2], {"is_final": False}, test_actor_id)

    def test_non_topology_edits_allowed_while_routing(
        self, definitions, three_step_workflow, routing_invoice, test_actor_id,
    ):
        workflow = definitions.update_stage(
            three_step_workflow.stages[0].stage_id, {"name": "Line manager"}, test_actor_id,
        )
        assert workflow.stages[0].name == "Line manager"

    def test_topology_editable_after_routing_ends(
        self, definitions, workflow_service, three_step_workflow, routing_invoice, creator, test_actor_id,
    ):
        workflow_service.cancel(routing_invoice, creator)

        workflow = definitions.add_stage(three_step_workflow.workflow_id, stage("Extra", "a"), test_actor_id)
        assert len(workflow.stages) == 4


# =========================================================================
# Resolution
# =========================================================================


class TestResolution:
    def test_most_specific_wins(self, definitions, make_workflow):
        make_workflow("General", ["supplier_invoice", "expense_report"], [stage("A", "a")])
        specific = make_workflow("Invoices", ["supplier_invoice"], [stage("B", "b")])

        assert definitions.resolve_workflow("supplier_invoice").workflow_id == specific.workflow_id
        assert definitions.resolve_workflow("expense_report").name == "General"

    def test_no_match(self, definitions, three_step_workflow):
        with pytest.raises(NoApplicableWorkflowError):
            definitions.resolve_workflow("payroll")

    def test_tied_activation_refused(self, definitions, make_workflow, three_step_workflow, test_actor_id):
        rival = make_workflow("Rival", ["supplier_invoice"], [stage("A", "a")], is_active=False)

        with pytest.raises(AmbiguousWorkflowError) as exc_info:
            definitions.toggle_active(rival.workflow_id, True, test_actor_id)
        assert exc_info.value.document_type == "supplier_invoice"

    def test_tied_creation_refused(self, definitions, three_step_workflow, test_actor_id):
        with pytest.raises(AmbiguousWorkflowError):
            definitions.create_workflow(
                name="Rival", applicability=["supplier_invoice"], actor_id=test_actor_id,
            )

    def test_applicability_change_checked(self, definitions, make_workflow, three_step_workflow, test_actor_id):
        other = make_workflow("Credit notes", ["credit_note"], [stage("A", "a")])

        with pytest.raises(AmbiguousWorkflowError):
            definitions.update_workflow(
                other.workflow_id, {"applicability": ["supplier_invoice"]}, test_actor_id,
            )

    def test_list_applicable(self, definitions, make_workflow, three_step_workflow):
        make_workflow("General", ["supplier_invoice", "expense_report"], [stage("A", "a")])

        names = [w.name for w in definitions.list_applicable_workflows("supplier_invoice")]
        assert names == ["General", "Supplier invoice approval"]


# =========================================================================
# Refused mutations leave no trace
# =========================================================================


class TestRefusedMutationsRollBack:
    def test_refused_activation_stays_inactive(
        self, session, definitions, make_workflow, three_step_workflow, test_actor_id,
    ):
        rival = make_workflow("Rival", ["supplier_invoice"], [stage("A", "a")], is_active=False)

        with pytest.raises(AmbiguousWorkflowError):
            definitions.toggle_active(rival.workflow_id, True, test_actor_id)
        session.flush()

        reloaded = definitions.get_workflow(rival.workflow_id)
        assert reloaded.is_active is False
        assert reloaded.revision == rival.revision
        assert definitions.resolve_workflow("supplier_invoice").workflow_id == three_step_workflow.workflow_id

    def test_refused_update_keeps_earlier_fields(self, session, definitions, empty_workflow, test_actor_id):
        with pytest.raises(ValidationError):
            definitions.update_workflow(
                empty_workflow.workflow_id,
                {"name": "Renamed", "applicability": []},
                test_actor_id,
            )
        session.flush()

        reloaded = definitions.get_workflow(empty_workflow.workflow_id)
        assert reloaded.name == "Draft workflow"
        assert reloaded.applicability == frozenset({"credit_note"})
        assert reloaded.revision == empty_workflow.revision

    def test_refused_applicability_change_keeps_old_types(
        self, session, definitions, make_workflow, three_step_workflow, test_actor_id,
    ):
        other = make_workflow("Credit notes", ["credit_note"], [stage("A", "a")])

        with pytest.raises(AmbiguousWorkflowError):
            definitions.update_workflow(
                other.workflow_id, {"applicability": ["supplier_invoice"]}, test_actor_id,
            )
        session.flush()

        assert definitions.get_workflow(other.workflow_id).applicability == frozenset({"credit_note"})
        assert definitions.resolve_workflow("credit_note").workflow_id == other.workflow_id

    def test_refused_stage_update_keeps_earlier_fields(
        self, session, definitions, three_step_workflow, test_actor_id,
    ):
        manager_stage = three_step_workflow.stages[0]

        with pytest.raises(ValidationError):
            definitions.update_stage(
                manager_stage.stage_id, {"name": "Boss", "approval_quorum": 0}, test_actor_id,
            )
        session.flush()

        reloaded = definitions.get_workflow(three_step_workflow.workflow_id)
        assert reloaded.stages[0].name == "Manager"
        assert reloaded.stages[0].approval_quorum == 1
        assert reloaded.revision == three_step_workflow.revision

    def test_refusal_logged(self, captured_logs, definitions, make_workflow, three_step_workflow, test_actor_id):
        rival = make_workflow("Rival", ["supplier_invoice"], [stage("A", "a")], is_active=False)

        with pytest.raises(AmbiguousWorkflowError):
            definitions.toggle_active(rival.workflow_id, True, test_actor_id)

        refused = [r for r in captured_logs() if r["message"] == "definition_change_refused"]
        assert refused[-1]["operation"] == "toggle_active"
        assert refused[-1]["error_code"] == AmbiguousWorkflowError.code
