"""
Pytest fixtures for the approval kernel test suite.

Provides:
- A session-scoped engine with the kernel schema created once
- Per-test sessions isolated by transaction rollback
- Services wired to a deterministic clock
- Actors, registered documents and a three-stage invoice workflow

Environment Variables:
- APPROVAL_TEST_DATABASE_URL: database to test against.  Defaults to an
  in-memory SQLite database; point it at PostgreSQL to exercise row locks
  and the production isolation level.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.workflow import (
    Actor,
    EntityRef,
    StageAssignment,
    StageCapabilities,
    StageDraft,
    WorkflowDefinition,
)
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.selectors.stage_selector import StageSelector
from approval_kernel.services.action_log import ActionLog
from approval_kernel.services.approval_workflow_service import ApprovalWorkflowService
from approval_kernel.services.definition_manager import WorkflowDefinitionManager
from approval_kernel.services.document_gateway import SqlDocumentGateway


# Author of every workflow definition created by the tests
TEST_ACTOR_ID = uuid4()

DEFAULT_TEST_URL = "sqlite://"


def get_database_url() -> str:
    """Get the test database URL from the environment, or in-memory SQLite."""
    return os.environ.get("APPROVAL_TEST_DATABASE_URL", DEFAULT_TEST_URL)


def stage(name: str, *roles: str, **kwargs) -> StageDraft:
    """Stage draft assigned to ``roles``; keyword arguments pass through."""
    users = kwargs.pop("users", ())
    return StageDraft(
        name=name,
        assignment=StageAssignment(role_codes=frozenset(roles), user_ids=frozenset(users)),
        **kwargs,
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow_service):
            workflow_service.submit(ref, creator)
            logs = captured_logs()
            assert any(r["message"] == "document_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside the test releases a savepoint, and the outer
    transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent author id for definition changes."""
    return TEST_ACTOR_ID


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def definitions(session) -> WorkflowDefinitionManager:
    return WorkflowDefinitionManager(session)


@pytest.fixture
def documents(session) -> SqlDocumentGateway:
    return SqlDocumentGateway(session)


@pytest.fixture
def workflow_service(session, deterministic_clock) -> ApprovalWorkflowService:
    return ApprovalWorkflowService(session, clock=deterministic_clock)


@pytest.fixture
def action_log(session, deterministic_clock) -> ActionLog:
    return ActionLog(session, deterministic_clock)


@pytest.fixture
def stage_selector(session) -> StageSelector:
    return StageSelector(session)


@pytest.fixture
def approval_selector(session) -> ApprovalSelector:
    return ApprovalSelector(session)


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def creator() -> Actor:
    """The clerk who enters documents."""
    return Actor.of(uuid4(), "clerk")


@pytest.fixture
def manager() -> Actor:
    return Actor.of(uuid4(), "manager")


@pytest.fixture
def director() -> Actor:
    return Actor.of(uuid4(), "director")


@pytest.fixture
def second_director() -> Actor:
    return Actor.of(uuid4(), "director")


@pytest.fixture
def accountant() -> Actor:
    return Actor.of(uuid4(), "accountant")


@pytest.fixture
def outsider() -> Actor:
    """A user with no role any stage is assigned to."""
    return Actor.of(uuid4(), "auditor")


# =============================================================================
# Workflows and documents
# =============================================================================


@pytest.fixture
def make_workflow(definitions, test_actor_id):
    """Factory fixture: create a workflow with stages, then activate it.

    Returns a callable ``(name, applicability, stages, is_active=True)``
    producing the final ``WorkflowDefinition``.
    """

    def _make(
        name: str,
        applicability,
        stages=(),
        is_active: bool = True,
    ) -> WorkflowDefinition:
        workflow = definitions.create_workflow(
            name=name,
            applicability=applicability,
            actor_id=test_actor_id,
            is_active=False,
        )
        for draft in stages:
            workflow = definitions.add_stage(workflow.workflow_id, draft, test_actor_id)
        if is_active:
            workflow = definitions.toggle_active(workflow.workflow_id, True, test_actor_id)
        return workflow

    return _make


@pytest.fixture
def three_step_workflow(make_workflow) -> WorkflowDefinition:
    """Manager -> Director -> Accountant (final) for supplier invoices."""
    return make_workflow(
        "Supplier invoice approval",
        ["supplier_invoice"],
        [
            stage(
                "Manager", "manager",
                timeout_days=3,
                capabilities=StageCapabilities(can_edit=True),
            ),
            stage("Director", "director", timeout_days=3),
            stage("Accountant", "accountant", is_final=True, timeout_days=2),
        ],
    )


@pytest.fixture
def register_document(documents, creator):
    """Factory fixture: register a draft document and return its EntityRef."""

    def _register(
        document_type: str = "supplier_invoice",
        entity_type: str = "invoice",
        created_by: UUID | None = None,
    ) -> EntityRef:
        entity = EntityRef(entity_type, uuid4())
        documents.register(entity, document_type, created_by or creator.user_id)
        return entity

    return _register


@pytest.fixture
def invoice(three_step_workflow, register_document) -> EntityRef:
    """A draft supplier invoice routed by ``three_step_workflow``."""
    return register_document()
