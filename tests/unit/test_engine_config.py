"""Tests for database URL resolution, engine construction and session scope."""

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.pool import StaticPool

from approval_kernel.db.engine import (
    DEFAULT_DATABASE_URL,
    build_engine,
    database_url_from_env,
    session_scope,
)
from approval_kernel.models.workflow import WorkflowDefinitionModel


class TestDatabaseUrlFromEnv:
    def test_kernel_variable_wins(self, monkeypatch):
        monkeypatch.setenv("APPROVAL_DATABASE_URL", "sqlite:///kernel.db")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///generic.db")
        assert database_url_from_env() == "sqlite:///kernel.db"

    def test_generic_fallback(self, monkeypatch):
        monkeypatch.delenv("APPROVAL_DATABASE_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "sqlite:///generic.db")
        assert database_url_from_env() == "sqlite:///generic.db"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("APPROVAL_DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert database_url_from_env() == DEFAULT_DATABASE_URL
        assert database_url_from_env("sqlite://") == "sqlite://"

    def test_empty_value_ignored(self, monkeypatch):
        monkeypatch.setenv("APPROVAL_DATABASE_URL", "")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///generic.db")
        assert database_url_from_env() == "sqlite:///generic.db"


class TestBuildEngine:
    def test_memory_sqlite_shares_one_connection(self):
        engine = build_engine("sqlite://")
        try:
            assert isinstance(engine.pool, StaticPool)
            with engine.begin() as conn:
                conn.execute(text("CREATE TABLE t (x INTEGER)"))
            with engine.connect() as conn:
                assert conn.execute(text("SELECT count(*) FROM t")).scalar_one() == 0
        finally:
            engine.dispose()

    def test_sqlite_foreign_keys_enabled(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
        try:
            with engine.connect() as conn:
                assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
        finally:
            engine.dispose()

    def test_savepoint_rollback(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'sp.db'}")
        try:
            with engine.begin() as conn:
                conn.execute(text("CREATE TABLE t (x INTEGER)"))
            with engine.connect() as conn:
                with conn.begin():
                    conn.execute(text("INSERT INTO t VALUES (1)"))
                    nested = conn.begin_nested()
                    conn.execute(text("INSERT INTO t VALUES (2)"))
                    nested.rollback()
                assert conn.execute(text("SELECT x FROM t")).scalars().all() == [1]
        finally:
            engine.dispose()


class TestSessionScope:
    def test_commit_on_success(self, db_tables):
        with session_scope() as session:
            assert session.execute(text("SELECT 1")).scalar_one() == 1

    def test_rollback_on_error(self, db_tables, test_actor_id):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(WorkflowDefinitionModel(
                    name="Scoped", applicability=["memo"], created_by_id=test_actor_id,
                ))
                session.flush()
                raise RuntimeError("boom")

        with session_scope() as session:
            count = session.execute(
                select(func.count()).select_from(WorkflowDefinitionModel).where(
                    WorkflowDefinitionModel.name == "Scoped",
                )
            ).scalar_one()
        assert count == 0
