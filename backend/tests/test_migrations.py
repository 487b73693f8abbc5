"""The schema migration must build the same tables the models declare."""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

import app.models  # noqa: F401
from app.database import Base

MIGRATION = (
    Path(__file__).resolve().parents[1]
    / "app" / "migrations" / "versions" / "001_query_workflow_tables.py"
)


def _load_migration():
    spec = importlib.util.spec_from_file_location("query_workflow_migration", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(step):
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        ctx = MigrationContext.configure(conn)
        with Operations.context(ctx):
            step()
    return engine


@pytest.fixture
def migrated():
    migration = _load_migration()
    engine = _run(migration.upgrade)
    yield engine, migration
    engine.dispose()


class TestQueryWorkflowMigration:

    def test_revision_is_root(self):
        migration = _load_migration()
        assert migration.revision == "001_query_workflow"
        assert migration.down_revision is None

    def test_tables_match_models(self, migrated):
        engine, _ = migrated
        assert set(inspect(engine).get_table_names()) == set(Base.metadata.tables)

    def test_columns_match_models(self, migrated):
        engine, _ = migrated
        inspector = inspect(engine)
        for name, table in Base.metadata.tables.items():
            migrated_columns = {c["name"] for c in inspector.get_columns(name)}
            assert migrated_columns == set(table.columns.keys()), name

    def test_app_no_is_unique(self, migrated):
        engine, _ = migrated
        indexes = {i["name"]: i for i in inspect(engine).get_indexes("query_applications")}
        assert indexes["ix_query_applications_app_no"]["unique"]

    def test_downgrade_drops_everything(self, migrated):
        engine, migration = migrated
        with engine.begin() as conn:
            ctx = MigrationContext.configure(conn)
            with Operations.context(ctx):
                migration.downgrade()
        assert inspect(engine).get_table_names() == []
