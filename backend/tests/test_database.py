"""Engine configuration: pool choice per database URL and session isolation."""

import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from app.database import Base, _get_engine_kwargs
from app.services.query_engine import apply_direct_action, raise_query
from app.services.query_errors import StorageError
from app.services.query_repository import QueryRepository


class TestEngineKwargs:

    def test_memory_sqlite_shares_one_connection(self):
        kwargs = _get_engine_kwargs("sqlite+aiosqlite:///:memory:")
        assert kwargs["poolclass"] is StaticPool

    def test_file_sqlite_gets_connection_per_session(self, tmp_path):
        kwargs = _get_engine_kwargs(f"sqlite+aiosqlite:///{tmp_path / 'opsquery.db'}")
        assert kwargs["poolclass"] is NullPool

    def test_default_file_url(self):
        assert _get_engine_kwargs("sqlite+aiosqlite:///./opsquery.db")["poolclass"] is NullPool

    def test_server_database_uses_default_pool(self):
        kwargs = _get_engine_kwargs("postgresql+asyncpg://ops:secret@db/opsquery")
        assert "poolclass" not in kwargs
        assert "connect_args" not in kwargs


@pytest_asyncio.fixture
async def file_sessions(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'opsquery.db'}"
    engine = create_async_engine(url, **_get_engine_kwargs(url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


async def _in_session(sessions, fn, *args, **kwargs):
    async with sessions() as session:
        return await fn(session, *args, **kwargs)


class TestSessionIsolation:

    @pytest.mark.asyncio
    async def test_other_commit_does_not_publish_failed_mutation(self, file_sessions, ops, manager):
        """A commit on application B must not carry A's flushed, then failed, writes."""
        ids = {}
        for app_no in ("APP-A", "APP-B"):
            application = await _in_session(
                file_sessions, raise_query, ops,
                app_no=app_no, queries=["Only"], send_to=["Sales"], branch_code="DEL",
            )
            ids[app_no] = (application.id, application.queries[0].id)
        a_app_id, a_query_id = ids["APP-A"]
        _, b_query_id = ids["APP-B"]

        a_flushed = asyncio.Event()
        b_done = asyncio.Event()
        original_append = QueryRepository.append_event

        async def fail_after_flush(self, event):
            if event.application_id != a_app_id:
                return await original_append(self, event)
            await self.db.flush()
            a_flushed.set()
            try:
                await asyncio.wait_for(b_done.wait(), timeout=0.5)
            except asyncio.TimeoutError:
                pass
            raise StorageError("event log unavailable")

        async def approve_b():
            await a_flushed.wait()
            await _in_session(file_sessions, apply_direct_action, manager, b_query_id, "approve")
            b_done.set()

        with patch.object(QueryRepository, "append_event", fail_after_flush):
            a_result, b_result = await asyncio.gather(
                _in_session(file_sessions, apply_direct_action, manager, a_query_id, "approve"),
                approve_b(),
                return_exceptions=True,
            )

        assert isinstance(a_result, StorageError)
        assert b_result is None

        async with file_sessions() as session:
            repo = QueryRepository(session)
            _, a_query = await repo.find_query(a_query_id)
            _, b_query = await repo.find_query(b_query_id)
            a_kinds = [e.kind for e in await repo.list_events(query_id=a_query_id)]
        assert a_query.status == "pending"
        assert a_kinds == ["message"]
        assert b_query.status == "approved"
