"""Shared fixtures: a fresh in-memory database per test and a cast of callers."""

import os

# Must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401  (registers every table on Base.metadata)
from app.auth_utils import build_principal  # noqa: E402
from app.database import Base  # noqa: E402
from app.services.query_engine import raise_query  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── Callers ──────────────────────────────────────────────────

@pytest.fixture
def ops():
    return build_principal("u-ops", "operations", name="Operations Team")


@pytest.fixture
def manager():
    return build_principal("u-mgr", "management", name="Priya Manager")


@pytest.fixture
def sales_del():
    return build_principal("u-sd", "sales", name="Sales Delhi", branches=["del"])


@pytest.fixture
def sales_mum():
    return build_principal("u-sm", "sales", name="Sales Mumbai", branches=["MUM"])


@pytest.fixture
def credit_del():
    return build_principal("u-cd", "credit", name="Credit Delhi", branches=["DEL"])


@pytest.fixture
def make_application(db, ops):
    """Raise an application as Operations; defaults describe APP-1."""

    async def _make(
        app_no="APP-1",
        queries=("Q1", "Q2"),
        send_to=("Sales", "Credit"),
        branch_code="DEL",
        **extra,
    ):
        extra.setdefault("customer_name", "Asha Verma")
        extra.setdefault("branch", "Delhi Main")
        return await raise_query(
            db, ops,
            app_no=app_no,
            queries=list(queries),
            send_to=list(send_to),
            branch_code=branch_code,
            **extra,
        )

    return _make
