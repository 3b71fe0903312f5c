from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator

import pytest
import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from sqla_composite import composite_cache_clear
from sqla_composite.registry import Registry, get_relations, init_registry

from .models import (
    Base,
    Ledger,
    LedgerEntry,
    Post,
    Shipment,
    User,
    Warehouse,
)


pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "mysql", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _init_registry() -> None:
    """Install the Registry with the test models' composite relations.

    Sync, no DB needed -- safe to run for all tests including unit tests.
    """
    try:
        Registry()
    except RuntimeError:
        init_registry(get_relations(Base))


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+asyncpg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                dsn = (
                    f"mysql+asyncmy://{my.username}:{my.password}"
                    f"@{host}:{port}/{my.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def session(connection: AsyncConnection) -> AsyncIterator[AsyncSession]:
    sess = AsyncSession(bind=connection, expire_on_commit=False)
    yield sess
    await sess.close()


def _seed_rows() -> dict[str, list[Base]]:
    alice = User(id=1, name="alice")
    bob = User(id=2, name="bob")
    charlie = User(id=3, name="charlie")

    posts = [
        Post(id=1, title="Alice Post 1", author_id=1),
        Post(id=2, title="Alice Post 2", author_id=1),
        Post(id=3, title="Bob Post 1", author_id=2),
        Post(id=4, title="Orphan", author_id=None),
    ]

    north = Warehouse(id=1, code=5, region="a")
    south = Warehouse(id=2, code=6, region="b")
    empty = Warehouse(id=3, code=9, region="z")
    # shares region with ``north`` and code with ``south`` but matches neither
    crossed = Warehouse(id=4, code=6, region="a")
    unnumbered = Warehouse(id=5, code=None, region="a")

    shipments = [
        Shipment(id=10, label="b-crate", status="open", warehouse_code=5, warehouse_region="a"),
        Shipment(id=11, label="a-crate", status="closed", warehouse_code=5, warehouse_region="a"),
        Shipment(id=12, label="pallet", status="open", warehouse_code=6, warehouse_region="b"),
        Shipment(id=13, label="stray", status="open", warehouse_code=5, warehouse_region="b"),
        # "5" as a string region never equals the integer code
        Shipment(id=14, label="typed", status="open", warehouse_code=7, warehouse_region="5"),
    ]

    ledgers = [
        Ledger(tenant_id=1, number=1, title="t1 main"),
        Ledger(tenant_id=1, number=2, title="t1 petty"),
        Ledger(tenant_id=2, number=1, title="t2 main"),
    ]
    entries = [
        LedgerEntry(id=1, tenant_id=1, ledger_number=1, amount=30),
        LedgerEntry(id=2, tenant_id=1, ledger_number=1, amount=10),
        LedgerEntry(id=3, tenant_id=1, ledger_number=2, amount=5),
        LedgerEntry(id=4, tenant_id=2, ledger_number=2, amount=99),
    ]

    return {
        "users": [alice, bob, charlie],
        "posts": posts,
        "warehouses": [north, south, empty, crossed, unnumbered],
        "shipments": shipments,
        "ledgers": ledgers,
        "entries": entries,
    }


@pytest.fixture
async def seed_data(session: AsyncSession) -> dict[str, list[Base]]:
    rows = _seed_rows()
    for group in rows.values():
        session.add_all(group)
        await session.flush()

    session.expunge_all()

    return rows


@pytest.fixture
def sync_session() -> Iterator[orm.Session]:
    """In-memory sqlite ``Session`` for lazy (descriptor) loading."""
    sync_engine = sa.create_engine("sqlite://")
    Base.metadata.create_all(sync_engine)
    with orm.Session(sync_engine) as sess:
        for group in _seed_rows().values():
            sess.add_all(group)
            sess.flush()
        sess.commit()
        sess.expunge_all()
        yield sess
    sync_engine.dispose()


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    composite_cache_clear()


@pytest.fixture
def reset_registry_singleton() -> Iterator[None]:
    saved = Registry._Registry__instance  # type: ignore[attr-defined]
    saved_relations = getattr(saved, "_relations", None)
    yield
    Registry._Registry__instance = saved  # type: ignore[attr-defined]
    if saved is not None and saved_relations is not None:
        saved.set_relations(saved_relations)
