from __future__ import annotations

import datetime
import os
from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqla_tablemapper import MetaDataColumnProvider, TableMapper, sqla_cache_clear

from .models import customers, metadata, order_lines, orders, products, roles, user_roles, users


CREATED_ON = datetime.datetime(2024, 1, 15, 10, 30)

pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


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

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
def mapper(connection: AsyncConnection) -> TableMapper:
    """A mapper reflecting the test database.

    Bound to the sync side of the test connection: call it only from inside
    ``connection.run_sync``.
    """
    return TableMapper(connection.sync_connection)


@pytest.fixture
def offline_mapper() -> TableMapper:
    """A mapper reading columns from the test MetaData. Never connects."""
    return TableMapper(
        sa.create_engine("sqlite://"),
        column_provider=MetaDataColumnProvider(metadata),
    )


@pytest.fixture
async def seed_data(connection: AsyncConnection) -> dict[str, list[dict[str, Any]]]:
    data: dict[str, list[dict[str, Any]]] = {
        "customers": [
            {"id": 10, "name": "alice", "active": True},
            {"id": 11, "name": "bob", "active": True},
            {"id": 12, "name": "charlie", "active": False},
        ],
        "products": [
            {"id": 1, "name": "pencil", "price": 1.5},
            {"id": 2, "name": "notebook", "price": 3.25},
            {"id": 3, "name": "eraser", "price": 0.75},
        ],
        "orders": [
            {"id": 1, "customer_id": 10, "order_status": "OPEN", "created_on": CREATED_ON, "version": 1},
            {"id": 2, "customer_id": 10, "order_status": "OPEN", "created_on": CREATED_ON, "version": 1},
            {"id": 3, "customer_id": 11, "order_status": "CLOSED", "created_on": CREATED_ON, "version": 2},
            {"id": 4, "customer_id": None, "order_status": "DRAFT", "created_on": None, "version": None},
        ],
        "order_lines": [
            {"id": 1, "order_id": 1, "product_id": 1, "num_of_units": 2},
            {"id": 2, "order_id": 1, "product_id": 2, "num_of_units": 1},
            {"id": 3, "order_id": 1, "product_id": 3, "num_of_units": 5},
            {"id": 4, "order_id": 3, "product_id": 1, "num_of_units": 10},
        ],
        "users": [
            {"id": 1, "name": "alice"},
            {"id": 2, "name": "bob"},
            {"id": 3, "name": "charlie"},
        ],
        "roles": [
            {"id": 1, "name": "admin", "level": 10},
            {"id": 2, "name": "editor", "level": 5},
            {"id": 3, "name": "viewer", "level": 1},
        ],
        "user_roles": [
            {"user_id": 1, "role_id": 1},
            {"user_id": 1, "role_id": 2},
            {"user_id": 2, "role_id": 2},
            {"user_id": 2, "role_id": 3},
        ],
    }
    for table in (customers, products, orders, order_lines, users, roles, user_roles):
        await connection.execute(table.insert(), data[table.name])

    return data


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    sqla_cache_clear()
