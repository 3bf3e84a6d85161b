from __future__ import annotations

from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection

from sqla_tablemapper import ResultExtractor, TableMapper

from ..models import Customer, Order, OrderLine, Product, Role, User


pytestmark = pytest.mark.anyio


def _order_graph(
    mapper: TableMapper, connection: sa.Connection
) -> tuple[ResultExtractor[Order], list[Any]]:
    o = mapper.get_select_mapper(Order, "o")
    c = mapper.get_select_mapper(Customer, "c")
    ol = mapper.get_select_mapper(OrderLine, "ol")
    p = mapper.get_select_mapper(Product, "p")
    sql = (
        f"SELECT {o.columns_sql()}, {c.columns_sql()}, {ol.columns_sql()}, {p.columns_sql()} "
        "FROM orders o "
        "LEFT JOIN customers c ON o.customer_id = c.id "
        "LEFT JOIN order_lines ol ON o.id = ol.order_id "
        "LEFT JOIN products p ON ol.product_id = p.id "
        "ORDER BY o.id, ol.id"
    )
    statement = sa.text(sql).columns(
        *o.typed_columns(), *c.typed_columns(), *ol.typed_columns(), *p.typed_columns()
    )
    extractor = (
        ResultExtractor(Order, o, c, ol, p)
        .has_one(Order, Customer, "customer")
        .has_many(Order, OrderLine, "lines")
        .has_one(OrderLine, Product, "product")
    )
    return extractor, connection.execute(statement).all()


async def test_nested_graph(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    def run(sync_connection: sa.Connection) -> list[Order]:
        extractor, rows = _order_graph(mapper, sync_connection)
        return extractor.extract(rows)

    orders = await connection.run_sync(run)

    assert [o.id for o in orders] == [1, 2, 3, 4]
    assert [line.product.name for line in orders[0].lines] == ["pencil", "notebook", "eraser"]
    assert orders[0].lines[0].product is orders[2].lines[0].product
    assert orders[0].customer is orders[1].customer
    assert orders[0].customer.name == "alice"
    assert orders[1].lines == []
    assert orders[3].customer is None
    assert orders[3].lines == []


async def test_repeated_rows_are_deduplicated(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    def run(sync_connection: sa.Connection) -> list[Order]:
        extractor, rows = _order_graph(mapper, sync_connection)
        return extractor.extract(rows + rows)

    orders = await connection.run_sync(run)

    assert [len(o.lines) for o in orders] == [3, 0, 1, 0]


async def test_many_to_many(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    def run(sync_connection: sa.Connection) -> list[User]:
        u = mapper.get_select_mapper(User, "u")
        r = mapper.get_select_mapper(Role, "r")
        sql = (
            f"SELECT {u.columns_sql()}, {r.columns_sql()} FROM users u "
            "LEFT JOIN user_roles ur ON u.id = ur.user_id "
            "LEFT JOIN roles r ON ur.role_id = r.id "
            "ORDER BY u.id, r.id"
        )
        rows = sync_connection.execute(sa.text(sql))
        return ResultExtractor(User, u, r).has_many(User, Role, "roles").extract(rows)

    users = await connection.run_sync(run)

    assert [[role.name for role in user.roles] for user in users] == [
        ["admin", "editor"],
        ["editor", "viewer"],
        [],
    ]
