from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection

from sqla_tablemapper import MappingError, Query, RelationshipError, TableMapper, column

from ..models import (
    Customer,
    Order,
    OrderLine,
    OrderWithSeededLines,
    Role,
    RoleName,
    User,
    UserWithRoleNames,
    UserWithRoleSet,
)


pytestmark = pytest.mark.anyio


def _orders_with_customer() -> Query[Order]:
    return (
        Query(Order)
        .has_one(Customer)
        .join_column_owning_side("customer_id")
        .populate_property("customer")
    )


def _orders_with_lines() -> Query[Order]:
    return (
        Query(Order)
        .has_many(OrderLine)
        .join_column_many_side("order_id")
        .populate_property("lines")
    )


def _users_with_roles() -> Query[User]:
    return (
        Query(User)
        .has_many(Role)
        .through_join_table("user_roles")
        .through_join_columns("user_id", "role_id")
        .populate_property("roles")
    )


async def test_owner_only(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    customers = await connection.run_sync(
        lambda _: Query(Customer).order_by("customers.id").execute(mapper)
    )

    assert customers == [
        Customer(id=10, name="alice", active=True),
        Customer(id=11, name="bob", active=True),
        Customer(id=12, name="charlie", active=False),
    ]


async def test_columns_are_converted(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    orders = await connection.run_sync(
        lambda _: Query(Order).where("orders.id = :id", id=1).execute(mapper)
    )

    assert len(orders) == 1
    assert orders[0].created_on == seed_data["orders"][0]["created_on"]
    assert orders[0].status == "OPEN"
    assert orders[0].version == 1


async def test_has_one(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    orders = await connection.run_sync(
        lambda _: _orders_with_customer().order_by("orders.id").execute(mapper)
    )

    assert [o.id for o in orders] == [1, 2, 3, 4]
    assert orders[0].customer == Customer(id=10, name="alice", active=True)
    # one record per id, shared by every owner referencing it
    assert orders[0].customer is orders[1].customer
    assert orders[2].customer.name == "bob"
    assert orders[3].customer is None


async def test_has_many(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    orders = await connection.run_sync(
        lambda _: _orders_with_lines().order_by("orders.id, order_lines.id").execute(mapper)
    )

    assert [o.id for o in orders] == [1, 2, 3, 4]
    assert [line.id for line in orders[0].lines] == [1, 2, 3]
    assert orders[1].lines == []
    assert orders[2].lines == [OrderLine(id=4, order_id=3, product_id=1, num_of_units=10)]
    assert orders[3].lines == []


async def test_has_many_without_order(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    orders = await connection.run_sync(
        lambda _: _orders_with_lines().where("orders.id = :id", id=1).execute(mapper)
    )

    assert len(orders) == 1
    assert sorted(line.id for line in orders[0].lines) == [1, 2, 3]


async def test_has_many_through(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    users = await connection.run_sync(
        lambda _: _users_with_roles().order_by("users.id, roles.id").execute(mapper)
    )

    assert [u.name for u in users] == ["alice", "bob", "charlie"]
    assert [r.name for r in users[0].roles] == ["admin", "editor"]
    assert [r.name for r in users[1].roles] == ["editor", "viewer"]
    assert users[2].roles == []
    assert users[0].roles[1] is users[1].roles[0]


async def test_has_many_interleaved_owners(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    # rows stream as owners 1, 3, 1, 1
    orders = await connection.run_sync(
        lambda _: _orders_with_lines()
        .where("orders.id IN (1, 3)")
        .order_by("order_lines.product_id, order_lines.id")
        .execute(mapper)
    )

    assert [o.id for o in orders] == [1, 3]
    assert [line.id for line in orders[0].lines] == [1, 2, 3]
    assert [line.id for line in orders[1].lines] == [4]


async def test_has_many_through_into_set(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    users = await connection.run_sync(
        lambda _: Query(UserWithRoleNames)
        .has_many(RoleName)
        .through_join_table("user_roles")
        .through_join_columns("user_id", "role_id")
        .populate_property("roles")
        .order_by("users.id")
        .execute(mapper)
    )

    assert [u.id for u in users] == [1, 2, 3]
    assert users[0].roles == {RoleName(id=1, name="admin"), RoleName(id=2, name="editor")}
    assert users[1].roles == {RoleName(id=2, name="editor"), RoleName(id=3, name="viewer")}
    assert users[2].roles == set()


async def test_set_of_unhashable_records_is_rejected(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    query = (
        Query(UserWithRoleSet)
        .has_many(Role)
        .through_join_table("user_roles")
        .through_join_columns("user_id", "role_id")
        .populate_property("roles")
    )

    with pytest.raises(RelationshipError, match="holds unhashable Role records"):
        await connection.run_sync(lambda _: query.execute(mapper))

    assert mapper.query_cache.info()["currsize"] == 0


async def test_where_can_reference_related_table(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    orders = await connection.run_sync(
        lambda _: _orders_with_customer()
        .where("customers.name = :name", name="alice")
        .order_by("orders.id")
        .execute(mapper)
    )

    assert [o.id for o in orders] == [1, 2]


async def test_limit_with_has_one(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    orders = await connection.run_sync(
        lambda _: _orders_with_customer()
        .order_by("orders.id")
        .limit_offset_clause("LIMIT 2 OFFSET 1")
        .execute(mapper)
    )

    assert [o.id for o in orders] == [2, 3]


@pytest.mark.parametrize("build", [_orders_with_lines, _users_with_roles])
async def test_limit_rejected_for_plural(
    connection: AsyncConnection, mapper: TableMapper, build: Any
) -> None:
    with pytest.raises(RelationshipError, match="limit_offset_clause is not supported"):
        await connection.run_sync(
            lambda _: build().limit_offset_clause("LIMIT 10").execute(mapper)
        )

    assert mapper.query_cache.info()["currsize"] == 0


async def test_shape_validated_and_cached_once(
    connection: AsyncConnection,
    mapper: TableMapper,
    seed_data: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    import sqla_tablemapper.query

    calls: list[Any] = []
    validate = sqla_tablemapper.query.validate_relationship

    def counting(*args: Any, **kwargs: Any) -> Any:
        calls.append(args)
        return validate(*args, **kwargs)

    monkeypatch.setattr(sqla_tablemapper.query, "validate_relationship", counting)

    def run(_: sa.Connection) -> None:
        _orders_with_customer().execute(mapper)
        _orders_with_customer().where("orders.id = :id", id=3).execute(mapper)
        _orders_with_customer().order_by("orders.id DESC").execute(mapper)

    await connection.run_sync(run)

    assert len(calls) == 1
    assert mapper.query_cache.info() == {"hits": 2, "misses": 1, "maxsize": 1000, "currsize": 1}


async def test_invalid_shape_is_not_cached(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    query = (
        Query(Order)
        .has_one(Customer)
        .join_column_owning_side("customer_ref")
        .populate_property("customer")
    )

    for _ in range(2):
        with pytest.raises(RelationshipError, match="customer_ref"):
            await connection.run_sync(lambda _: query.execute(mapper))

    assert mapper.query_cache.info()["currsize"] == 0


async def test_failed_execution_is_not_cached(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    with pytest.raises(sa.exc.DBAPIError):
        await connection.run_sync(
            lambda _: _orders_with_customer().where("orders.no_such_column = 1").execute(mapper)
        )

    assert mapper.query_cache.info()["currsize"] == 0


async def test_preset_collection_is_cleared(
    connection: AsyncConnection, mapper: TableMapper, seed_data: dict[str, Any]
) -> None:
    def query() -> Query[OrderWithSeededLines]:
        return (
            Query(OrderWithSeededLines)
            .has_many(OrderLine)
            .join_column_many_side("order_id")
            .populate_property("lines")
            .order_by("orders.id, order_lines.id")
        )

    orders = await connection.run_sync(
        lambda _: query().where("orders.id IN (1, 2)").execute(mapper)
    )

    assert [line.id for line in orders[0].lines] == [1, 2, 3]
    assert orders[1].lines == []


async def test_unknown_table(connection: AsyncConnection, mapper: TableMapper) -> None:
    @dataclass
    class Invoice:
        __tablename__ = "invoices"

        id: int | None = column(id=True)

    with pytest.raises(MappingError, match="Unable to locate meta-data for table 'invoices'"):
        await connection.run_sync(lambda _: Query(Invoice).execute(mapper))


async def test_mapper_created_inside_run_sync(
    connection: AsyncConnection, seed_data: dict[str, Any]
) -> None:
    def run(sync_connection: sa.Connection) -> list[Customer]:
        # a Connection bind is used as is, so pass the run_sync connection
        mapper = TableMapper(sync_connection)
        return Query(Customer).where("customers.active = :active", active=False).execute(mapper)

    customers = await connection.run_sync(run)

    assert [c.name for c in customers] == ["charlie"]
