from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

import sqlalchemy as sa

from .exceptions import RelationshipError, UsageError
from .mapping import TableMapping
from .select import SelectMapper
from .tools import (
    add_to_collection,
    is_blank,
    qualified_through_table,
    table_name_only,
    type_key,
)
from .validator import Relationship, RelationshipKind, validate_limit_offset, validate_relationship


if TYPE_CHECKING:
    from .core import TableMapper

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _required(value: str | None, argument: str) -> str:
    if value is None or is_blank(value):
        raise UsageError(f"{argument} cannot be None or blank")

    return value.strip()


def _join_column(value: str | None, argument: str) -> str:
    return _required(value, argument).lower()


class _RelationshipQuery(Generic[T]):
    """Fluent relationship declaration shared by :class:`Query` and ``QueryMerge``."""

    __slots__ = (
        "_join_column",
        "_kind",
        "_populate_property",
        "_related_type",
        "_through_owner_column",
        "_through_related_column",
        "_through_table",
        "owner_type",
    )

    def __init__(self, owner_type: type[T]) -> None:
        if owner_type is None:
            raise UsageError("owner_type cannot be None")

        self.owner_type = owner_type
        self._related_type: type[Any] | None = None
        self._kind: RelationshipKind | None = None
        self._join_column: str | None = None
        self._through_table: str | None = None
        self._through_owner_column: str | None = None
        self._through_related_column: str | None = None
        self._populate_property: str | None = None

    def _relate(self, related_type: type[Any], kind: RelationshipKind) -> Self:
        if related_type is None:
            raise UsageError("related_type cannot be None")
        if self._related_type is not None:
            raise UsageError(
                f"{type(self).__name__} of {self.owner_type.__name__} already has a relationship"
            )

        self._related_type = related_type
        self._kind = kind
        return self

    def _expect(self, method: str, *kinds: RelationshipKind) -> None:
        if self._kind not in kinds:
            follows = "has_many()" if kinds[0].plural else "has_one()"
            raise UsageError(f"{method}() must follow {follows}")

    def has_one(self, related_type: type[Any]) -> Self:
        """Declare a to-one relationship whose join column lives on the owner's table."""
        return self._relate(related_type, RelationshipKind.ONE_TO_ONE)

    def has_many(self, related_type: type[Any]) -> Self:
        """Declare a to-many relationship.

        Follow with :meth:`join_column_many_side`, or with
        :meth:`through_join_table` and :meth:`through_join_columns` for a
        many-to-many relationship.
        """
        return self._relate(related_type, RelationshipKind.ONE_TO_MANY)

    def join_column_owning_side(self, join_column: str) -> Self:
        """The owner table column holding the related id. No table prefix."""
        self._expect("join_column_owning_side", RelationshipKind.ONE_TO_ONE)
        self._join_column = _join_column(join_column, "join_column")
        return self

    def join_column_many_side(self, join_column: str) -> Self:
        """The related table column holding the owner id. No table prefix."""
        self._expect("join_column_many_side", RelationshipKind.ONE_TO_MANY)
        self._join_column = _join_column(join_column, "join_column")
        return self

    def through_join_table(self, table_name: str) -> Self:
        """The association table of a many-to-many relationship, optionally ``schema.`` qualified."""
        self._expect(
            "through_join_table", RelationshipKind.ONE_TO_MANY, RelationshipKind.MANY_TO_MANY
        )
        self._through_table = _required(table_name, "table_name")
        self._kind = RelationshipKind.MANY_TO_MANY
        return self

    def through_join_columns(self, owner_join_column: str, related_join_column: str) -> Self:
        """Association table columns referencing the owner id and the related id."""
        self._expect("through_join_columns", RelationshipKind.MANY_TO_MANY)
        self._through_owner_column = _join_column(owner_join_column, "owner_join_column")
        self._through_related_column = _join_column(related_join_column, "related_join_column")
        return self

    def populate_property(self, property_name: str) -> Self:
        """The owner property receiving the related record(s)."""
        if self._related_type is None:
            raise UsageError("populate_property() must follow has_one() or has_many()")

        self._populate_property = _required(property_name, "property_name")
        return self

    def relationship(self) -> Relationship | None:
        """The declared relationship, ``None`` when only the owner is queried."""
        if self._related_type is None or self._kind is None:
            return None

        return Relationship(
            owner_type=self.owner_type,
            related_type=self._related_type,
            kind=self._kind,
            populate_property=self._populate_property,
            join_column=self._join_column,
            through_table=self._through_table,
            through_owner_column=self._through_owner_column,
            through_related_column=self._through_related_column,
        )

    def _validate(
        self,
        owner_mapping: TableMapping,
        related_mapping: TableMapping,
        relationship: Relationship,
    ) -> None:
        if errors := validate_relationship(owner_mapping, related_mapping, relationship):
            raise RelationshipError.from_errors(errors)


class Query(_RelationshipQuery[T]):
    """Fetch records of a type, optionally with one relationship, in a single query.

    The relationship is loaded through a ``LEFT JOIN``; the flat rows are
    folded back into a graph where each owner and each related record is
    materialized once::

        orders = (
            Query(Order)
            .has_many(OrderLine)
            .join_column_many_side("order_id")
            .populate_property("lines")
            .where("orders.order_status = :status", status="OPEN")
            .order_by("orders.id, order_lines.id")
            .execute(mapper)
        )

    Column references in ``where`` and ``order_by`` use table names, never
    aliases. The generated SQL, minus those clauses, is cached per
    relationship shape once a query with that shape has run successfully.
    """

    __slots__ = ("_limit_offset", "_order_by", "_params", "_where")

    def __init__(self, owner_type: type[T]) -> None:
        super().__init__(owner_type)
        self._where: str | None = None
        self._params: dict[str, Any] = {}
        self._order_by: str | None = None
        self._limit_offset: str | None = None

    def where(self, clause: str, **params: Any) -> Self:
        """Filter with *clause*, binding ``:name`` placeholders from *params*."""
        self._where = _required(clause, "where clause")
        self._params = params
        return self

    def order_by(self, order_by: str) -> Self:
        self._order_by = _required(order_by, "order_by")
        return self

    def limit_offset_clause(self, clause: str) -> Self:
        """Append a vendor limit/offset clause. Only for owners alone or ``has_one``."""
        self._limit_offset = _required(clause, "limit_offset_clause")
        return self

    def shape_key(self) -> str:
        if (relationship := self.relationship()) is None:
            return type_key(self.owner_type)

        return relationship.shape_key()

    def execute(self, mapper: TableMapper) -> list[T]:
        """Run the query and return the owners in the order the database returned them.

        Raises:
            MappingError: If either record type cannot be mapped.
            RelationshipError: If the relationship is wired incorrectly.
        """
        if mapper is None:
            raise UsageError("mapper cannot be None")

        relationship = self.relationship()
        if relationship is not None:
            validate_limit_offset(relationship.kind, self._limit_offset)

        owner_mapping = mapper.get_table_mapping(self.owner_type)
        related_mapping = (
            mapper.get_table_mapping(relationship.related_type) if relationship else None
        )
        owner_sm: SelectMapper[T] = SelectMapper(
            owner_mapping, owner_mapping.table_name, label_prefix="o", converter=mapper.converter
        )
        related_sm: SelectMapper[Any] | None = None
        if related_mapping is not None:
            related_sm = SelectMapper(
                related_mapping,
                related_mapping.table_name,
                label_prefix="r",
                converter=mapper.converter,
            )

        cache = mapper.query_cache
        key = self.shape_key()
        shape_sql = cache.get(key)
        cached = shape_sql is not None
        if shape_sql is None:
            if relationship is not None and related_mapping is not None:
                self._validate(owner_mapping, related_mapping, relationship)

            shape_sql = _shape_sql(owner_sm, related_sm, relationship)
            logger.debug("Generated query SQL for shape %s", key)

        columns = owner_sm.typed_columns()
        if related_sm is not None:
            columns += related_sm.typed_columns()

        statement = sa.text(self._complete_sql(shape_sql)).columns(*columns)
        with mapper.connection() as connection:
            result = connection.execute(statement, self._params)
            owners = _assemble(result, owner_sm, related_sm, relationship)

        if not cached:
            cache.put(key, shape_sql)
            logger.debug("Cached query SQL for shape %s", key)

        return owners

    def _complete_sql(self, shape_sql: str) -> str:
        sql = shape_sql
        if self._where is not None:
            sql += f" WHERE {self._where}"
        if self._order_by is not None:
            sql += f" ORDER BY {self._order_by}"
        if self._limit_offset is not None:
            sql += f" {self._limit_offset}"

        return sql


def _shape_sql(
    owner_sm: SelectMapper[Any],
    related_sm: SelectMapper[Any] | None,
    relationship: Relationship | None,
) -> str:
    owner = owner_sm.mapping
    if related_sm is None or relationship is None:
        return f"SELECT {owner_sm.columns_sql()} FROM {owner.qualified_table_name}"

    related = related_sm.mapping
    sql = (
        f"SELECT {owner_sm.columns_sql()}, {related_sm.columns_sql()} "
        f"FROM {owner.qualified_table_name}"
    )
    if relationship.kind is RelationshipKind.ONE_TO_ONE:
        return (
            f"{sql} LEFT JOIN {related.qualified_table_name} ON "
            f"{owner.table_name}.{relationship.join_column} = "
            f"{related.table_name}.{related.id_column_name}"
        )

    if relationship.kind is RelationshipKind.ONE_TO_MANY:
        return (
            f"{sql} LEFT JOIN {related.qualified_table_name} ON "
            f"{owner.table_name}.{owner.id_column_name} = "
            f"{related.table_name}.{relationship.join_column}"
        )

    assert relationship.through_table is not None
    through = table_name_only(relationship.through_table)
    return (
        f"{sql} LEFT JOIN "
        f"{qualified_through_table(relationship.through_table, owner.qualified_table_prefix)} ON "
        f"{owner.table_name}.{owner.id_column_name} = "
        f"{through}.{relationship.through_owner_column} "
        f"LEFT JOIN {related.qualified_table_name} ON "
        f"{through}.{relationship.through_related_column} = "
        f"{related.table_name}.{related.id_column_name}"
    )


def _assemble(
    rows: Iterable[Any],
    owner_sm: SelectMapper[T],
    related_sm: SelectMapper[Any] | None,
    relationship: Relationship | None,
) -> list[T]:
    """Fold joined rows into owners, each owner and related record built once."""
    owners: dict[Any, T] = {}
    related_by_id: dict[Any, Any] = {}
    plural = relationship is not None and relationship.kind.plural
    prop = relationship.populate_property if relationship is not None else None

    for row in rows:
        owner_id = owner_sm.read_id(row)
        if owner_id is None:
            continue

        owner = owners.get(owner_id)
        if owner is None:
            owner = owner_sm.build_model(row)
            assert owner is not None
            owners[owner_id] = owner
            if plural:
                # the record type may hand out pre-populated collections
                getattr(owner, prop).clear()

        if related_sm is None:
            continue

        related = None
        related_id = related_sm.read_id(row)
        if related_id is not None:
            related = related_by_id.get(related_id)
            if related is None:
                related = related_sm.build_model(row)
                related_by_id[related_id] = related

        if not plural:
            setattr(owner, prop, related)
        elif related is not None:
            add_to_collection(getattr(owner, prop), related)

    return list(owners.values())
