from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

import sqlalchemy as sa

from .exceptions import RelationshipError, UsageError
from .mapping import TableMapping
from .query import _join_column, _required
from .tools import type_key
from .validator import Relationship, RelationshipKind, validate_relationship


if TYPE_CHECKING:
    from .core import TableMapper

T = TypeVar("T")

logger = logging.getLogger(__name__)


class QueryCount(Generic[T]):
    """Count owner records, optionally joined to the record they belong to.

    Pairs with :class:`~sqla_tablemapper.query.Query` for pagination: the
    ``where`` clause of both may reference the joined table::

        total = (
            QueryCount(Order)
            .belongs_to(Customer)
            .join_column_owning_side("customer_id")
            .where("customers.name LIKE :name", name="A%")
            .execute(mapper)
        )

    Pass table aliases to refer to the tables by alias in the clause instead.
    """

    __slots__ = (
        "_join_column",
        "_params",
        "_related_alias",
        "_related_type",
        "_where",
        "owner_alias",
        "owner_type",
    )

    def __init__(self, owner_type: type[T], table_alias: str | None = None) -> None:
        if owner_type is None:
            raise UsageError("owner_type cannot be None")

        self.owner_type = owner_type
        self.owner_alias = None if table_alias is None else _required(table_alias, "table_alias")
        self._related_type: type[Any] | None = None
        self._related_alias: str | None = None
        self._join_column: str | None = None
        self._where: str | None = None
        self._params: dict[str, Any] = {}

    def belongs_to(self, related_type: type[Any], table_alias: str | None = None) -> Self:
        """Join the record type the owner refers to through its join column."""
        if related_type is None:
            raise UsageError("related_type cannot be None")

        self._related_type = related_type
        self._related_alias = (
            None if table_alias is None else _required(table_alias, "table_alias")
        )
        return self

    def join_column_owning_side(self, join_column: str) -> Self:
        if self._related_type is None:
            raise UsageError("join_column_owning_side() must follow belongs_to()")

        self._join_column = _join_column(join_column, "join_column")
        return self

    def where(self, clause: str, **params: Any) -> Self:
        self._where = _required(clause, "where clause")
        self._params = params
        return self

    def relationship(self) -> Relationship | None:
        if self._related_type is None:
            return None

        return Relationship(
            owner_type=self.owner_type,
            related_type=self._related_type,
            kind=RelationshipKind.ONE_TO_ONE,
            join_column=self._join_column,
        )

    def shape_key(self) -> str:
        if (relationship := self.relationship()) is None:
            return f"{type_key(self.owner_type)}-{self.owner_alias or ''}"

        return relationship.shape_key(self.owner_alias, self._related_alias)

    def execute(self, mapper: TableMapper) -> int:
        """Return the number of matching rows.

        Raises:
            MappingError: If either record type cannot be mapped.
            RelationshipError: If the join column is wired incorrectly.
        """
        if mapper is None:
            raise UsageError("mapper cannot be None")

        relationship = self.relationship()
        owner_mapping = mapper.get_table_mapping(self.owner_type)
        related_mapping = (
            mapper.get_table_mapping(relationship.related_type) if relationship else None
        )

        cache = mapper.query_count_cache
        key = self.shape_key()
        shape_sql = cache.get(key)
        cached = shape_sql is not None
        if shape_sql is None:
            if relationship is not None and related_mapping is not None:
                errors = validate_relationship(
                    owner_mapping, related_mapping, relationship, populate=False
                )
                if errors:
                    raise RelationshipError.from_errors(errors)

            shape_sql = self._shape_sql(owner_mapping, related_mapping)
            logger.debug("Generated count SQL for shape %s", key)

        sql = shape_sql if self._where is None else f"{shape_sql} WHERE {self._where}"
        with mapper.connection() as connection:
            count = connection.execute(sa.text(sql), self._params).scalar_one()

        if not cached:
            cache.put(key, shape_sql)
            logger.debug("Cached count SQL for shape %s", key)

        return int(count)

    def _shape_sql(self, owner: TableMapping, related: TableMapping | None) -> str:
        sql = f"SELECT count(*) AS record_count FROM {_from_item(owner, self.owner_alias)}"
        if related is None:
            return sql

        owner_prefix = self.owner_alias or owner.table_name
        related_prefix = self._related_alias or related.table_name
        return (
            f"{sql} LEFT JOIN {_from_item(related, self._related_alias)} ON "
            f"{owner_prefix}.{self._join_column} = {related_prefix}.{related.id_column_name}"
        )


def _from_item(mapping: TableMapping, alias: str | None) -> str:
    table = mapping.qualified_table_name
    return table if alias is None else f"{table} {alias}"
