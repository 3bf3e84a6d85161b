from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Final, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

import sqlalchemy as sa

from .exceptions import RelationshipError, UsageError
from .mapping import TableMapping
from .query import _RelationshipQuery, _required
from .select import SelectMapper, row_mapping
from .tools import add_to_collection, chunked, qualified_through_table, table_name_only, unique
from .validator import Relationship, RelationshipKind


if TYPE_CHECKING:
    from .core import TableMapper

T = TypeVar("T")

JOIN_KEYS_PARAM: Final[str] = "join_keys"
OWNER_JOIN_KEY_LABEL: Final[str] = "o_join_key"

logger = logging.getLogger(__name__)


class QueryMerge(_RelationshipQuery[T]):
    """Populate a relationship of already loaded records with batched ``IN`` queries.

    Instead of joining (and multiplying owner rows by their related rows), the
    related records are fetched separately, ``in_clause_chunk_size`` join keys
    per query, and merged into the owners in memory::

        orders = Query(Order).where("orders.order_status = :s", s="OPEN").execute(mapper)
        QueryMerge(Order).has_one(Customer).join_column_owning_side(
            "customer_id"
        ).populate_property("customer").execute(mapper, orders)

    The order of the merge list is never changed. Merging again replaces what
    an earlier merge put into the relationship property.
    """

    __slots__ = ("_order_by",)

    def __init__(self, owner_type: type[T]) -> None:
        super().__init__(owner_type)
        self._order_by: str | None = None

    def order_by(self, order_by: str) -> Self:
        """Order the related records inside each owner's collection. Not for ``has_one``."""
        self._order_by = _required(order_by, "order_by")
        return self

    def shape_key(self) -> str:
        relationship = self.relationship()
        if relationship is None:
            raise UsageError("QueryMerge requires has_one() or has_many()")

        return relationship.shape_key()

    def execute(self, mapper: TableMapper, merge_list: Sequence[T | None]) -> None:
        """Populate the relationship property of every record in *merge_list*.

        ``None`` entries and records without a join key value are skipped; when
        no record has one, nothing is queried.

        Raises:
            MappingError: If either record type cannot be mapped.
            RelationshipError: If the relationship is wired incorrectly.
        """
        if mapper is None:
            raise UsageError("mapper cannot be None")

        key = self.shape_key()
        relationship = self.relationship()
        assert relationship is not None
        owner_mapping = mapper.get_table_mapping(self.owner_type)
        related_mapping = mapper.get_table_mapping(relationship.related_type)

        cache = mapper.query_merge_cache
        shape_sql = cache.get(key)
        cached = shape_sql is not None
        if relationship.kind is RelationshipKind.ONE_TO_ONE and self._order_by is not None:
            raise RelationshipError(
                "QueryMerge has_one relationships do not support order_by. "
                "The order is already dictated by the merge list"
            )
        if shape_sql is None:
            self._validate(owner_mapping, related_mapping, relationship)

        if not merge_list:
            return

        related_sm: SelectMapper[Any] = SelectMapper(
            related_mapping,
            related_mapping.table_name,
            label_prefix="r",
            converter=mapper.converter,
        )
        if shape_sql is None:
            shape_sql = _shape_sql(owner_mapping, related_sm, relationship)
            logger.debug("Generated merge SQL for shape %s", key)

        if relationship.kind is RelationshipKind.ONE_TO_ONE:
            queried = self._merge_one(mapper, merge_list, owner_mapping, related_sm, shape_sql)
        else:
            queried = self._merge_many(mapper, merge_list, owner_mapping, related_sm, shape_sql)

        if queried and not cached:
            cache.put(key, shape_sql)
            logger.debug("Cached merge SQL for shape %s", key)

    def _statement(
        self,
        shape_sql: str,
        related_sm: SelectMapper[Any],
        passthrough: TableMapping | None = None,
    ) -> sa.TextualSelect:
        sql = shape_sql if self._order_by is None else f"{shape_sql} ORDER BY {self._order_by}"
        columns = related_sm.typed_columns()
        if passthrough is not None:
            key_column = sa.column(OWNER_JOIN_KEY_LABEL, passthrough.id_mapping.sql_type)
            columns = (key_column, *columns)

        return (
            sa.text(sql)
            .bindparams(sa.bindparam(JOIN_KEYS_PARAM, expanding=True))
            .columns(*columns)
        )

    def _run_chunks(
        self,
        mapper: TableMapper,
        statement: sa.TextualSelect,
        join_keys: list[Any],
    ) -> list[Any]:
        rows: list[Any] = []
        chunk_size = mapper.settings.in_clause_chunk_size
        with mapper.connection() as connection:
            for number, chunk in enumerate(chunked(join_keys, chunk_size), start=1):
                logger.debug(
                    "Merging %s: chunk %d with %d join keys",
                    self.owner_type.__name__,
                    number,
                    len(chunk),
                )
                result = connection.execute(statement, {JOIN_KEYS_PARAM: list(chunk)})
                rows.extend(result)

        return rows

    def _merge_one(
        self,
        mapper: TableMapper,
        merge_list: Sequence[T | None],
        owner_mapping: TableMapping,
        related_sm: SelectMapper[Any],
        shape_sql: str,
    ) -> bool:
        relationship = self.relationship()
        assert relationship is not None and relationship.join_column is not None
        prop = relationship.populate_property
        join_property = owner_mapping.property_name(relationship.join_column)

        owners = [owner for owner in merge_list if owner is not None]
        for owner in owners:
            setattr(owner, prop, None)

        join_keys = unique(
            value for owner in owners if (value := getattr(owner, join_property)) is not None
        )
        if not join_keys:
            return False

        statement = self._statement(shape_sql, related_sm)
        related_by_id: dict[Any, Any] = {}
        for row in self._run_chunks(mapper, statement, join_keys):
            related = related_sm.build_model(row)
            if related is not None:
                related_by_id[getattr(related, related_sm.mapping.id_property_name)] = related

        for owner in owners:
            related = related_by_id.get(getattr(owner, join_property))
            if related is not None:
                setattr(owner, prop, related)

        return True

    def _merge_many(
        self,
        mapper: TableMapper,
        merge_list: Sequence[T | None],
        owner_mapping: TableMapping,
        related_sm: SelectMapper[Any],
        shape_sql: str,
    ) -> bool:
        relationship = self.relationship()
        assert relationship is not None
        prop = relationship.populate_property
        id_property = owner_mapping.id_property_name

        # the same owner id may appear as several instances in the merge list
        owners_by_id: dict[Any, list[Any]] = {}
        for owner in merge_list:
            if owner is None or (owner_id := getattr(owner, id_property)) is None:
                continue

            getattr(owner, prop).clear()
            owners_by_id.setdefault(owner_id, []).append(owner)

        if not owners_by_id:
            return False

        through = relationship.kind is RelationshipKind.MANY_TO_MANY
        statement = self._statement(
            shape_sql, related_sm, passthrough=owner_mapping if through else None
        )
        if not through:
            assert relationship.join_column is not None
            join_property = related_sm.mapping.property_name(relationship.join_column)

        for row in self._run_chunks(mapper, statement, list(owners_by_id)):
            related = related_sm.build_model(row)
            if related is None:
                continue

            if through:
                owner_id = mapper.converter(
                    row_mapping(row)[OWNER_JOIN_KEY_LABEL], owner_mapping.id_property_type
                )
            else:
                owner_id = getattr(related, join_property)

            for owner in owners_by_id.get(owner_id, ()):
                add_to_collection(getattr(owner, prop), related)

        return True


def _shape_sql(
    owner_mapping: TableMapping,
    related_sm: SelectMapper[Any],
    relationship: Relationship,
) -> str:
    related = related_sm.mapping
    in_clause = f"IN :{JOIN_KEYS_PARAM}"
    if relationship.kind is RelationshipKind.ONE_TO_ONE:
        return (
            f"SELECT {related_sm.columns_sql()} FROM {related.qualified_table_name} "
            f"WHERE {related.table_name}.{related.id_column_name} {in_clause}"
        )

    if relationship.kind is RelationshipKind.ONE_TO_MANY:
        return (
            f"SELECT {related_sm.columns_sql()} FROM {related.qualified_table_name} "
            f"WHERE {related.table_name}.{relationship.join_column} {in_clause}"
        )

    assert relationship.through_table is not None
    through = table_name_only(relationship.through_table)
    through_table = qualified_through_table(
        relationship.through_table, owner_mapping.qualified_table_prefix
    )
    return (
        f"SELECT {through}.{relationship.through_owner_column} AS {OWNER_JOIN_KEY_LABEL}, "
        f"{related_sm.columns_sql()} "
        f"FROM {through_table} "
        f"LEFT JOIN {related.qualified_table_name} ON "
        f"{through}.{relationship.through_related_column} = "
        f"{related.table_name}.{related.id_column_name} "
        f"WHERE {through}.{relationship.through_owner_column} {in_clause}"
    )
