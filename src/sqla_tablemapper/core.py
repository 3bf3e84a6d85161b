from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Final, TypeVar

import sqlalchemy as sa

from .columns import ColumnMetadataProvider, InspectorColumnProvider
from .convert import Converter, convert_value
from .datastructures import ShapeCache
from .exceptions import UsageError
from .mapping import MappingRegistry, TableMapping
from .records import get_record_metadata
from .select import SelectMapper
from .tools import to_underscore_name


T = TypeVar("T")

DEFAULT_IN_CLAUSE_CHUNK_SIZE: Final[int] = 100
DEFAULT_SHAPE_CACHE_CAPACITY: Final[int] = 1000
DEFAULT_CACHE_SHRINK_RATIO: Final[float] = 0.1

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MapperSettings:
    """Tunables of a :class:`TableMapper`.

    Attributes:
        in_clause_chunk_size: Most join keys bound into one ``IN`` clause by
            ``QueryMerge``. Databases cap the number of bind parameters.
        shape_cache_capacity: Entries kept per SQL shape cache, ``None`` for no bound.
        cache_shrink_ratio: Share of a full shape cache evicted at random to
            make room.
    """

    in_clause_chunk_size: int = field(default=DEFAULT_IN_CLAUSE_CHUNK_SIZE)
    shape_cache_capacity: int | None = field(default=DEFAULT_SHAPE_CACHE_CAPACITY)
    cache_shrink_ratio: float = field(default=DEFAULT_CACHE_SHRINK_RATIO)

    def __post_init__(self) -> None:
        if self.in_clause_chunk_size < 1:
            raise UsageError("in_clause_chunk_size must be a positive integer")
        if self.shape_cache_capacity is not None and self.shape_cache_capacity < 1:
            raise UsageError("shape_cache_capacity must be a positive integer or None")
        if not 0 < self.cache_shrink_ratio <= 1:
            raise UsageError("cache_shrink_ratio must be in (0, 1]")


class TableMapper:
    """Entry point: owns the table mappings and the SQL shape caches of one database.

    Create one per application (or per bind) and pass it to the query
    builders. Nothing is shared between instances.

    Args:
        bind: Engine or Connection the queries run on. A Connection is used
            as is, inside whatever transaction the caller opened; an Engine
            hands out a fresh connection per query.
        schema: Schema of record types that do not declare one.
        catalog: Catalog of record types that do not declare one.
        column_provider: Column metadata source. Reflects ``bind`` by default.
        settings: Chunking and cache tunables.
        converter: Value converter used when materializing records.

    Example:
        >>> mapper = TableMapper(engine)
        >>> orders = (
        ...     Query(Order)
        ...     .has_one(Customer)
        ...     .join_column_owning_side("customer_id")
        ...     .populate_property("customer")
        ...     .execute(mapper)
        ... )
    """

    __slots__ = (
        "bind",
        "converter",
        "query_cache",
        "query_count_cache",
        "query_merge_cache",
        "registry",
        "settings",
    )

    def __init__(
        self,
        bind: sa.Engine | sa.Connection,
        *,
        schema: str | None = None,
        catalog: str | None = None,
        column_provider: ColumnMetadataProvider | None = None,
        settings: MapperSettings | None = None,
        converter: Converter = convert_value,
    ) -> None:
        if bind is None:
            raise UsageError("bind cannot be None")

        self.bind = bind
        self.settings = settings or MapperSettings()
        self.converter = converter
        self.registry = MappingRegistry(
            column_provider or InspectorColumnProvider(bind),
            schema=schema,
            catalog=catalog,
        )
        self.query_cache: ShapeCache[str, str] = self._new_cache()
        self.query_merge_cache: ShapeCache[str, str] = self._new_cache()
        self.query_count_cache: ShapeCache[str, str] = self._new_cache()

    def _new_cache(self) -> ShapeCache[str, str]:
        return ShapeCache(
            capacity=self.settings.shape_cache_capacity,
            shrink_ratio=self.settings.cache_shrink_ratio,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.bind!r})"

    def get_table_mapping(self, record_type: type[Any]) -> TableMapping:
        """Return the (cached) mapping of *record_type* to its table.

        Raises:
            MappingError: If the record type cannot be reconciled with its table.
        """
        return self.registry.get_mapping(record_type)

    def get_select_mapper(self, record_type: type[T], table_alias: str) -> SelectMapper[T]:
        """Return a public projection of *record_type* for hand-written SQL.

        Args:
            record_type: Mapped record type.
            table_alias: Alias of the record's table in the SQL.
        """
        return SelectMapper(
            self.get_table_mapping(record_type), table_alias, converter=self.converter
        )

    def get_column_name(self, record_type: type[Any], property_name: str) -> str | None:
        """Column mapped to *property_name*, ``None`` if the property is not mapped."""
        return self.get_table_mapping(record_type).column_name(property_name)

    def get_columns_sql(self, record_type: type[Any]) -> str:
        """Select list of every mapped column labelled after its property.

        ``order_status AS status, customer_id AS customer_id, ...``; handy
        for single-table queries whose rows go straight into the record type.
        """
        mapping = self.get_table_mapping(record_type)
        return ", ".join(
            f"{prop.column_name} AS {to_underscore_name(prop.property_name)}"
            for prop in mapping.property_mappings
        )

    @contextmanager
    def connection(self) -> Iterator[sa.Connection]:
        """Borrow the bound Connection, or open one from the bound Engine."""
        if isinstance(self.bind, sa.Connection):
            yield self.bind
            return

        with self.bind.connect() as connection:
            yield connection

    def cache_info(self) -> dict[str, Any]:
        """Sizes and hit counts of the caches owned by this mapper."""
        return {
            "mappings": len(self.registry),
            "query": self.query_cache.info(),
            "query_merge": self.query_merge_cache.info(),
            "query_count": self.query_count_cache.info(),
        }

    def cache_clear(self) -> None:
        """Forget every mapping and cached SQL shape, e.g. after a schema migration."""
        self.registry.clear()
        for cache in (self.query_cache, self.query_merge_cache, self.query_count_cache):
            cache.clear()

        logger.debug("Cleared caches of %r", self)


def sqla_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics of the process-wide record metadata caches."""
    from .tools import _get_table_name

    return {fn.__name__: fn.cache_info() for fn in (get_record_metadata, _get_table_name)}


def sqla_cache_clear() -> None:
    """Clear the process-wide record metadata caches."""
    from .tools import _get_table_name

    for fn in (get_record_metadata, _get_table_name):
        fn.cache_clear()
