"""Table mapping and relationship queries for dataclass records over SQLAlchemy Core.

sqla_tablemapper maps plain dataclasses onto tables whose columns it reflects
at first use, then loads related records either with one ``LEFT JOIN`` query
(``Query``) or with batched ``IN`` queries merged in memory (``QueryMerge``).
Create one ``TableMapper`` per bind and pass it to ``execute()``.
"""

from ._version import __version__, __version_tuple__
from .columns import (
    ColumnInfo,
    ColumnMetadataProvider,
    InspectorColumnProvider,
    MetaDataColumnProvider,
)
from .convert import convert_value
from .core import (
    DEFAULT_CACHE_SHRINK_RATIO,
    DEFAULT_IN_CLAUSE_CHUNK_SIZE,
    DEFAULT_SHAPE_CACHE_CAPACITY,
    MapperSettings,
    TableMapper,
    sqla_cache_clear,
    sqla_cache_info,
)
from .datastructures import ShapeCache, frozendict
from .exceptions import MapperError, MappingError, RelationshipError, UsageError
from .extractor import ResultExtractor
from .mapping import MappingRegistry, PropertyMapping, TableMapping
from .query import Query
from .query_count import QueryCount
from .query_merge import QueryMerge
from .records import column, get_record_metadata
from .select import SelectMapper
from .tools import get_table_name, to_underscore_name
from .validator import (
    Relationship,
    RelationshipKind,
    validate_limit_offset,
    validate_relationship,
)


__all__ = (
    "DEFAULT_CACHE_SHRINK_RATIO",
    "DEFAULT_IN_CLAUSE_CHUNK_SIZE",
    "DEFAULT_SHAPE_CACHE_CAPACITY",
    "ColumnInfo",
    "ColumnMetadataProvider",
    "InspectorColumnProvider",
    "MapperError",
    "MapperSettings",
    "MappingError",
    "MappingRegistry",
    "MetaDataColumnProvider",
    "PropertyMapping",
    "Query",
    "QueryCount",
    "QueryMerge",
    "Relationship",
    "RelationshipError",
    "RelationshipKind",
    "ResultExtractor",
    "SelectMapper",
    "ShapeCache",
    "TableMapper",
    "TableMapping",
    "UsageError",
    "__version__",
    "__version_tuple__",
    "column",
    "convert_value",
    "frozendict",
    "get_record_metadata",
    "get_table_name",
    "sqla_cache_clear",
    "sqla_cache_info",
    "to_underscore_name",
    "validate_limit_offset",
    "validate_relationship",
)
