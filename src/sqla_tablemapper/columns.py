from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import sqlalchemy as sa
from sqlalchemy.types import TypeEngine


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    """A live table column: lower-cased name and its SQLAlchemy type."""

    name: str
    sql_type: TypeEngine[Any]

    @classmethod
    def of(cls, name: str, sql_type: TypeEngine[Any] | type[TypeEngine[Any]] | None) -> ColumnInfo:
        if sql_type is None:
            sql_type = sa.types.NULLTYPE
        elif isinstance(sql_type, type):
            sql_type = sql_type()

        return cls(name=name.lower(), sql_type=sql_type)


@runtime_checkable
class ColumnMetadataProvider(Protocol):
    """Source of live column metadata for a table.

    Implementations return an empty sequence (never raise) when the table does
    not exist, so callers can retry the lookup with other spellings.
    """

    def get_columns(
        self,
        table_name: str,
        *,
        schema: str | None = None,
        catalog: str | None = None,
    ) -> Sequence[ColumnInfo]: ...


class InspectorColumnProvider:
    """Read column metadata from the database catalog via ``sqlalchemy.inspect``.

    ``bind`` may be an Engine or a Connection; inside
    ``AsyncConnection.run_sync`` pass the sync connection handed to the callable.
    The catalog argument is accepted for interface compatibility; SQLAlchemy's
    inspector has no notion of it.
    """

    __slots__ = ("bind",)

    def __init__(self, bind: sa.Engine | sa.Connection) -> None:
        self.bind = bind

    def get_columns(
        self,
        table_name: str,
        *,
        schema: str | None = None,
        catalog: str | None = None,  # noqa: ARG002
    ) -> Sequence[ColumnInfo]:
        inspector = sa.inspect(self.bind)
        try:
            columns = inspector.get_columns(table_name, schema=schema)
        except sa.exc.NoSuchTableError:
            logger.debug("No table %r in schema %r", table_name, schema)
            return ()

        logger.debug("Reflected %d columns of %r", len(columns), table_name)
        return tuple(ColumnInfo.of(col["name"], col["type"]) for col in columns)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.bind!r})"


class MetaDataColumnProvider:
    """Serve column metadata from a :class:`sqlalchemy.MetaData` collection.

    Useful when the schema is already described in Python (for example the
    ``Table`` objects used to create it), and in tests. No I/O.
    """

    __slots__ = ("metadata",)

    def __init__(self, metadata: sa.MetaData) -> None:
        self.metadata = metadata

    def get_columns(
        self,
        table_name: str,
        *,
        schema: str | None = None,
        catalog: str | None = None,  # noqa: ARG002
    ) -> Sequence[ColumnInfo]:
        key = table_name if schema is None else f"{schema}.{table_name}"
        table = self.metadata.tables.get(key)
        if table is None:
            return ()

        return tuple(ColumnInfo.of(col.name, col.type) for col in table.columns)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tables={sorted(self.metadata.tables)})"
