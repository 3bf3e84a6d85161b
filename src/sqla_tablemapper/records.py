"""Declaring record types and reading their field metadata.

A record is a plain dataclass naming its table in ``__tablename__`` (and
optionally ``{"schema": ..., "catalog": ...}`` in ``__table_args__``). Fields
stored in the table are declared with :func:`column`; every other field, such
as a relationship property, is ignored by the mapping layer::

    @dataclass
    class Order:
        __tablename__ = "orders"

        id: int | None = column(id=True)
        customer_id: int | None = column()
        status: str | None = column("order_status")
        version: int | None = column(version=True)

        customer: Customer | None = None
        lines: list[OrderLine] = field(default_factory=list)

Nothing here touches the database; the column names are reconciled with the
live table by :class:`~sqla_tablemapper.mapping.MappingRegistry`.
"""

from __future__ import annotations

import dataclasses
from dataclasses import MISSING, dataclass
from functools import lru_cache
from typing import Any, Final, get_type_hints

from .datastructures import frozendict
from .exceptions import MappingError
from .tools import get_table_args, get_table_name, is_blank, to_underscore_name, unwrap_optional


COLUMN_METADATA_KEY: Final[str] = "sqla_tablemapper.column"
ROLE_NAMES: Final[tuple[str, ...]] = (
    "id",
    "version",
    "created_on",
    "created_by",
    "updated_on",
    "updated_by",
)


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    """What :func:`column` records in a dataclass field's metadata."""

    name: str | None = None
    id: bool = False
    version: bool = False
    created_on: bool = False
    created_by: bool = False
    updated_on: bool = False
    updated_by: bool = False

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(role for role in ROLE_NAMES if getattr(self, role))


def column(  # noqa: PLR0913
    name: str | None = None,
    *,
    id: bool = False,  # noqa: A002
    version: bool = False,
    created_on: bool = False,
    created_by: bool = False,
    updated_on: bool = False,
    updated_by: bool = False,
    default: Any = None,
    default_factory: Any = MISSING,
    init: bool = True,
    repr: bool = True,  # noqa: A002
    compare: bool = True,
) -> Any:
    """Declare a dataclass field stored in a table column.

    Args:
        name: Column name. Defaults to the snake_case form of the field name.
        id: The field holds the primary key. Exactly one field per record.
        version: Optimistic-lock version counter (``int``).
        created_on: Creation timestamp (``datetime``).
        created_by: Creating user.
        updated_on: Last update timestamp (``datetime``).
        updated_by: Last updating user.
        default: Field default, ``None`` unless given.
        default_factory: Field default factory; overrides *default*.
        init: Passed through to :func:`dataclasses.field`.
        repr: Passed through to :func:`dataclasses.field`.
        compare: Passed through to :func:`dataclasses.field`.

    Returns:
        A :func:`dataclasses.field` carrying a :class:`ColumnSpec`.
    """
    if name is not None and is_blank(name):
        raise MappingError("column() name cannot be blank")

    spec = ColumnSpec(
        name=None if name is None else name.strip(),
        id=id,
        version=version,
        created_on=created_on,
        created_by=created_by,
        updated_on=updated_on,
        updated_by=updated_by,
    )
    metadata = {COLUMN_METADATA_KEY: spec}
    if default_factory is not MISSING:
        return dataclasses.field(
            default_factory=default_factory,
            init=init,
            repr=repr,
            compare=compare,
            metadata=metadata,
        )

    return dataclasses.field(
        default=default, init=init, repr=repr, compare=compare, metadata=metadata
    )


@dataclass(frozen=True, slots=True)
class FieldMetadata:
    """One mapped field as declared on the record type."""

    property_name: str
    property_type: Any
    column_name: str
    explicit_column: bool
    spec: ColumnSpec
    init: bool


@dataclass(frozen=True, slots=True)
class RecordMetadata:
    """Everything the mapping layer needs to know about a record type."""

    record_type: type[Any]
    table_name: str
    schema: str | None
    catalog: str | None
    fields: tuple[FieldMetadata, ...]
    # resolved hints of every dataclass field, mapped or not
    type_hints: frozendict[str, Any]
    dataclass_fields: frozendict[str, dataclasses.Field[Any]]
    required_unmapped: tuple[str, ...]

    def field(self, property_name: str) -> FieldMetadata | None:
        return next((f for f in self.fields if f.property_name == property_name), None)


@lru_cache(maxsize=512)
def get_record_metadata(record_type: type[Any]) -> RecordMetadata:
    """Extract the declared field metadata of *record_type* (cached per type).

    Raises:
        MappingError: If the type is not a dataclass, has no table name, or its
            annotations cannot be resolved.
    """
    if not isinstance(record_type, type) or not dataclasses.is_dataclass(record_type):
        raise MappingError(f"{record_type!r} is not a dataclass type")

    table_name = get_table_name(record_type)
    table_args = get_table_args(record_type)

    try:
        hints = get_type_hints(record_type)
    except (NameError, TypeError) as exc:
        raise MappingError(
            f"Cannot resolve type annotations of {record_type.__name__}: {exc}"
        ) from exc

    dc_fields = {f.name: f for f in dataclasses.fields(record_type)}
    mapped: list[FieldMetadata] = []
    required_unmapped: list[str] = []
    for name, dc_field in dc_fields.items():
        spec = dc_field.metadata.get(COLUMN_METADATA_KEY)
        if spec is None:
            if (
                dc_field.init
                and dc_field.default is MISSING
                and dc_field.default_factory is MISSING
            ):
                required_unmapped.append(name)
            continue

        mapped.append(
            FieldMetadata(
                property_name=name,
                property_type=unwrap_optional(hints.get(name, Any)),
                column_name=(spec.name or to_underscore_name(name)).lower(),
                explicit_column=spec.name is not None,
                spec=spec,
                init=dc_field.init,
            )
        )

    return RecordMetadata(
        record_type=record_type,
        table_name=table_name,
        schema=table_args["schema"],
        catalog=table_args["catalog"],
        fields=tuple(mapped),
        type_hints=frozendict({name: hints.get(name, Any) for name in dc_fields}),
        dataclass_fields=frozendict(dc_fields),
        required_unmapped=tuple(required_unmapped),
    )
