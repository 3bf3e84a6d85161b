from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.types import TypeEngine

from .columns import ColumnInfo, ColumnMetadataProvider
from .datastructures import frozendict
from .exceptions import MappingError
from .records import ROLE_NAMES, RecordMetadata, get_record_metadata
from .tools import type_display_name, unique


logger = logging.getLogger(__name__)

_ROLE_TYPES: dict[str, type[Any]] = {
    "version": int,
    "created_on": datetime.datetime,
    "updated_on": datetime.datetime,
}


@dataclass(frozen=True, slots=True)
class PropertyMapping:
    """A single record property to table column correspondence."""

    property_name: str
    property_type: Any
    column_name: str
    sql_type: TypeEngine[Any]
    alias_suffix: str
    id: bool = False
    version: bool = False
    created_on: bool = False
    created_by: bool = False
    updated_on: bool = False
    updated_by: bool = False

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(role for role in ROLE_NAMES if getattr(self, role))


@dataclass(frozen=True, slots=True, eq=False)
class TableMapping:
    """Immutable mapping of a record type onto its table.

    Built once per record type by :class:`MappingRegistry`. Lookups by column
    name, property name and column alias suffix are dictionary lookups.
    """

    record_type: type[Any]
    table_name: str
    schema: str | None
    catalog: str | None
    id_property_name: str
    property_mappings: tuple[PropertyMapping, ...]
    by_column: frozendict[str, PropertyMapping] = field(init=False, repr=False)
    by_property: frozendict[str, PropertyMapping] = field(init=False, repr=False)
    by_alias_suffix: frozendict[str, PropertyMapping] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "by_column", frozendict({p.column_name: p for p in self.property_mappings})
        )
        object.__setattr__(
            self, "by_property", frozendict({p.property_name: p for p in self.property_mappings})
        )
        object.__setattr__(
            self, "by_alias_suffix", frozendict({p.alias_suffix: p for p in self.property_mappings})
        )
        if self.id_property_name not in self.by_property:
            raise MappingError(
                f"Id property {self.id_property_name} of {self.record_type.__name__} is not mapped"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableMapping):
            return NotImplemented

        return (
            self.record_type is other.record_type
            and self.table_name == other.table_name
            and self.schema == other.schema
            and self.catalog == other.catalog
            and self.id_property_name == other.id_property_name
            and [_comparable(p) for p in self.property_mappings]
            == [_comparable(p) for p in other.property_mappings]
        )

    def __hash__(self) -> int:
        return hash((self.record_type, self.table_name, self.schema, self.id_property_name))

    @property
    def id_mapping(self) -> PropertyMapping:
        return self.by_property[self.id_property_name]

    @property
    def id_column_name(self) -> str:
        return self.id_mapping.column_name

    @property
    def id_property_type(self) -> Any:
        return self.id_mapping.property_type

    def column_name(self, property_name: str) -> str | None:
        prop = self.by_property.get(property_name)
        return None if prop is None else prop.column_name

    def property_name(self, column_name: str) -> str | None:
        prop = self.by_column.get(column_name.lower())
        return None if prop is None else prop.property_name

    def property_type(self, property_name: str) -> Any:
        prop = self.by_property.get(property_name)
        return None if prop is None else prop.property_type

    def role_mapping(self, role: str) -> PropertyMapping | None:
        """The property carrying *role* (``"version"``, ``"created_on"``, ...), if any."""
        if role not in ROLE_NAMES:
            raise ValueError(f"Unknown role {role!r}")

        return next((p for p in self.property_mappings if getattr(p, role)), None)

    @property
    def qualified_table_name(self) -> str:
        return f"{self.schema}.{self.table_name}" if self.schema else self.table_name

    @property
    def qualified_table_prefix(self) -> str:
        """``"schema."`` when the table lives in an explicit schema, else ``""``."""
        return f"{self.schema}." if self.schema else ""


def _comparable(prop: PropertyMapping) -> tuple[Any, ...]:
    # reflected TypeEngine instances do not compare by value
    return (
        prop.property_name,
        prop.property_type,
        prop.column_name,
        repr(prop.sql_type),
        prop.alias_suffix,
        prop.roles,
    )


class MappingRegistry:
    """Builds and caches :class:`TableMapping` objects, one per record type.

    Args:
        provider: Live column metadata source.
        schema: Default schema for types that do not declare one.
        catalog: Default catalog for types that do not declare one.
    """

    __slots__ = ("_mappings", "catalog", "provider", "schema")

    def __init__(
        self,
        provider: ColumnMetadataProvider,
        *,
        schema: str | None = None,
        catalog: str | None = None,
    ) -> None:
        self.provider = provider
        self.schema = schema
        self.catalog = catalog
        self._mappings: dict[type[Any], TableMapping] = {}

    def get_mapping(self, record_type: type[Any]) -> TableMapping:
        """Return the mapping of *record_type*, building it on first use.

        Raises:
            MappingError: If the type cannot be reconciled with its table.
        """
        if record_type is None:
            raise MappingError("record_type cannot be None")

        mapping = self._mappings.get(record_type)
        if mapping is None:
            mapping = self._build(record_type)
            # put-if-absent: a concurrent builder produced an identical mapping
            mapping = self._mappings.setdefault(record_type, mapping)

        return mapping

    def __contains__(self, record_type: object) -> bool:
        return record_type in self._mappings

    def __len__(self) -> int:
        return len(self._mappings)

    def clear(self) -> None:
        self._mappings.clear()

    def _build(self, record_type: type[Any]) -> TableMapping:
        meta = get_record_metadata(record_type)
        schema = meta.schema or self.schema
        catalog = meta.catalog or self.catalog
        columns = self._lookup_columns(meta, schema, catalog)

        errors: list[str] = []
        props: list[PropertyMapping] = []
        for index, fld in enumerate(meta.fields, start=1):
            col = columns.get(fld.column_name)
            if col is None:
                errors.append(
                    f"{fld.column_name} column not found in table {meta.table_name} "
                    f"for model property {record_type.__name__}.{fld.property_name}"
                )
                continue

            props.append(
                PropertyMapping(
                    property_name=fld.property_name,
                    property_type=fld.property_type,
                    column_name=col.name,
                    sql_type=col.sql_type,
                    alias_suffix=f"c{index}",
                    **{role: True for role in fld.spec.roles},
                )
            )

        errors.extend(_role_violations(meta))
        errors.extend(
            f"{record_type.__name__}.{name} has no default and is not a mapped column, "
            "so records cannot be built from rows"
            for name in meta.required_unmapped
        )
        if errors:
            raise MappingError(*errors)

        id_prop = next(p for p in props if p.id)
        logger.debug(
            "Mapped %s to table %s (%d properties)",
            record_type.__name__,
            meta.table_name,
            len(props),
        )

        return TableMapping(
            record_type=record_type,
            table_name=meta.table_name,
            schema=schema,
            catalog=catalog,
            id_property_name=id_prop.property_name,
            property_mappings=tuple(props),
        )

    def _lookup_columns(
        self, meta: RecordMetadata, schema: str | None, catalog: str | None
    ) -> dict[str, ColumnInfo]:
        name = meta.table_name
        for candidate in unique((name, name.upper(), name.lower())):
            columns = self.provider.get_columns(candidate, schema=schema, catalog=catalog)
            if columns:
                if candidate != name:
                    logger.debug("Table %s resolved as %s", name, candidate)

                return {col.name.lower(): col for col in columns}

        msg = f"Unable to locate meta-data for table '{name}'"
        if schema is not None:
            msg += f" in schema {schema}"
        if catalog is not None:
            msg += f" in catalog {catalog}"

        raise MappingError(f"{msg} for class {meta.record_type.__name__}")


def _role_violations(meta: RecordMetadata) -> list[str]:
    """Every role-marker problem of *meta*, in declaration order."""
    type_name = meta.record_type.__name__
    errors: list[str] = []
    counts = dict.fromkeys(ROLE_NAMES, 0)

    for fld in meta.fields:
        roles = fld.spec.roles
        for role in roles:
            counts[role] += 1

        if len(roles) > 1:
            errors.append(
                f"{type_name}.{fld.property_name} has conflicting roles {', '.join(roles)}"
            )

        for role in roles:
            required = _ROLE_TYPES.get(role)
            if required is not None and fld.property_type is not required:
                errors.append(
                    f"{role} requires the type of property {type_name}.{fld.property_name} "
                    f"to be {required.__name__}, not {type_display_name(fld.property_type)}"
                )

    if counts["id"] == 0:
        errors.append(f"{type_name} has no id column. Declare one with column(id=True)")

    errors.extend(
        f"{type_name} has multiple {role} columns"
        for role, count in counts.items()
        if count > 1
    )

    return errors
