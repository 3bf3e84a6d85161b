from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Generic, TypeVar

import sqlalchemy as sa

from .convert import Converter, convert_value
from .exceptions import MappingError, UsageError
from .mapping import PropertyMapping, TableMapping
from .records import get_record_metadata
from .tools import is_blank, type_display_name


T = TypeVar("T")


def row_mapping(row: Any) -> Mapping[str, Any]:
    """View a result row as a label to value mapping.

    Accepts :class:`sqlalchemy.Row` (through ``Row._mapping``), ``RowMapping``
    and plain mappings, so rows fetched outside this library work as well.
    """
    mapping = getattr(row, "_mapping", row)
    if not isinstance(mapping, Mapping):
        raise TypeError(f"Expected a Row or a Mapping, got {type(row).__name__}")

    return mapping


class SelectMapper(Generic[T]):
    """Column projection of a record type and the row materializer for it.

    The public form (``label_prefix=None``) selects every mapped column as
    ``alias.column AS alias_column`` and is meant for hand-written SQL::

        orders = mapper.get_select_mapper(Order, "o")
        customers = mapper.get_select_mapper(Customer, "c")
        sql = (
            f"SELECT {orders.columns_sql()}, {customers.columns_sql()} "
            "FROM orders o LEFT JOIN customers c ON o.customer_id = c.id"
        )

    The query engines use the compact internal form, labelling columns
    ``<label_prefix><alias suffix>`` (``oc1``, ``rc2``, ...).

    Args:
        mapping: Table mapping of the projected record type.
        table_alias: Table name or alias qualifying every selected column.
        label_prefix: Internal label prefix. ``None`` selects the public form.
        converter: Value converter applied to every materialized column.
    """

    __slots__ = (
        "_init_fields",
        "_labels",
        "converter",
        "internal",
        "label_prefix",
        "mapping",
        "table_alias",
    )

    def __init__(
        self,
        mapping: TableMapping,
        table_alias: str,
        *,
        label_prefix: str | None = None,
        converter: Converter = convert_value,
    ) -> None:
        if is_blank(table_alias):
            raise UsageError("table_alias cannot be blank")

        self.mapping = mapping
        self.table_alias = table_alias.strip()
        self.internal = label_prefix is not None
        self.label_prefix = (
            label_prefix.lower() if label_prefix is not None else f"{self.table_alias.lower()}_"
        )
        self.converter = converter
        self._labels: tuple[tuple[str, PropertyMapping], ...] = tuple(
            (self._label_for(prop), prop) for prop in mapping.property_mappings
        )
        dc_fields = get_record_metadata(mapping.record_type).dataclass_fields
        self._init_fields = frozenset(
            prop.property_name
            for prop in mapping.property_mappings
            if dc_fields[prop.property_name].init
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.record_type.__name__}, {self.table_alias!r}, "
            f"label_prefix={self.label_prefix!r})"
        )

    @property
    def record_type(self) -> type[T]:
        return self.mapping.record_type

    def _label_for(self, prop: PropertyMapping) -> str:
        suffix = prop.alias_suffix if self.internal else prop.column_name
        return f"{self.label_prefix}{suffix}"

    def _resolve(self, label: str) -> PropertyMapping | None:
        if not label.startswith(self.label_prefix):
            return None

        suffix = label[len(self.label_prefix) :]
        if self.internal:
            return self.mapping.by_alias_suffix.get(suffix)

        return self.mapping.by_column.get(suffix)

    def labels(self) -> tuple[str, ...]:
        """Result labels of the projection, in select order."""
        return tuple(label for label, _ in self._labels)

    def columns_sql(self) -> str:
        """The select-list fragment: ``alias.column AS label, ...``."""
        return ", ".join(
            f"{self.table_alias}.{prop.column_name} AS {label}" for label, prop in self._labels
        )

    def typed_columns(self) -> tuple[sa.ColumnClause[Any], ...]:
        """Typed result columns for ``sqlalchemy.text(...).columns(...)``, in select order.

        Typing the textual result lets the dialect process values (``Numeric``
        to ``Decimal``, SQLite ``DateTime`` strings to ``datetime``, ...) before
        they reach the converter.
        """
        return tuple(sa.column(label, prop.sql_type) for label, prop in self._labels)

    @property
    def id_column_label(self) -> str:
        return self._label_for(self.mapping.id_mapping)

    @property
    def id_property_type(self) -> Any:
        return self.mapping.id_property_type

    def read_id(self, row: Any) -> Any:
        """Return the raw id value of *row*, ``None`` when the id column is NULL or absent."""
        values = row_mapping(row)
        label = self.id_column_label
        if label in values:
            return values[label]

        # some databases fold unquoted labels to upper case
        return next((v for k, v in values.items() if str(k).lower() == label), None)

    def build_model(self, row: Any) -> T | None:
        """Materialize the record held by *row*.

        Every row label carrying this projection's prefix is resolved to a
        mapped property; other labels are ignored. Returns ``None`` when the id
        is NULL, whatever the other columns hold: that is how an unmatched
        outer join shows up.

        Raises:
            MappingError: If a value cannot be converted to its property type.
        """
        found: dict[str, tuple[PropertyMapping, Any]] = {}
        for label, value in row_mapping(row).items():
            prop = self._resolve(str(label).lower())
            if prop is not None:
                found[prop.property_name] = (prop, value)

        id_entry = found.get(self.mapping.id_property_name)
        if id_entry is None or id_entry[1] is None:
            return None

        init_values: dict[str, Any] = {}
        late_values: dict[str, Any] = {}
        for name, (prop, value) in found.items():
            target = init_values if name in self._init_fields else late_values
            target[name] = self._convert(prop, value)

        record = self.record_type(**init_values)
        for name, value in late_values.items():
            setattr(record, name, value)

        return record

    def _convert(self, prop: PropertyMapping, value: Any) -> Any:
        try:
            return self.converter(value, prop.property_type)
        except (TypeError, ValueError) as exc:
            raise MappingError(
                f"Cannot convert column {prop.column_name} value {value!r} to "
                f"{type_display_name(prop.property_type)} for property "
                f"{self.record_type.__name__}.{prop.property_name}: {exc}"
            ) from exc
