from __future__ import annotations

import re
import types
from collections.abc import Iterable, Iterator, MutableSet, Sequence
from functools import lru_cache
from typing import Any, TypeVar, Union, get_args, get_origin

from .exceptions import MappingError


_T = TypeVar("_T")
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def is_blank(value: str | None) -> bool:
    """``True`` for ``None``, the empty string and whitespace-only strings."""
    return value is None or not value.strip()


def to_underscore_name(name: str) -> str:
    """Convert a property name to its default column name.

    ``customerId`` and ``customer_id`` both become ``customer_id``.
    """
    if not name:
        return ""

    return _CAMEL_BOUNDARY.sub("_", name).lower()


def table_name_only(name: str) -> str:
    """Strip a ``schema.`` qualifier: ``sales.order_lines`` -> ``order_lines``."""
    return name.rsplit(".", 1)[-1]


def qualified_through_table(through_table: str, prefix: str) -> str:
    """Qualify a join table with the owner's schema unless the caller already did."""
    return through_table if "." in through_table else f"{prefix}{through_table}"


def chunked(values: Sequence[_T], size: int) -> Iterator[Sequence[_T]]:
    """Yield consecutive slices of *values* holding at most *size* items."""
    if size < 1:
        raise ValueError("chunk size must be a positive integer")

    for start in range(0, len(values), size):
        yield values[start : start + size]


def unique(values: Iterable[_T]) -> list[_T]:
    """Distinct values in first-seen order."""
    return list(dict.fromkeys(values))


def unwrap_optional(tp: Any) -> Any:
    """Return ``X`` for ``X | None`` / ``Optional[X]``; anything else unchanged."""
    if get_origin(tp) in (Union, types.UnionType):
        args = [arg for arg in get_args(tp) if arg is not type(None)]
        if len(args) == 1:
            return args[0]

    return tp


def type_display_name(tp: Any) -> str:
    """Short human-readable name for a type or type hint, used in error messages."""
    return getattr(tp, "__name__", None) or repr(tp)


def type_key(tp: type[Any]) -> str:
    """Fully qualified name of a type, stable across processes, used in cache keys."""
    return f"{tp.__module__}.{tp.__qualname__}"


@lru_cache
def _get_table_name(record_type: type[Any]) -> str:
    """Return the declared ``__tablename__`` of *record_type* (cached)."""
    result = getattr(record_type, "__tablename__", None)
    if not isinstance(result, str) or is_blank(result):
        raise MappingError(
            f"{record_type.__name__} does not declare a non-blank __tablename__. It is required"
        )

    return result.strip()


def get_table_name(record_type: type[Any]) -> str:
    """Get the declared table name of a record type.

    Args:
        record_type: dataclass declaring ``__tablename__``.

    Returns:
        The table name, stripped of surrounding whitespace.

    Raises:
        MappingError: If the table name is missing or blank.
    """
    return _get_table_name(record_type)


def get_table_args(record_type: type[Any]) -> dict[str, str | None]:
    """Read ``schema`` / ``catalog`` from an optional ``__table_args__`` mapping."""
    args = getattr(record_type, "__table_args__", None) or {}
    if not isinstance(args, dict):
        raise MappingError(f"{record_type.__name__}.__table_args__ must be a dict")

    unknown = set(args) - {"schema", "catalog"}
    if unknown:
        raise MappingError(
            f"{record_type.__name__}.__table_args__ has unsupported keys {sorted(unknown)}"
        )

    return {
        key: (None if is_blank(args.get(key)) else args[key].strip())
        for key in ("schema", "catalog")
    }


def add_to_collection(collection: Any, item: Any) -> None:
    """Append to a sequence or add to a set, whichever *collection* is."""
    if isinstance(collection, MutableSet):
        collection.add(item)
    else:
        collection.append(item)
