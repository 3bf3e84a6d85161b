"""Coercion of driver values to the declared types of record properties.

Drivers disagree on what they hand back: SQLite returns ``0``/``1`` for
booleans and ISO strings for temporal columns unless the column type says
otherwise, PostgreSQL returns ``memoryview`` for ``bytea`` and so on.
:func:`convert_value` bridges the common gaps. Pass a different callable as
``TableMapper(converter=...)`` to replace it.
"""

from __future__ import annotations

import datetime
import enum
import uuid
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any, Final, get_origin


_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"1", "t", "true", "y", "yes", "on"})
_FALSE_STRINGS: Final[frozenset[str]] = frozenset({"0", "f", "false", "n", "no", "off"})

Converter = Callable[[Any, Any], Any]


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        folded = value.strip().lower()
        if folded in _TRUE_STRINGS:
            return True
        if folded in _FALSE_STRINGS:
            return False

        raise ValueError(f"{value!r} is not a boolean")

    if isinstance(value, (int, Decimal, float)):
        return bool(value)

    raise TypeError(f"cannot convert {type(value).__name__} to bool")


def _to_int(value: Any) -> int:
    if isinstance(value, (float, Decimal)):
        if value != int(value):
            raise ValueError(f"{value!r} is not integral")

        return int(value)

    return int(value)


def _to_decimal(value: Any) -> Decimal:
    try:
        # str() keeps the shortest repr of a float instead of its binary expansion
        return Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"{value!r} is not a decimal") from exc


def _to_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())

    raise TypeError(f"cannot convert {type(value).__name__} to datetime")


def _to_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, str):
        return datetime.date.fromisoformat(value[:10])

    raise TypeError(f"cannot convert {type(value).__name__} to date")


def _to_time(value: Any) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.time()
    if isinstance(value, str):
        return datetime.time.fromisoformat(value)

    raise TypeError(f"cannot convert {type(value).__name__} to time")


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode()

    return bytes(value)


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return uuid.UUID(bytes=bytes(value))

    return uuid.UUID(str(value))


def _to_enum(value: Any, target: type[enum.Enum]) -> enum.Enum:
    try:
        return target(value)
    except ValueError:
        if isinstance(value, str) and value in target.__members__:
            return target[value]
        raise


def _is_plain_class(target: Any) -> bool:
    # Any is a class since 3.11 and list[int] passes isinstance(.., type) on 3.10
    return isinstance(target, type) and target is not Any and get_origin(target) is None


_CONVERTERS: Final[dict[type[Any], Callable[[Any], Any]]] = {
    bool: _to_bool,
    int: _to_int,
    float: float,
    str: str,
    Decimal: _to_decimal,
    datetime.datetime: _to_datetime,
    datetime.date: _to_date,
    datetime.time: _to_time,
    bytes: _to_bytes,
    uuid.UUID: _to_uuid,
}


def convert_value(value: Any, target: Any) -> Any:
    """Coerce *value* to *target*, the declared (Optional-unwrapped) property type.

    ``None`` stays ``None``. Values already of the target type, and targets
    that are not plain classes (``Any``, generics, ...), pass through unchanged.

    Raises:
        TypeError: If *value* cannot represent a *target*.
        ValueError: If *value* has the right kind but an unusable content.
    """
    if value is None or not _is_plain_class(target):
        return value

    # bool is an int subclass and datetime a date subclass; neither passes as its base
    if isinstance(value, target) and not (
        (isinstance(value, bool) and target is not bool)
        or (isinstance(value, datetime.datetime) and target is datetime.date)
    ):
        return value

    if issubclass(target, enum.Enum):
        return _to_enum(value, target)

    converter = _CONVERTERS.get(target)
    if converter is None:
        return value

    return converter(value)
