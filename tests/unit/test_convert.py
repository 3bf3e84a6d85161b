from __future__ import annotations

import datetime
import enum
import uuid
from decimal import Decimal
from typing import Any

import pytest

from sqla_tablemapper import convert_value


class Status(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class Level(enum.IntEnum):
    LOW = 1
    HIGH = 2


@pytest.mark.parametrize(
    ("value", "target", "expected"),
    [
        (1, bool, True),
        (0, bool, False),
        ("yes", bool, True),
        (" F ", bool, False),
        (Decimal("3"), int, 3),
        (3.0, int, 3),
        ("42", int, 42),
        (2, float, 2.0),
        (Decimal("1.25"), float, 1.25),
        (17, str, "17"),
        (1.1, Decimal, Decimal("1.1")),
        ("9.99", Decimal, Decimal("9.99")),
        ("2024-01-15 10:30:00", datetime.datetime, datetime.datetime(2024, 1, 15, 10, 30)),
        (datetime.date(2024, 1, 15), datetime.datetime, datetime.datetime(2024, 1, 15)),
        (datetime.datetime(2024, 1, 15, 10, 30), datetime.date, datetime.date(2024, 1, 15)),
        ("2024-01-15", datetime.date, datetime.date(2024, 1, 15)),
        ("10:30:00", datetime.time, datetime.time(10, 30)),
        (memoryview(b"ab"), bytes, b"ab"),
        ("ab", bytes, b"ab"),
        ("open", Status, Status.OPEN),
        ("CLOSED", Status, Status.CLOSED),
        (2, Level, Level.HIGH),
    ],
)
def test_converts(value: Any, target: Any, expected: Any) -> None:
    result = convert_value(value, target)

    assert result == expected
    assert type(result) is type(expected)


def test_uuid_from_string_and_bytes() -> None:
    value = uuid.uuid4()

    assert convert_value(str(value), uuid.UUID) == value
    assert convert_value(value.bytes, uuid.UUID) == value


def test_none_passes_through() -> None:
    assert convert_value(None, int) is None


def test_matching_instance_is_returned_as_is() -> None:
    value = Decimal("1.5")
    assert convert_value(value, Decimal) is value


def test_bool_is_not_an_int() -> None:
    result = convert_value(True, int)

    assert result == 1
    assert type(result) is int


@pytest.mark.parametrize("target", [Any, list[int], "int"])
def test_non_class_targets_pass_through(target: Any) -> None:
    assert convert_value("x", target) == "x"


def test_unknown_class_passes_through() -> None:
    class Money:
        pass

    assert convert_value(5, Money) == 5


@pytest.mark.parametrize(
    ("value", "target", "error"),
    [
        ("maybe", bool, ValueError),
        (object(), bool, TypeError),
        (1.5, int, ValueError),
        ("abc", int, ValueError),
        ("abc", Decimal, ValueError),
        (3, datetime.datetime, TypeError),
        ("unknown", Status, ValueError),
    ],
)
def test_conversion_errors(value: Any, target: Any, error: type[Exception]) -> None:
    with pytest.raises(error):
        convert_value(value, target)
