from __future__ import annotations

from collections.abc import Iterable


class MapperError(Exception):
    """Base class for every error raised by sqla_tablemapper."""


class _AggregateError(MapperError):
    """An error that may carry several independent violations.

    ``str(exc)`` joins all violations so a single traceback shows every problem
    with a declaration; ``exc.errors`` keeps them apart for programmatic use.
    """

    def __init__(self, *errors: str) -> None:
        if not errors:
            raise ValueError("at least one error message is required")

        self.errors: tuple[str, ...] = tuple(errors)
        super().__init__("; ".join(self.errors))

    @classmethod
    def from_errors(cls, errors: Iterable[_AggregateError | str]) -> _AggregateError:
        """Merge several errors (or plain messages) into one instance of ``cls``."""
        messages: list[str] = []
        for error in errors:
            if isinstance(error, _AggregateError):
                messages.extend(error.errors)
            else:
                messages.append(error)

        return cls(*messages)


class MappingError(_AggregateError):
    """A record type cannot be mapped to its table.

    Raised on first reference to the type: table not found, declared column
    missing from the table, missing or conflicting role markers.
    """


class RelationshipError(_AggregateError):
    """A relationship shape is wired incorrectly.

    Raised on first use of the shape: bad join columns, type mismatches between
    a join column and the id it references, populate properties that are
    missing, mistyped or not initialized collections, and clauses that make no
    sense for the relationship kind.
    """


class UsageError(MapperError, ValueError):
    """A required builder argument is missing or blank."""
