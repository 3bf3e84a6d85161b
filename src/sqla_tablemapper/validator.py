from __future__ import annotations

import collections.abc
import dataclasses
import enum
from dataclasses import dataclass
from typing import Any, Final, get_args, get_origin

from .exceptions import RelationshipError
from .mapping import TableMapping
from .records import get_record_metadata
from .tools import is_blank, type_display_name, type_key, unwrap_optional


_COLLECTION_ORIGINS: Final[frozenset[Any]] = frozenset(
    {
        list,
        set,
        collections.abc.MutableSequence,
        collections.abc.MutableSet,
    }
)
# plain @dataclass records set __hash__ to None
_SET_ORIGINS: Final[frozenset[Any]] = frozenset({set, collections.abc.MutableSet})


class RelationshipKind(enum.Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"

    @property
    def plural(self) -> bool:
        return self is not RelationshipKind.ONE_TO_ONE


@dataclass(frozen=True, slots=True)
class Relationship:
    """Structural description of a relationship between two record types.

    ``join_column`` lives on the owner's table for ``ONE_TO_ONE`` and on the
    related table for ``ONE_TO_MANY``. ``MANY_TO_MANY`` goes through
    ``through_table`` instead, joining the owner id on ``through_owner_column``
    and the related id on ``through_related_column``.
    """

    owner_type: type[Any]
    related_type: type[Any]
    kind: RelationshipKind
    populate_property: str | None = None
    join_column: str | None = None
    through_table: str | None = None
    through_owner_column: str | None = None
    through_related_column: str | None = None

    def shape_key(self, *extra: str | None) -> str:
        """Deterministic cache key of the shape; *extra* parts are appended as given."""
        parts = (
            type_key(self.owner_type),
            type_key(self.related_type),
            self.kind.value,
            self.join_column,
            self.through_table,
            self.through_owner_column,
            self.through_related_column,
            self.populate_property,
            *extra,
        )
        return "-".join("" if part is None else part for part in parts)


def validate_relationship(
    owner_mapping: TableMapping,
    related_mapping: TableMapping,
    relationship: Relationship,
    *,
    populate: bool = True,
) -> list[RelationshipError]:
    """Check *relationship* against the mappings of its two sides.

    Pure: reads the mappings and the owner's declared type hints, nothing else.

    Args:
        owner_mapping: Mapping of ``relationship.owner_type``.
        related_mapping: Mapping of ``relationship.related_type``.
        relationship: The shape to check.
        populate: Whether a populate property is required. Counting queries
            join without populating anything.

    Returns:
        One error per problem found; empty when the shape is usable.
    """
    errors: list[RelationshipError] = []
    owner = relationship.owner_type
    related = relationship.related_type

    if populate:
        errors.extend(validate_populate_property(relationship))

    if relationship.kind is RelationshipKind.ONE_TO_ONE:
        errors.extend(
            _check_join_column(
                relationship.join_column,
                column_mapping=owner_mapping,
                id_mapping=related_mapping,
                side="owning side",
            )
        )
    elif relationship.kind is RelationshipKind.ONE_TO_MANY:
        errors.extend(
            _check_join_column(
                relationship.join_column,
                column_mapping=related_mapping,
                id_mapping=owner_mapping,
                side="many side",
            )
        )
    else:
        if is_blank(relationship.through_table):
            errors.append(
                RelationshipError(
                    f"Through join table of {owner.__name__} -> {related.__name__} cannot be blank"
                )
            )
        for name, value in (
            ("owner", relationship.through_owner_column),
            ("related", relationship.through_related_column),
        ):
            if is_blank(value):
                errors.append(RelationshipError(f"Through join {name} column cannot be blank"))
            elif "." in value:
                errors.append(
                    RelationshipError(
                        f"Invalid through join {name} column {value}. "
                        "It should have no table prefix"
                    )
                )

    return errors


def validate_limit_offset(kind: RelationshipKind | None, limit_offset_clause: str | None) -> None:
    """Reject a limit/offset clause on plural relationships.

    Limiting a joined, row-multiplied result truncates the related collections
    instead of the owner list.

    Raises:
        RelationshipError: If *kind* is plural and a clause is present.
    """
    if kind is not None and kind.plural and not is_blank(limit_offset_clause):
        raise RelationshipError(
            "limit_offset_clause is not supported for has_many and has_many through "
            "relationships. Query the owners with a limit, then merge the relationship "
            "with QueryMerge."
        )


def validate_populate_property(relationship: Relationship) -> list[RelationshipError]:
    """Check that the owner declares a property able to hold the related record(s)."""
    owner = relationship.owner_type
    related = relationship.related_type
    name = relationship.populate_property
    if is_blank(name):
        return [RelationshipError(f"populate_property of {owner.__name__} is required")]

    meta = get_record_metadata(owner)
    dc_field = meta.dataclass_fields.get(name)
    if dc_field is None:
        return [RelationshipError(f"Invalid property name {name} for class {owner.__name__}")]

    if meta.field(name) is not None:
        return [
            RelationshipError(
                f"{owner.__name__}.{name} is a mapped column and cannot hold a relationship"
            )
        ]

    declared = unwrap_optional(meta.type_hints[name])
    if not relationship.kind.plural:
        if declared is not related:
            return [
                RelationshipError(
                    f"Property type conflict. Property {owner.__name__}.{name} is of type "
                    f"{type_display_name(declared)} while the type of the has_one relationship "
                    f"is {related.__name__}"
                )
            ]
        return []

    errors: list[RelationshipError] = []
    origin = get_origin(declared) or declared
    args = get_args(declared)
    if origin not in _COLLECTION_ORIGINS:
        errors.append(
            RelationshipError(
                f"Property {owner.__name__}.{name} is not a mutable collection. has_many() "
                "relationships require list[...], set[...] or another mutable collection"
            )
        )
    elif not args:
        errors.append(
            RelationshipError(
                f"Collections without an item type are not supported. Collection property "
                f"{owner.__name__}.{name} does not declare one"
            )
        )
    elif args[0] is not related:
        errors.append(
            RelationshipError(
                f"Collection item type and has_many relationship type mismatch. "
                f"{owner.__name__}.{name} holds {type_display_name(args[0])} while the "
                f"has_many relationship is of type {related.__name__}"
            )
        )
    elif origin in _SET_ORIGINS and related.__hash__ is None:
        errors.append(
            RelationshipError(
                f"Set property {owner.__name__}.{name} holds unhashable {related.__name__} "
                "records. Declare it as list[...] or make the record hashable with "
                "@dataclass(frozen=True) or @dataclass(unsafe_hash=True)"
            )
        )

    if not _is_initialized_collection(dc_field):
        errors.append(
            RelationshipError(
                f"Only initialized collections can be populated by queries. Collection property "
                f"{owner.__name__}.{name} needs a default_factory producing a mutable collection"
            )
        )

    return errors


def _is_initialized_collection(dc_field: dataclasses.Field[Any]) -> bool:
    factory = dc_field.default_factory
    if factory is dataclasses.MISSING:
        return False

    return isinstance(factory(), (collections.abc.MutableSequence, collections.abc.MutableSet))


def _check_join_column(
    join_column: str | None,
    *,
    column_mapping: TableMapping,
    id_mapping: TableMapping,
    side: str,
) -> list[RelationshipError]:
    """Check a join column that lives in ``column_mapping`` and references ``id_mapping``'s id."""
    if is_blank(join_column):
        return [RelationshipError(f"Join column {side} cannot be blank")]

    if "." in join_column:
        return [
            RelationshipError(
                f"Invalid join column {side} {join_column}. It should have no table prefix"
            )
        ]

    column_type = column_mapping.record_type
    property_name = column_mapping.property_name(join_column)
    if property_name is None:
        return [
            RelationshipError(
                f"Invalid join column {join_column}. Table {column_mapping.table_name} for class "
                f"{column_type.__name__} either does not have column {join_column} or the "
                "column has not been mapped in the class"
            )
        ]

    property_type = column_mapping.property_type(property_name)
    if property_type != id_mapping.id_property_type:
        return [
            RelationshipError(
                f"Property type mismatch. Join column {join_column} property "
                f"{column_type.__name__}.{property_name} is of type "
                f"{type_display_name(property_type)} but the property being joined to "
                f"{id_mapping.record_type.__name__}.{id_mapping.id_property_name} is of type "
                f"{type_display_name(id_mapping.id_property_type)}"
            )
        ]

    return []
