from __future__ import annotations

import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .exceptions import RelationshipError, UsageError
from .select import SelectMapper
from .tools import add_to_collection
from .validator import Relationship, RelationshipKind, validate_populate_property


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class _Link:
    relationship: Relationship
    owner_sm: SelectMapper[Any]
    related_sm: SelectMapper[Any]


class ResultExtractor(Generic[T]):
    """Assemble record graphs from hand-written SQL.

    Select the columns of every involved type with its public
    :class:`~sqla_tablemapper.select.SelectMapper`, declare how the types hang
    together and feed the rows in::

        o = mapper.get_select_mapper(Order, "o")
        ol = mapper.get_select_mapper(OrderLine, "ol")
        p = mapper.get_select_mapper(Product, "p")
        sql = (
            f"SELECT {o.columns_sql()}, {ol.columns_sql()}, {p.columns_sql()} "
            "FROM orders o "
            "LEFT JOIN order_lines ol ON o.id = ol.order_id "
            "LEFT JOIN products p ON ol.product_id = p.id"
        )
        extractor = (
            ResultExtractor(Order, o, ol, p)
            .has_many(Order, OrderLine, "lines")
            .has_one(OrderLine, Product, "product")
        )
        with engine.connect() as conn:
            orders = extractor.extract(conn.execute(sa.text(sql)))

    Every record is built once per id and shared between the rows that carry
    it. Relationships can be nested to any depth.
    """

    __slots__ = ("_links", "_select_mappers", "root_type")

    def __init__(self, root_type: type[T], *select_mappers: SelectMapper[Any]) -> None:
        if root_type is None:
            raise UsageError("root_type cannot be None")
        if not select_mappers:
            raise UsageError("At least one SelectMapper is required")

        self.root_type = root_type
        self._select_mappers: dict[type[Any], SelectMapper[Any]] = {}
        for sm in select_mappers:
            if sm.internal:
                raise UsageError(f"{sm!r} is internal. Use TableMapper.get_select_mapper()")
            if sm.record_type in self._select_mappers:
                raise UsageError(f"Several SelectMappers given for {sm.record_type.__name__}")
            self._select_mappers[sm.record_type] = sm

        self._select_mapper(root_type)
        self._links: list[_Link] = []

    def _select_mapper(self, record_type: type[Any]) -> SelectMapper[Any]:
        sm = self._select_mappers.get(record_type)
        if sm is None:
            raise UsageError(f"No SelectMapper given for {record_type.__name__}")

        return sm

    def _add(
        self,
        owner_type: type[Any],
        related_type: type[Any],
        property_name: str,
        kind: RelationshipKind,
    ) -> Self:
        relationship = Relationship(
            owner_type=owner_type,
            related_type=related_type,
            kind=kind,
            populate_property=property_name,
        )
        link = _Link(
            relationship=relationship,
            owner_sm=self._select_mapper(owner_type),
            related_sm=self._select_mapper(related_type),
        )
        if errors := validate_populate_property(relationship):
            raise RelationshipError.from_errors(errors)

        for existing in self._links:
            other = existing.relationship
            if other.owner_type is owner_type and other.related_type is related_type:
                raise RelationshipError(
                    f"Duplicate relationship {owner_type.__name__} -> {related_type.__name__}. "
                    "Only one relationship per pair of types is supported"
                )

        self._links.append(link)
        return self

    def has_one(self, owner_type: type[Any], related_type: type[Any], property_name: str) -> Self:
        """``owner_type.property_name`` holds a single ``related_type`` record."""
        return self._add(owner_type, related_type, property_name, RelationshipKind.ONE_TO_ONE)

    def has_many(self, owner_type: type[Any], related_type: type[Any], property_name: str) -> Self:
        """``owner_type.property_name`` is a collection of ``related_type`` records."""
        return self._add(owner_type, related_type, property_name, RelationshipKind.ONE_TO_MANY)

    def extract(self, rows: Iterable[Any]) -> list[T]:
        """Fold *rows* into graphs and return the root records in first-seen order."""
        models: dict[type[Any], dict[Any, Any]] = {t: {} for t in self._select_mappers}
        # (link index, owner id) pairs whose collection was reset
        started: set[tuple[int, Any]] = set()
        # (link index, owner id, related id) triples already appended
        appended: set[tuple[int, Any, Any]] = set()
        root_sm = self._select_mapper(self.root_type)

        for row in rows:
            _model(row, root_sm, models)
            for index, link in enumerate(self._links):
                owner_id, owner = _model(row, link.owner_sm, models)
                if owner is None:
                    continue

                related_id, related = _model(row, link.related_sm, models)
                prop = link.relationship.populate_property
                if not link.relationship.kind.plural:
                    setattr(owner, prop, related)
                    continue

                if (index, owner_id) not in started:
                    started.add((index, owner_id))
                    getattr(owner, prop).clear()

                if related is not None and (index, owner_id, related_id) not in appended:
                    appended.add((index, owner_id, related_id))
                    add_to_collection(getattr(owner, prop), related)

        return list(models[self.root_type].values())


def _model(
    row: Any,
    sm: SelectMapper[Any],
    models: dict[type[Any], dict[Any, Any]],
) -> tuple[Any, Any]:
    """Return ``(id, record)`` of *sm*'s type in *row*, building the record on first sight."""
    record_id = sm.read_id(row)
    if record_id is None:
        return None, None

    by_id = models[sm.record_type]
    record = by_id.get(record_id)
    if record is None:
        record = sm.build_model(row)
        by_id[record_id] = record

    return record_id, record
