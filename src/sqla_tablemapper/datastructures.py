from __future__ import annotations

import logging
import random
import sys
import threading
from collections.abc import Hashable, Iterator, Mapping
from typing import Any, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")
_HK = TypeVar("_HK", bound=Hashable)

logger = logging.getLogger(__name__)


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable dictionary.

    Backs the lookup tables of a :class:`~sqla_tablemapper.mapping.TableMapping`
    (column name, property name and column alias suffix to ``PropertyMapping``)
    so a mapping stays read-only once it is published to other threads.

    Example:
        >>> by_column = frozendict({"customer_id": "customerId"})
        >>> by_column["customer_id"]
        'customerId'
        >>> by_column.copy(status="status")
        <frozendict {'customer_id': 'customerId', 'status': 'status'}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def get(self, key: Any, default: Any = None) -> Any:
        return self._dict.get(key, default)

    def copy(self, **add_or_replace: Any) -> Self:
        """Return a new frozendict with *add_or_replace* merged in."""
        return type(self)(self, **add_or_replace)

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # values may be unhashable until someone actually asks for a hash
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash


class ShapeCache(Generic[_HK, V]):
    """Bounded write-once cache for generated SQL, keyed by relationship shape.

    ``put`` never replaces an existing entry. When the cache is full a random
    ``shrink_ratio`` share of the entries is dropped before inserting, so a
    caller generating endless distinct shapes cannot grow it without bound.
    A ``capacity`` of ``None`` disables the bound. Hit and miss counters are
    updated under a lock, so ``info()`` stays exact with concurrent callers.
    """

    __slots__ = ("_data", "_lock", "capacity", "hits", "misses", "shrink_ratio")

    def __init__(self, capacity: int | None = None, shrink_ratio: float = 0.1) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be a positive integer or None")
        if not 0 < shrink_ratio <= 1:
            raise ValueError("shrink_ratio must be in (0, 1]")

        self._data: dict[_HK, V] = {}
        self._lock = threading.Lock()
        self.capacity = capacity
        self.shrink_ratio = shrink_ratio
        self.hits = 0
        self.misses = 0

    def get(self, key: _HK) -> V | None:
        value = self._data.get(key)
        with self._lock:
            if value is None:
                self.misses += 1
            else:
                self.hits += 1

        return value

    def put(self, key: _HK, value: V) -> V:
        """Store *value* unless *key* is present; return the value now cached."""
        if self.capacity is not None and key not in self._data and len(self._data) >= self.capacity:
            self._shrink()

        return self._data.setdefault(key, value)

    def _shrink(self) -> None:
        assert self.capacity is not None
        keys = list(self._data)
        count = min(len(keys), max(1, int(self.capacity * self.shrink_ratio)))
        for key in random.sample(keys, count):
            self._data.pop(key, None)

        logger.debug("Shape cache full (%d entries), evicted %d", self.capacity, count)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()
        with self._lock:
            self.hits = 0
            self.misses = 0

    def info(self) -> dict[str, int | None]:
        """Statistics in the spirit of ``functools.lru_cache().cache_info()``."""
        with self._lock:
            hits, misses = self.hits, self.misses

        return {
            "hits": hits,
            "misses": misses,
            "maxsize": self.capacity,
            "currsize": len(self._data),
        }
