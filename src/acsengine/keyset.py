"""Insertion-ordered set keyed by value equality."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class OrderedKeySet(Generic[T]):
    """Ordered collection that keeps one copy of each distinct value.

    Membership uses ``==`` rather than hashing, so values that compare equal
    collapse to the first one added. Order is first-insertion order; equality
    between two sets ignores order.
    """

    def __init__(self, values: Iterable[T] = ()) -> None:
        self._items: list[T] = []
        self.update(values)

    def add(self, value: T) -> bool:
        """Add a value. Returns False if an equal value was already present."""
        if value in self._items:
            return False
        self._items.append(value)
        return True

    def update(self, values: Iterable[T]) -> None:
        for value in values:
            self.add(value)

    def __contains__(self, value: object) -> bool:
        return value in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OrderedKeySet):
            return NotImplemented
        return len(self) == len(other) and all(item in other for item in self._items)

    def __repr__(self) -> str:
        return f"OrderedKeySet({self._items!r})"

    def as_tuple(self) -> tuple[T, ...]:
        return tuple(self._items)
