"""A growable sequence of references."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any


class StepArray:
    """Ordered list of references grown in fixed steps.

    Uniqueness is judged by identity, as the array holds references.
    """

    def __init__(self, step: int) -> None:
        if step <= 0:
            raise ValueError("step must be positive")
        self.step = step
        self._items: list[Any] = []

    def append(self, element: Any) -> int:
        """Append ``element``; return its index."""
        self._items.append(element)
        return len(self._items) - 1

    def append_unique(self, element: Any) -> int:
        """Append ``element`` unless that very object is already present.

        Raises ValueError if it is.
        """
        if any(item is element for item in self._items):
            raise ValueError("element already present")
        return self.append(element)

    def pop(self) -> Any:
        """Remove and return the last element."""
        if not self._items:
            raise IndexError("pop from empty array")
        return self._items.pop()

    def remove_at(self, pos: int) -> Any:
        """Remove and return the element at ``pos``, keeping order."""
        if pos < 0 or pos >= len(self._items):
            raise IndexError(f"no element at position {pos}")
        return self._items.pop(pos)

    def sort(self, key: Callable[[Any], Any] | None = None) -> None:
        """Sort the elements in place."""
        self._items.sort(key=key)

    def clear(self) -> None:
        """Drop every element."""
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> Any:
        return self._items[index]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._items)