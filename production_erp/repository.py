"""Repository contract and the in-memory implementation used by the services.

Repositories hand out copies: a record fetched from a repository can be
changed freely, and nothing is stored until it is written back with
``add`` or ``upsert``. The SQLite implementation gets this for free by
pickling; the in-memory one deep-copies on the way in and out.
"""

from __future__ import annotations

import copy
from typing import Callable, Dict, Generic, Iterator, List, Protocol, TypeVar

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class Repository(Protocol[T]):
    """Storage collaborator expected by the production services."""

    def __contains__(self, item_id: object) -> bool: ...

    def __len__(self) -> int: ...

    def __iter__(self) -> Iterator[T]: ...

    def add(self, item_id: str, item: T) -> None: ...

    def upsert(self, item_id: str, item: T) -> None: ...

    def get(self, item_id: str) -> T: ...

    def remove(self, item_id: str) -> None: ...

    def list(self) -> List[T]: ...

    def filter(self, predicate: Callable[[T], bool]) -> List[T]: ...


class InMemoryRepository(Generic[T]):
    """Dictionary-backed repository keeping private copies of its records."""

    def __init__(self) -> None:
        self._items: Dict[str, T] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def add(self, item_id: str, item: T) -> None:
        if item_id in self._items:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._items[item_id] = copy.deepcopy(item)

    def upsert(self, item_id: str, item: T) -> None:
        self._items[item_id] = copy.deepcopy(item)

    def get(self, item_id: str) -> T:
        try:
            return copy.deepcopy(self._items[item_id])
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def remove(self, item_id: str) -> None:
        if item_id not in self._items:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        del self._items[item_id]

    def list(self) -> List[T]:
        return [copy.deepcopy(item) for item in self._items.values()]

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]


__all__ = [
    "Repository",
    "InMemoryRepository",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
