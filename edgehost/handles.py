"""Handle tables and the small value types stored in a session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Flag
from typing import Any, Generic, Iterator, Optional, TypeVar

from .async_item import AsyncItem

T = TypeVar("T")

# Handles cross the guest boundary as unsigned 32-bit integers.
MAX_HANDLES = 2**32

_EMPTY = object()


class HandleTable(Generic[T]):
    """Issues integer handles for items; a slot can be emptied and refilled but never reused.

    ``len()`` counts every handle ever issued; ``in`` tells whether a handle
    currently refers to an item.
    """

    __slots__ = ("_slots",)

    def __init__(self) -> None:
        self._slots: list[Any] = []

    def __repr__(self) -> str:
        return f"HandleTable({len(self._slots)} handles, {sum(1 for _ in self._occupied())} live)"

    def _occupied(self) -> Iterator[Any]:
        return (item for item in self._slots if item is not _EMPTY)

    def _valid(self, handle: object) -> bool:
        return (
            isinstance(handle, int)
            and not isinstance(handle, bool)
            and 0 <= handle < len(self._slots)
        )

    def push(self, item: T) -> int:
        """Store an item under a fresh handle and return the handle."""
        if item is None:
            raise TypeError("a handle table cannot hold None")
        if len(self._slots) >= MAX_HANDLES:
            raise OverflowError("handle table is full")
        self._slots.append(item)
        return len(self._slots) - 1

    def get(self, handle: int) -> Optional[T]:
        """Return the item behind a handle, or None if there is none."""
        if not self._valid(handle):
            return None
        item = self._slots[handle]
        return None if item is _EMPTY else item

    def take(self, handle: int) -> Optional[T]:
        """Remove and return the item behind a handle, or None if there is none."""
        if not self._valid(handle):
            return None
        item = self._slots[handle]
        if item is _EMPTY:
            return None
        self._slots[handle] = _EMPTY
        return item

    def put(self, handle: int, item: T) -> None:
        """Store an item under a handle this table already issued."""
        if item is None:
            raise TypeError("a handle table cannot hold None")
        if not self._valid(handle):
            raise KeyError(handle)
        self._slots[handle] = item

    def __contains__(self, handle: object) -> bool:
        return self._valid(handle) and self._slots[handle] is not _EMPTY  # type: ignore[index]

    def __len__(self) -> int:
        return len(self._slots)


class ContentEncodings(Flag):
    """Content encodings a request may ask the host to undo."""

    GZIP = 1


@dataclass
class RequestMetadata:
    """Host-side metadata attached to an outgoing request."""

    auto_decompress_encodings: ContentEncodings = field(
        default_factory=lambda: ContentEncodings(0)
    )


@dataclass(frozen=True)
class StandardSecret:
    """A secret to be read from a configured secret store."""

    store_name: str
    secret_name: str


@dataclass(frozen=True)
class InjectedSecret:
    """A secret whose plaintext was supplied by the guest."""

    plaintext: bytes


@dataclass
class SelectTarget:
    """An async item taken out of the session for a select, with the handle it came from."""

    handle: int
    item: AsyncItem