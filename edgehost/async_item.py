"""Items that support waiting: bodies, streaming bodies and pending tasks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Coroutine, Generic, Optional, TypeVar

from .errors import PeekableTaskDroppedError
from .streaming_body import Body, StreamingBody

T = TypeVar("T")


class PeekableTask(Generic[T]):
    """A result that is either still being computed or already known."""

    def __init__(self, pending: Optional[asyncio.Future] = None) -> None:
        self._pending = pending
        self._value: Any = None
        self._error: Optional[BaseException] = None

    @classmethod
    def spawn(cls, coro: Coroutine[Any, Any, T]) -> PeekableTask[T]:
        """Run a coroutine in the background and track its outcome."""
        return cls(asyncio.get_running_loop().create_task(coro))

    @classmethod
    def complete(cls, value: T) -> PeekableTask[T]:
        task: PeekableTask[T] = cls()
        task._value = value
        return task

    @property
    def done(self) -> bool:
        return self._pending is None

    def _settle(self) -> None:
        future, self._pending = self._pending, None
        if future.cancelled():
            self._error = PeekableTaskDroppedError()
        elif future.exception() is not None:
            self._error = future.exception()
        else:
            self._value = future.result()

    def _poll(self) -> bool:
        if self._pending is not None and self._pending.done():
            self._settle()
        return self._pending is None

    async def await_ready(self) -> None:
        """Wait until the outcome is known, without cancelling the work if interrupted."""
        if self._pending is None:
            return
        await asyncio.wait({self._pending})
        if self._pending is not None:
            self._settle()

    async def recv(self) -> T:
        """Wait for the outcome and return the value or raise the error."""
        await self.await_ready()
        return self.result()

    def result(self) -> T:
        """Return the value, raise the error, or InvalidStateError while still waiting."""
        if self._pending is not None:
            raise asyncio.InvalidStateError("task has not completed")
        if self._error is not None:
            raise self._error
        return self._value


@dataclass(frozen=True)
class PendingKvLookupTask:
    task: PeekableTask


@dataclass(frozen=True)
class PendingKvInsertTask:
    task: PeekableTask


@dataclass(frozen=True)
class PendingKvDeleteTask:
    task: PeekableTask


class ItemKind(Enum):
    BODY = "body"
    STREAMING_BODY = "streaming body"
    PENDING_REQUEST = "pending request"
    PENDING_KV_LOOKUP = "pending kv lookup"
    PENDING_KV_INSERT = "pending kv insert"
    PENDING_KV_DELETE = "pending kv delete"


_KIND_OF_TYPE = (
    (Body, ItemKind.BODY),
    (StreamingBody, ItemKind.STREAMING_BODY),
    (PeekableTask, ItemKind.PENDING_REQUEST),
    (PendingKvLookupTask, ItemKind.PENDING_KV_LOOKUP),
    (PendingKvInsertTask, ItemKind.PENDING_KV_INSERT),
    (PendingKvDeleteTask, ItemKind.PENDING_KV_DELETE),
)

_KV_KINDS = frozenset(
    {ItemKind.PENDING_KV_LOOKUP, ItemKind.PENDING_KV_INSERT, ItemKind.PENDING_KV_DELETE}
)


class AsyncItem:
    """One entry of the shared table of waitable items; its kind follows its value."""

    __slots__ = ("_kind", "_value")

    def __init__(self, value: Any) -> None:
        for cls, kind in _KIND_OF_TYPE:
            if isinstance(value, cls):
                self._kind = kind
                self._value = value
                return
        raise TypeError(f"{type(value).__name__} cannot be an async item")

    def __repr__(self) -> str:
        return f"AsyncItem({self._kind.name}, {self._value!r})"

    @property
    def kind(self) -> ItemKind:
        return self._kind

    @property
    def value(self) -> Any:
        return self._value

    def _view(self, kind: ItemKind) -> Any:
        return self._value if self._kind is kind else None

    def is_streaming(self) -> bool:
        return self._kind is ItemKind.STREAMING_BODY

    def as_body(self) -> Optional[Body]:
        return self._view(ItemKind.BODY)

    def as_streaming(self) -> Optional[StreamingBody]:
        return self._view(ItemKind.STREAMING_BODY)

    def as_pending_request(self) -> Optional[PeekableTask]:
        return self._view(ItemKind.PENDING_REQUEST)

    def as_pending_kv_lookup(self) -> Optional[PendingKvLookupTask]:
        return self._view(ItemKind.PENDING_KV_LOOKUP)

    def as_pending_kv_insert(self) -> Optional[PendingKvInsertTask]:
        return self._view(ItemKind.PENDING_KV_INSERT)

    def as_pending_kv_delete(self) -> Optional[PendingKvDeleteTask]:
        return self._view(ItemKind.PENDING_KV_DELETE)

    def begin_streaming(self) -> Optional[Body]:
        """Turn a body into a streaming write end; return the body with the read end appended."""
        if self._kind is not ItemKind.BODY:
            return None
        body: Body = self._value
        streaming, receiver = StreamingBody.channel()
        self._kind, self._value = ItemKind.STREAMING_BODY, streaming
        body.push_back(receiver)
        return body

    def _waitable(self) -> Any:
        return self._value.task if self._kind in _KV_KINDS else self._value

    async def await_ready(self) -> None:
        await self._waitable().await_ready()

    def is_ready(self) -> bool:
        """Whether waiting on this item would complete without blocking."""
        target = self._waitable()
        if isinstance(target, PeekableTask):
            return target._poll()
        return target._is_ready()