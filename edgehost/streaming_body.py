"""Bodies and the write end of streaming bodies."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Union

from .errors import StreamingChunkSendError

# Bounds the number of chunks in flight, not the number of bytes in them.
STREAMING_CHANNEL_SIZE = 8

_background_tasks: set[asyncio.Task] = set()


@dataclass
class Finished:
    """Marks a streaming body as complete and carries its trailers."""

    trailers: list[tuple[str, str]] = field(default_factory=list)


def _to_bytes(chunk: object) -> bytes:
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    raise TypeError(f"cannot use {type(chunk).__name__} as a body chunk")


class _Channel:
    """A bounded single-producer, single-consumer channel of body items."""

    def __init__(self, capacity: int = STREAMING_CHANNEL_SIZE) -> None:
        self._items: deque[Union[bytes, Finished]] = deque()
        self._capacity = capacity
        self._sender_closed = False
        self._receiver_closed = False
        self._event = asyncio.Event()

    def _notify(self) -> None:
        event, self._event = self._event, asyncio.Event()
        event.set()

    async def _changed(self) -> None:
        await self._event.wait()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def full(self) -> bool:
        return len(self._items) >= self._capacity

    @property
    def closed(self) -> bool:
        """True once the read end has been closed."""
        return self._receiver_closed

    def readable(self) -> bool:
        """True when a receive would not have to wait."""
        return bool(self._items) or self._sender_closed or self._receiver_closed

    async def send(self, item: Union[bytes, Finished]) -> None:
        while not self._receiver_closed and self.full:
            await self._changed()
        if self._receiver_closed:
            raise StreamingChunkSendError()
        self._items.append(item)
        self._notify()

    def try_send(self, item: Union[bytes, Finished]) -> bool:
        """Queue an item now; False if the read end is closed, QueueFull if no room."""
        if self._receiver_closed:
            return False
        if self.full:
            raise asyncio.QueueFull
        self._items.append(item)
        self._notify()
        return True

    async def reserve(self) -> None:
        while not self._receiver_closed and self.full:
            await self._changed()

    async def recv(self) -> Union[bytes, Finished, None]:
        """Receive the next item, or None once nothing more can arrive."""
        while not self._items:
            if self._sender_closed or self._receiver_closed:
                return None
            await self._changed()
        item = self._items.popleft()
        self._notify()
        return item

    async def wait_readable(self) -> None:
        while not self.readable():
            await self._changed()

    def close_sender(self) -> None:
        self._sender_closed = True
        self._notify()

    def close(self) -> None:
        """Close the read end; further sends fail."""
        self._receiver_closed = True
        self._notify()


class Body:
    """An HTTP body made of byte chunks and the read ends of streaming bodies."""

    def __init__(self, *chunks: Union[bytes, bytearray, memoryview, str]) -> None:
        self._parts: deque[Union[bytes, _Channel]] = deque(_to_bytes(c) for c in chunks)
        self.trailers: list[tuple[str, str]] = []

    def push_back(self, receiver: Union[_Channel, bytes, bytearray, memoryview, str]) -> None:
        """Append a streaming read end, or plain bytes, to the end of the body."""
        self._parts.append(receiver if isinstance(receiver, _Channel) else _to_bytes(receiver))

    def _is_ready(self) -> bool:
        if not self._parts:
            return True
        head = self._parts[0]
        return not isinstance(head, _Channel) or head.readable()

    async def await_ready(self) -> None:
        """Wait until the start of the body can be read without blocking."""
        if self._parts and isinstance(self._parts[0], _Channel):
            await self._parts[0].wait_readable()

    async def read_all(self) -> bytes:
        """Consume the whole body, collecting trailers from streamed parts."""
        out = bytearray()
        while self._parts:
            part = self._parts.popleft()
            if not isinstance(part, _Channel):
                out += part
                continue
            while (item := await part.recv()) is not None:
                if isinstance(item, Finished):
                    self.trailers.extend(item.trailers)
                    break
                out += item
        return bytes(out)


class StreamingBody:
    """The write end of a streaming body."""

    def __init__(self, sender: _Channel) -> None:
        self._sender = sender
        self._finished = False
        self.trailers: list[tuple[str, str]] = []

    @classmethod
    def channel(cls) -> tuple[StreamingBody, _Channel]:
        """Create a streaming body, returning its write and read ends."""
        sender = _Channel()
        return cls(sender), sender

    async def send_chunk(self, chunk: Union[bytes, bytearray, memoryview, str]) -> None:
        """Send one chunk, waiting for room; raises if the read end is gone."""
        if self._finished:
            raise StreamingChunkSendError("streaming body already finished")
        await self._sender.send(_to_bytes(chunk))

    def append_trailer(self, name: str, value: str) -> None:
        self.trailers.append((name, value))

    def _is_ready(self) -> bool:
        return self._finished or self._sender.closed or not self._sender.full

    async def await_ready(self) -> None:
        """Wait until there is room for another chunk."""
        await self._sender.reserve()

    def finish(self) -> None:
        """Mark the body complete so the read end sees a proper ending."""
        if self._finished:
            return
        self._finished = True
        message = Finished(list(self.trailers))
        try:
            self._sender.try_send(message)
        except asyncio.QueueFull:
            task = asyncio.get_running_loop().create_task(self._send_later(message))
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)
            return
        self._sender.close_sender()

    async def _send_later(self, message: Finished) -> None:
        try:
            await self._sender.send(message)
        except StreamingChunkSendError:
            pass
        finally:
            self._sender.close_sender()