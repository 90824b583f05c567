import asyncio

import pytest

from edgehost.async_item import (
    AsyncItem,
    ItemKind,
    PeekableTask,
    PendingKvDeleteTask,
    PendingKvInsertTask,
    PendingKvLookupTask,
)
from edgehost.errors import PeekableTaskDroppedError
from edgehost.streaming_body import Body, StreamingBody


async def _value_after(event, value):
    await event.wait()
    return value


async def _fail():
    raise ValueError("boom")


async def _cancel_self():
    raise asyncio.CancelledError


@pytest.mark.asyncio
async def test_complete_task_returns_value():
    task = PeekableTask.complete(5)
    assert task.done
    assert task.result() == 5
    assert await task.recv() == 5


@pytest.mark.asyncio
async def test_spawned_task_completes():
    event = asyncio.Event()
    task = PeekableTask.spawn(_value_after(event, "ok"))
    assert not task.done
    with pytest.raises(asyncio.InvalidStateError):
        task.result()
    event.set()
    assert await task.recv() == "ok"
    assert task.done


@pytest.mark.asyncio
async def test_spawned_failure_is_raised():
    task = PeekableTask.spawn(_fail())
    with pytest.raises(ValueError):
        await task.recv()
    with pytest.raises(ValueError):
        task.result()


@pytest.mark.asyncio
async def test_cancelled_work_reports_dropped():
    task = PeekableTask.spawn(_cancel_self())
    with pytest.raises(PeekableTaskDroppedError):
        await task.recv()


@pytest.mark.asyncio
async def test_interrupted_wait_does_not_cancel_work():
    event = asyncio.Event()
    task = PeekableTask.spawn(_value_after(event, 3))
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(task.await_ready(), 0.01)
    event.set()
    assert await task.recv() == 3


@pytest.mark.parametrize(
    "make, kind",
    [
        (lambda: Body(b"x"), ItemKind.BODY),
        (lambda: StreamingBody.channel()[0], ItemKind.STREAMING_BODY),
        (lambda: PeekableTask.complete(1), ItemKind.PENDING_REQUEST),
        (lambda: PendingKvLookupTask(PeekableTask.complete(b"")), ItemKind.PENDING_KV_LOOKUP),
        (lambda: PendingKvInsertTask(PeekableTask.complete(None)), ItemKind.PENDING_KV_INSERT),
        (lambda: PendingKvDeleteTask(PeekableTask.complete(None)), ItemKind.PENDING_KV_DELETE),
    ],
)
def test_kind_follows_value(make, kind):
    value = make()
    item = AsyncItem(value)
    assert item.kind is kind
    assert item.value is value


def test_unknown_value_is_rejected():
    with pytest.raises(TypeError):
        AsyncItem("not an item")


def test_views_match_only_their_kind():
    lookup = PendingKvLookupTask(PeekableTask.complete(b"v"))
    item = AsyncItem(lookup)
    assert item.as_pending_kv_lookup() is lookup
    assert item.as_body() is None
    assert item.as_streaming() is None
    assert item.as_pending_request() is None
    assert item.as_pending_kv_insert() is None
    assert item.as_pending_kv_delete() is None
    assert not item.is_streaming()


@pytest.mark.asyncio
async def test_begin_streaming_links_write_and_read_ends():
    item = AsyncItem(Body(b"head"))
    body = item.begin_streaming()
    assert item.is_streaming()
    writer = item.as_streaming()
    assert isinstance(writer, StreamingBody)
    await writer.send_chunk(b"+more")
    writer.finish()
    assert await body.read_all() == b"head+more"
    assert item.begin_streaming() is None


def test_begin_streaming_on_pending_request_returns_none():
    item = AsyncItem(PeekableTask.complete(1))
    assert item.begin_streaming() is None
    assert item.kind is ItemKind.PENDING_REQUEST


@pytest.mark.asyncio
async def test_is_ready_tracks_pending_kv_task():
    event = asyncio.Event()
    item = AsyncItem(PendingKvLookupTask(PeekableTask.spawn(_value_after(event, b"v"))))
    assert not item.is_ready()
    event.set()
    await item.await_ready()
    assert item.is_ready()
    assert item.as_pending_kv_lookup().task.result() == b"v"


@pytest.mark.asyncio
async def test_is_ready_for_body_waiting_on_stream():
    writer, reader = StreamingBody.channel()
    body = Body()
    body.push_back(reader)
    item = AsyncItem(body)
    assert not item.is_ready()
    await writer.send_chunk(b"c")
    assert item.is_ready()
    assert AsyncItem(writer).is_ready()