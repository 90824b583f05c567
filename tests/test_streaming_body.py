import asyncio

import pytest

from edgehost.errors import StreamingChunkSendError
from edgehost.streaming_body import STREAMING_CHANNEL_SIZE, Body, Finished, StreamingBody


@pytest.mark.asyncio
async def test_streamed_chunks_are_read_in_order_with_trailers():
    writer, reader = StreamingBody.channel()
    body = Body()
    body.push_back(reader)
    await writer.send_chunk(b"hello ")
    await writer.send_chunk("world")
    writer.append_trailer("x-trailer", "yes")
    writer.finish()
    assert await body.read_all() == b"hello world"
    assert body.trailers == [("x-trailer", "yes")]


@pytest.mark.asyncio
async def test_existing_bytes_come_before_streamed_part():
    writer, reader = StreamingBody.channel()
    body = Body(b"head-")
    body.push_back(reader)
    await writer.send_chunk(b"tail")
    writer.finish()
    assert await body.read_all() == b"head-tail"


@pytest.mark.asyncio
async def test_empty_body_reads_as_empty():
    assert await Body().read_all() == b""


@pytest.mark.asyncio
async def test_send_after_receiver_closed_fails():
    writer, reader = StreamingBody.channel()
    reader.close()
    with pytest.raises(StreamingChunkSendError):
        await writer.send_chunk(b"data")


@pytest.mark.asyncio
async def test_send_after_finish_fails():
    writer, _reader = StreamingBody.channel()
    writer.finish()
    with pytest.raises(StreamingChunkSendError):
        await writer.send_chunk(b"late")


@pytest.mark.asyncio
async def test_non_bytes_chunk_is_rejected():
    writer, _reader = StreamingBody.channel()
    with pytest.raises(TypeError):
        await writer.send_chunk(12)


@pytest.mark.asyncio
async def test_full_channel_blocks_await_ready():
    writer, reader = StreamingBody.channel()
    for _ in range(STREAMING_CHANNEL_SIZE):
        await writer.send_chunk(b"x")
    assert len(reader) == STREAMING_CHANNEL_SIZE
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(writer.await_ready(), 0.05)
    assert await reader.recv() == b"x"
    await asyncio.wait_for(writer.await_ready(), 1)
    assert len(reader) == STREAMING_CHANNEL_SIZE - 1


@pytest.mark.asyncio
async def test_finish_on_full_channel_is_delivered_later():
    writer, reader = StreamingBody.channel()
    for _ in range(STREAMING_CHANNEL_SIZE):
        await writer.send_chunk(b"ab")
    writer.append_trailer("done", "1")
    writer.finish()
    body = Body()
    body.push_back(reader)
    data = await asyncio.wait_for(body.read_all(), 1)
    assert data == b"ab" * STREAMING_CHANNEL_SIZE
    assert body.trailers == [("done", "1")]


@pytest.mark.asyncio
async def test_finish_sends_finished_marker():
    writer, reader = StreamingBody.channel()
    writer.finish()
    assert await reader.recv() == Finished([])
    assert await reader.recv() is None


@pytest.mark.asyncio
async def test_finish_with_closed_receiver_leaves_nothing_to_read():
    writer, reader = StreamingBody.channel()
    reader.close()
    writer.finish()
    assert await reader.recv() is None


@pytest.mark.asyncio
async def test_body_await_ready_waits_for_first_chunk():
    writer, reader = StreamingBody.channel()
    body = Body()
    body.push_back(reader)
    waiter = asyncio.ensure_future(body.await_ready())
    await asyncio.sleep(0.01)
    assert not waiter.done()
    await writer.send_chunk(b"go")
    await asyncio.wait_for(waiter, 1)
    assert waiter.done()