import asyncio

import pytest

from edgehost.downstream import DownstreamResponse, ResponseState
from edgehost.errors import DownstreamClosedError, DownstreamResponseSentError


@pytest.mark.asyncio
async def test_send_delivers_response():
    receiver = asyncio.get_running_loop().create_future()
    downstream = DownstreamResponse(receiver)
    assert downstream.state is ResponseState.PENDING
    response = {"status": 200}
    downstream.send(response)
    assert await receiver is response
    assert downstream.state is ResponseState.SENT


@pytest.mark.asyncio
async def test_second_send_fails():
    receiver = asyncio.get_running_loop().create_future()
    downstream = DownstreamResponse(receiver)
    downstream.send("first")
    with pytest.raises(DownstreamResponseSentError):
        downstream.send("second")
    assert receiver.result() == "first"


@pytest.mark.asyncio
async def test_send_after_close_fails():
    receiver = asyncio.get_running_loop().create_future()
    downstream = DownstreamResponse(receiver)
    downstream.close()
    assert downstream.state is ResponseState.CLOSED
    assert receiver.cancelled()
    with pytest.raises(DownstreamClosedError):
        downstream.send("late")


@pytest.mark.asyncio
async def test_send_to_dropped_receiver_fails():
    receiver = asyncio.get_running_loop().create_future()
    receiver.cancel()
    downstream = DownstreamResponse(receiver)
    with pytest.raises(DownstreamClosedError):
        downstream.send("nobody listening")
    assert downstream.state is ResponseState.SENT


@pytest.mark.asyncio
async def test_close_after_send_keeps_result():
    receiver = asyncio.get_running_loop().create_future()
    downstream = DownstreamResponse(receiver)
    downstream.send("done")
    downstream.close()
    assert receiver.result() == "done"
    assert downstream.state is ResponseState.CLOSED