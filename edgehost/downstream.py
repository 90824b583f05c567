"""The one-shot channel that carries the response back to the client."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

from .errors import DownstreamClosedError, DownstreamResponseSentError


class ResponseState(Enum):
    CLOSED = "closed"
    PENDING = "pending"
    SENT = "sent"


class DownstreamResponse:
    """Delivers at most one response through a future owned by the receiver."""

    def __init__(self, sender: asyncio.Future) -> None:
        self._sender: Optional[asyncio.Future] = sender
        self._state = ResponseState.PENDING

    @property
    def state(self) -> ResponseState:
        return self._state

    def send(self, response: Any) -> None:
        """Send the response; raises if already sent or if the channel is closed."""
        previous, sender = self._state, self._sender
        self._state, self._sender = ResponseState.SENT, None
        if previous is ResponseState.SENT:
            raise DownstreamResponseSentError()
        if previous is ResponseState.CLOSED or sender is None:
            raise DownstreamClosedError()
        if sender.done():
            raise DownstreamClosedError("response receiver is closed")
        sender.set_result(response)

    def close(self) -> None:
        """Close the channel, possibly without sending a response."""
        if self._sender is not None and not self._sender.done():
            self._sender.cancel()
        self._sender = None
        self._state = ResponseState.CLOSED