"""Exceptions raised by the edge host."""

from __future__ import annotations


class EdgeHostError(Exception):
    """Base class for every error raised by the edge host."""


class HandleError(EdgeHostError):
    """A handle does not refer to an item of the expected kind."""

    def __init__(self, kind: str, handle: int) -> None:
        super().__init__(f"invalid {kind} handle: {handle}")
        self.kind = kind
        self.handle = handle


class DownstreamResponseSentError(EdgeHostError):
    """A downstream response was sent more than once."""

    def __init__(self, message: str = "downstream response already sent") -> None:
        super().__init__(message)


class DownstreamClosedError(EdgeHostError):
    """The downstream response channel is no longer open."""

    def __init__(self, message: str = "downstream response channel was closed") -> None:
        super().__init__(message)


class StreamingChunkSendError(EdgeHostError):
    """A chunk could not be delivered to the read end of a streaming body."""

    def __init__(self, message: str = "error sending streaming chunk") -> None:
        super().__init__(message)


class UnknownDictionaryError(EdgeHostError):
    """No dictionary with the requested name is configured."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown dictionary: {name}")
        self.name = name


class PeekableTaskDroppedError(EdgeHostError):
    """The work behind a pending task went away without producing a result."""

    def __init__(self, message: str = "peekable task sender unexpectedly dropped") -> None:
        super().__init__(message)


class AbiVersionMismatchError(EdgeHostError):
    """The guest asked for an ABI version the host does not provide."""

    def __init__(self, requested: int | None = None) -> None:
        detail = "" if requested is None else f": {requested}"
        super().__init__(f"unsupported ABI version{detail}")
        self.requested = requested