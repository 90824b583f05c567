"""Host-call helpers: ABI version check, HTTP versions and multi-value writing."""

from __future__ import annotations

from enum import Enum
from itertools import islice
from typing import Iterable, Union

from .errors import AbiVersionMismatchError, EdgeHostError

ABI_VERSION = 1

# Lengths cross the guest boundary as unsigned 32-bit integers.
_U32_MAX = 2**32 - 1

BytesLike = Union[bytes, bytearray, memoryview, str]


class HttpVersion(Enum):
    """HTTP versions as the guest ABI numbers them."""

    HTTP09 = 0
    HTTP10 = 1
    HTTP11 = 2
    H2 = 3
    H3 = 4

    @classmethod
    def from_http(cls, version: str) -> HttpVersion:
        """Map an HTTP version string such as ``"HTTP/1.1"`` to its ABI value."""
        try:
            return _FROM_HTTP[version.upper()]
        except (KeyError, AttributeError):
            raise ValueError(f"unknown HTTP version: {version!r}") from None

    def to_http(self) -> str:
        """The HTTP version string for this ABI value."""
        return _TO_HTTP[self]


_TO_HTTP = {
    HttpVersion.HTTP09: "HTTP/0.9",
    HttpVersion.HTTP10: "HTTP/1.0",
    HttpVersion.HTTP11: "HTTP/1.1",
    HttpVersion.H2: "HTTP/2",
    HttpVersion.H3: "HTTP/3",
}

_FROM_HTTP = {text: version for version, text in _TO_HTTP.items()}
_FROM_HTTP["HTTP/2.0"] = HttpVersion.H2
_FROM_HTTP["HTTP/3.0"] = HttpVersion.H3


class BufferTooSmallError(EdgeHostError):
    """Not even one value fits in the guest's buffer.

    ``needed`` is the number of bytes that value takes with its terminator,
    or 0 when that number does not fit in 32 bits.
    """

    def __init__(self, needed: int) -> None:
        super().__init__(f"buffer too small: {needed} bytes needed")
        self.needed = needed


def check_abi_version(abi_version: int) -> None:
    """Raise unless the guest asks for the ABI version this host provides."""
    if abi_version != ABI_VERSION:
        raise AbiVersionMismatchError(abi_version)


def _as_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def write_values(
    values: Iterable[BytesLike],
    terminator: int,
    buffer: Union[bytearray, memoryview],
    cursor: int,
) -> tuple[int, int]:
    """Write terminated values into ``buffer``, starting at the ``cursor``-th value.

    Returns ``(ending_cursor, nwritten)``: the ending cursor is -1 once every
    value has been written, otherwise the index of the first value that did
    not fit, so that a later call can resume there.
    """
    if not 0 <= terminator <= 0xFF:
        raise ValueError(f"terminator must be a single byte, got {terminator}")
    if cursor < 0:
        raise ValueError(f"cursor must not be negative, got {cursor}")
    view = memoryview(buffer)
    if view.readonly:
        raise TypeError("buffer must be writable")
    view = view.cast("B")

    offset = 0
    finished = True
    for value in islice(values, cursor, None):
        data = _as_bytes(value)
        end = offset + len(data) + 1
        if end > len(view):
            if offset == 0:
                needed = len(data) + 1
                raise BufferTooSmallError(needed if needed <= _U32_MAX else 0)
            finished = False
            break
        view[offset:end - 1] = data
        view[end - 1] = terminator
        offset = end
        cursor += 1

    return (-1 if finished else cursor), offset