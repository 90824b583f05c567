# edgehost

`edgehost` holds the per-request state of a local edge compute host: the
bodies, requests, responses, pending upstream calls and key-value operations
that a guest program creates while it handles one downstream request. It also
sends requests on to configured backends and provides a few helpers for
host calls.

## Installation

```
pip install edgehost
```

For running the test suite:

```
pip install "edgehost[test]"
pytest
```

## Modules

### `edgehost.session`

`Session(request, body, resp_sender, client_ip, *, req_id=0, backends=None,
device_detection=None, geolocation=None, tls_config=None, dictionaries=None,
config_path=None, object_store=None, secret_stores=None)` is the state of one
downstream request. `resp_sender` is an `asyncio.Future` that receives the
response. The headers of the downstream request are copied when the session is
created and are available as `downstream_original_headers`.

- Bodies, streaming bodies, pending requests and pending key-value lookups,
  inserts and deletes all live in one handle table, so one integer handle can
  name any of them. Methods such as `body`, `take_body`, `streaming_body`,
  `pending_request` and `pending_kv_lookup` raise `HandleError` when a handle
  is stale or refers to an item of another kind. `drop_body` discards whatever
  item the handle refers to.
- `begin_streaming(handle)` turns a body into the write end of a streaming
  body and returns the original body with the read end appended.
- Request and response parts have their own tables (`insert_request_parts`,
  `request_parts`, `take_request_parts` and the response counterparts).
  `insert_response(parts, body)` returns both handles.
- `log_endpoint_handle(name)` gives the same handle for the same name each time.
- `backend(name)` looks in the configured backends, then in those added with
  `add_backend`; `add_backend` returns `False` if the name is already taken.
  `backend_names()` yields configured names first.
- `dictionary_handle(name)` raises `UnknownDictionaryError` for an unknown name.
- `obj_insert`, `obj_delete` and `obj_lookup` work on the `object_store`
  mapping; `obj_lookup` raises `KeyError` when the store or object is missing.
- `secret_store_handle` and `secret_handle` return `None` for unknown stores or
  secrets; `add_secret` stores guest-supplied plaintext.
- `await select(handles)` takes the items out of the table, waits until the
  first is ready, puts them all back and returns its position in `handles`.
  With no handles it waits forever, so bound it with a timeout.
- `send_downstream_response(response)` delivers the response once; a second
  call raises `DownstreamResponseSentError`.

### `edgehost.streaming_body`

`Body(*chunks)` is a body made of byte chunks and the read ends of streaming
bodies; `await body.read_all()` consumes it and collects trailers into
`body.trailers`. `StreamingBody.channel()` returns a write end and the channel
that feeds it. `send_chunk` waits while eight chunks are in flight and raises
`StreamingChunkSendError` once the read end is closed. `finish()` marks the
stream complete and carries trailers added with `append_trailer`, so a cut-off
stream is never taken for a finished one.

```python
import asyncio

from edgehost.streaming_body import Body, StreamingBody


async def main():
    writer, channel = StreamingBody.channel()
    body = Body(b"hello, ")
    body.push_back(channel)

    await writer.send_chunk(b"world")
    writer.append_trailer("x-done", "1")
    writer.finish()

    print(await body.read_all())  # b'hello, world'
    print(body.trailers)          # [('x-done', '1')]


asyncio.run(main())
```

### `edgehost.async_item`

`PeekableTask` is a result that is either still being computed
(`PeekableTask.spawn(coro)`, which needs a running event loop) or already known
(`PeekableTask.complete(value)`). `await_ready()` waits without consuming the
result; `recv()` waits and returns it; `result()` raises
`asyncio.InvalidStateError` while still waiting. `PendingKvLookupTask`,
`PendingKvInsertTask` and `PendingKvDeleteTask` wrap a task. `AsyncItem` is one
entry of the session's table; its `kind` is an `ItemKind`.

### `edgehost.downstream`

`DownstreamResponse(future)` sends at most one response. `close()` cancels the
future; sending after that raises `DownstreamClosedError`.

### `edgehost.handles`

`HandleTable` issues integer handles that are never reused, and also defines
`ContentEncodings`, `RequestMetadata`, `StandardSecret`, `InjectedSecret` and
`SelectTarget`.

### `edgehost.upstream`

`Backend` describes an upstream server. `canonical_host_header` picks the
backend's override host, else the request's `Host` header, else the URI's
authority. `canonical_uri` joins the backend scheme, the host, the backend path
prefix and the request path:

```python
from edgehost.upstream import Backend, canonical_uri

backend = Backend("https://origin.example.com/prefix")
canonical_uri("/path?q=1", "example.com", backend)
# 'https://example.com/prefix/path?q=1'
```

`await send_request(request, backend, tls_config)` sends an `OutgoingRequest`
to the backend's address with `httpx` and returns an `UpstreamResponse` once the
headers arrive; its body streams in as it is read. When the request's metadata
asks for gzip and the response is gzip-encoded, the body is decompressed and the
`content-encoding` and `content-length` headers are dropped. `TlsConfig` builds
the TLS context for each backend from its CA certificates, client certificate
and gRPC setting. gRPC backends are sent over HTTP/2, which needs httpx's
`http2` extra installed.

### `edgehost.abi`

`check_abi_version` raises `AbiVersionMismatchError` for any version but 1.
`HttpVersion.from_http("HTTP/1.1")` and `to_http()` convert between ABI values
and version strings. `write_values(values, terminator, buffer, cursor)` writes
terminated values into a writable buffer from the `cursor`-th value and returns
`(ending_cursor, nwritten)`, with `-1` when every value fit:

```python
from edgehost.abi import write_values

buf = bytearray(8)
write_values([b"ab", b"cd", b"efgh"], 0, buf, 0)  # (2, 6)
```

If not even the first value fits, it raises `BufferTooSmallError` with the
number of bytes needed.

Every exception derives from `edgehost.errors.EdgeHostError`.

## What this package does not do

It does not listen on a port or serve HTTP, it does not load or run guest
programs, and it does not read a configuration file: backends, dictionaries,
stores and the like are passed to `Session` as plain mappings by the caller.