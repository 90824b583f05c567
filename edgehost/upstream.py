"""Sending requests to configured backends."""

from __future__ import annotations

import asyncio
import logging
import ssl
import zlib
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import httpx

from .errors import StreamingChunkSendError
from .handles import ContentEncodings, RequestMetadata
from .streaming_body import Body, StreamingBody

logger = logging.getLogger(__name__)

GZIP_VALUES = ("gzip", "x-gzip")

HeaderList = list[tuple[str, str]]
HeadersLike = Union[Mapping[str, str], Iterable[tuple[str, str]]]

_pump_tasks: set[asyncio.Task] = set()


@dataclass
class Backend:
    """Where and how to reach an upstream server."""

    uri: str
    override_host: Optional[str] = None
    cert_host: Optional[str] = None
    use_sni: bool = True
    grpc: bool = False
    ca_certs: list[Union[str, bytes]] = field(default_factory=list)
    client_cert: Optional[tuple[str, str]] = None
    """Paths of the client certificate chain and of its private key."""


class TlsConfig:
    """Host-wide TLS settings from which a context for each backend is built."""

    def __init__(self) -> None:
        probe = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        probe.load_default_certs()
        if probe.cert_store_stats().get("x509_ca", 0) == 0:
            logger.warning("no CA certificates available")

    def ssl_context(self, backend: Backend) -> ssl.SSLContext:
        """Build the client TLS context for connecting to a backend."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if backend.ca_certs:
            added = ignored = 0
            for cert in backend.ca_certs:
                try:
                    context.load_verify_locations(cadata=cert)
                except (ssl.SSLError, ValueError, TypeError):
                    ignored += 1
                else:
                    added += 1
            if ignored:
                logger.warning("Ignored %d certificates in provided CA certificate.", ignored)
            logger.debug("Using %d certificates from provided CA certificate.", added)
        else:
            context.load_default_certs()
        if backend.client_cert is not None:
            certfile, keyfile = backend.client_cert
            context.load_cert_chain(certfile, keyfile)
        if backend.grpc:
            context.set_alpn_protocols(["h2"])
        return context


@dataclass
class OutgoingRequest:
    """A request on its way to a backend."""

    method: str = "GET"
    uri: str = "/"
    headers: HeaderList = field(default_factory=list)
    body: Body = field(default_factory=Body)
    metadata: RequestMetadata = field(default_factory=RequestMetadata)


@dataclass
class UpstreamResponse:
    """A backend's response; the body streams in while it is read."""

    status: int
    headers: HeaderList
    body: Body
    version: str = "HTTP/1.1"

    def header(self, name: str) -> Optional[str]:
        """Return the first value of a header, or None."""
        wanted = name.lower()
        return next((v for n, v in self.headers if n.lower() == wanted), None)


def _header_pairs(headers: HeadersLike) -> list[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return list(headers.items())
    return list(headers)


def canonical_host_header(headers: HeadersLike, uri: str, backend: Backend) -> str:
    """The Host to send: the backend override, the request's Host, or the URI authority."""
    if backend.override_host is not None:
        return backend.override_host
    for name, value in _header_pairs(headers):
        if name.lower() == "host":
            return value
    authority = urlsplit(uri).netloc
    if authority:
        return authority
    raise ValueError("could not determine a Host header")


def canonical_uri(uri: str, canonical_host: str, backend: Backend) -> str:
    """The absolute URI for a request: backend scheme, canonical host, backend path prefix, request path."""
    original = urlsplit(uri)
    original_path = original.path
    if original.query:
        original_path += "?" + original.query
    if not original_path:
        original_path = "/"

    backend_parts = urlsplit(backend.uri)
    if not backend_parts.scheme:
        raise ValueError(f"backend URL is missing a scheme: {backend.uri}")

    result = f"{backend_parts.scheme}://{canonical_host}{backend_parts.path}"
    if not result.endswith("/"):
        result += "/"
    return result + original_path.removeprefix("/")


def _connect_url(uri: str, backend: Backend) -> str:
    parts = urlsplit(uri)
    return urlunsplit(parts._replace(netloc=urlsplit(backend.uri).netloc))


async def send_request(
    request: OutgoingRequest, backend: Backend, tls_config: TlsConfig
) -> UpstreamResponse:
    """Send a request to a backend and return its response once the headers arrive.

    The connection goes to the backend's URI; the request's own URI and Host
    only shape the path and the Host header that are sent.
    """
    host = canonical_host_header(request.headers, request.uri, backend)
    uri = canonical_uri(request.uri, host, backend)
    try_decompression = ContentEncodings.GZIP in request.metadata.auto_decompress_encodings

    headers = [("host", host)]
    headers.extend((n, v) for n, v in request.headers if n.lower() != "host")

    extensions = {}
    backend_parts = urlsplit(backend.uri)
    if backend_parts.scheme == "https":
        server_name = backend.cert_host or backend_parts.hostname or ""
        if not server_name:
            raise ValueError("no server name for TLS verification")
        extensions["sni_hostname"] = server_name

    content = await request.body.read_all()
    transport = httpx.AsyncHTTPTransport(
        verify=tls_config.ssl_context(backend),
        http1=not backend.grpc,
        http2=backend.grpc,
    )
    client = httpx.AsyncClient(transport=transport, timeout=None)
    outgoing = httpx.Request(
        request.method,
        _connect_url(uri, backend),
        headers=headers,
        content=content,
        extensions=extensions,
    )
    try:
        response = await client.send(outgoing, stream=True)
    except BaseException as exc:
        await client.aclose()
        if isinstance(exc, httpx.HTTPError):
            logger.error("Error: %r", exc)
        raise

    response_headers = [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in response.headers.raw
    ]
    encoding = next((v for n, v in response_headers if n.lower() == "content-encoding"), None)
    decompress = try_decompression and encoding in GZIP_VALUES
    if decompress:
        response_headers = [
            (n, v)
            for n, v in response_headers
            if n.lower() not in ("content-encoding", "content-length")
        ]

    streaming, receiver = StreamingBody.channel()
    body = Body()
    body.push_back(receiver)
    task = asyncio.get_running_loop().create_task(
        _pump(response, client, streaming, receiver, decompress)
    )
    _pump_tasks.add(task)
    task.add_done_callback(_pump_tasks.discard)

    return UpstreamResponse(
        status=response.status_code,
        headers=response_headers,
        body=body,
        version=response.http_version,
    )


async def _pump(response, client, streaming, receiver, decompress: bool) -> None:
    decoder = zlib.decompressobj(wbits=16 + zlib.MAX_WBITS) if decompress else None
    finished = False
    try:
        async for chunk in response.aiter_raw():
            data = decoder.decompress(chunk) if decoder is not None else chunk
            if data:
                await streaming.send_chunk(data)
        if decoder is not None:
            tail = decoder.flush()
            if tail:
                await streaming.send_chunk(tail)
        streaming.finish()
        finished = True
    except (StreamingChunkSendError, httpx.HTTPError, zlib.error) as exc:
        logger.warning("upstream body ended early: %s", exc)
    finally:
        if not finished:
            receiver.close_sender()
        await response.aclose()
        await client.aclose()