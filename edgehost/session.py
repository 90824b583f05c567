"""Per-request state: every host-side item the guest can refer to by handle."""

from __future__ import annotations

import asyncio
import copy
import ipaddress
import json
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, MutableMapping, Optional, Union

from .async_item import (
    AsyncItem,
    ItemKind,
    PeekableTask,
    PendingKvDeleteTask,
    PendingKvInsertTask,
    PendingKvLookupTask,
)
from .downstream import DownstreamResponse
from .errors import HandleError, UnknownDictionaryError
from .handles import HandleTable, InjectedSecret, SelectTarget, StandardSecret
from .streaming_body import Body, StreamingBody

IpLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]
Secret = Union[StandardSecret, InjectedSecret]


def _render(data: Any) -> str:
    if isinstance(data, str):
        return data
    if isinstance(data, (bytes, bytearray)):
        return bytes(data).decode("utf-8")
    return json.dumps(data)


class Session:
    """Data for one downstream request and everything the guest allocates while handling it.

    The configuration mappings (backends, dictionaries, stores and so on) are
    shared with the caller; only the object store is ever modified.
    """

    def __init__(
        self,
        request: Any,
        body: Body,
        resp_sender: asyncio.Future,
        client_ip: IpLike,
        *,
        req_id: int = 0,
        backends: Optional[Mapping[str, Any]] = None,
        device_detection: Optional[Mapping[str, Any]] = None,
        geolocation: Optional[Mapping[IpLike, Any]] = None,
        tls_config: Any = None,
        dictionaries: Optional[Mapping[str, Mapping[str, str]]] = None,
        config_path: Optional[Union[str, Path]] = None,
        object_store: Optional[MutableMapping[str, MutableMapping[str, bytes]]] = None,
        secret_stores: Optional[Mapping[str, Mapping[str, bytes]]] = None,
    ) -> None:
        self._client_ip = ipaddress.ip_address(client_ip)
        self._original_headers = copy.deepcopy(getattr(request, "headers", None))

        self._async_items: HandleTable[AsyncItem] = HandleTable()
        self._req_parts: HandleTable[Any] = HandleTable()
        self._resp_parts: HandleTable[Any] = HandleTable()
        self._downstream_req = self._req_parts.push(request)
        self._downstream_body = self._async_items.push(AsyncItem(body))
        self._downstream_resp = DownstreamResponse(resp_sender)

        self._log_endpoints: HandleTable[bytes] = HandleTable()
        self._log_endpoints_by_name: dict[bytes, int] = {}

        self._backends: Mapping[str, Any] = backends if backends is not None else {}
        self._dynamic_backends: dict[str, Any] = {}
        self._device_detection: Mapping[str, Any] = device_detection or {}
        self._geolocation = {
            ipaddress.ip_address(addr): data for addr, data in (geolocation or {}).items()
        }
        self._tls_config = tls_config
        self._dictionaries: Mapping[str, Mapping[str, str]] = dictionaries or {}
        self._dictionaries_by_handle: HandleTable[str] = HandleTable()
        self.object_store: MutableMapping[str, MutableMapping[str, bytes]] = (
            object_store if object_store is not None else {}
        )
        self._object_stores_by_handle: HandleTable[str] = HandleTable()
        self._secret_stores: Mapping[str, Mapping[str, bytes]] = secret_stores or {}
        self._secret_stores_by_handle: HandleTable[str] = HandleTable()
        self._secrets_by_handle: HandleTable[Secret] = HandleTable()
        self._config_path = Path(config_path) if config_path is not None else None
        self._req_id = req_id

    # ----- downstream request -----

    @property
    def downstream_client_ip(self) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
        return self._client_ip

    @property
    def downstream_request(self) -> int:
        """Handle of the downstream request parts."""
        return self._downstream_req

    @property
    def downstream_request_body(self) -> int:
        """Handle of the downstream request body."""
        return self._downstream_body

    @property
    def downstream_original_headers(self) -> Any:
        """A copy of the downstream request headers, taken before the guest ran."""
        return self._original_headers

    @property
    def req_id(self) -> int:
        return self._req_id

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    @property
    def tls_config(self) -> Any:
        return self._tls_config

    @property
    def dictionaries(self) -> Mapping[str, Mapping[str, str]]:
        return self._dictionaries

    @property
    def secret_stores(self) -> Mapping[str, Mapping[str, bytes]]:
        return self._secret_stores

    # ----- downstream response -----

    def send_downstream_response(self, response: Any) -> None:
        """Send the response to the client; raises if one was already sent."""
        self._downstream_resp.send(response)

    def close_downstream_response_sender(self) -> None:
        self._downstream_resp.close()

    # ----- async items -----

    def _value_of(self, handle: int, kind: ItemKind, what: str) -> Any:
        item = self._async_items.get(handle)
        if item is None or item.kind is not kind:
            raise HandleError(what, handle)
        return item.value

    def _take_value_of(self, handle: int, kind: ItemKind, what: str) -> Any:
        value = self._value_of(handle, kind, what)
        self._async_items.take(handle)
        return value

    def async_item(self, handle: int) -> AsyncItem:
        item = self._async_items.get(handle)
        if item is None:
            raise HandleError("async item", handle)
        return item

    def take_async_item(self, handle: int) -> AsyncItem:
        item = self._async_items.take(handle)
        if item is None:
            raise HandleError("async item", handle)
        return item

    # ----- bodies -----

    def insert_body(self, body: Body) -> int:
        return self._async_items.push(AsyncItem(body))

    def body(self, handle: int) -> Body:
        return self._value_of(handle, ItemKind.BODY, "body")

    def take_body(self, handle: int) -> Body:
        return self._take_value_of(handle, ItemKind.BODY, "body")

    def drop_body(self, handle: int) -> None:
        """Discard whatever item the handle refers to."""
        if self._async_items.take(handle) is None:
            raise HandleError("body", handle)

    def begin_streaming(self, handle: int) -> Body:
        """Turn the body into a streaming write end; return the body with the read end appended."""
        item = self._async_items.get(handle)
        body = item.begin_streaming() if item is not None else None
        if body is None:
            raise HandleError("body", handle)
        return body

    def is_streaming_body(self, handle: int) -> bool:
        item = self._async_items.get(handle)
        return item is not None and item.is_streaming()

    def streaming_body(self, handle: int) -> StreamingBody:
        return self._value_of(handle, ItemKind.STREAMING_BODY, "body")

    def take_streaming_body(self, handle: int) -> StreamingBody:
        return self._take_value_of(handle, ItemKind.STREAMING_BODY, "body")

    # ----- request and response parts -----

    def insert_request_parts(self, parts: Any) -> int:
        return self._req_parts.push(parts)

    def request_parts(self, handle: int) -> Any:
        parts = self._req_parts.get(handle)
        if parts is None:
            raise HandleError("request", handle)
        return parts

    def take_request_parts(self, handle: int) -> Any:
        parts = self._req_parts.take(handle)
        if parts is None:
            raise HandleError("request", handle)
        return parts

    def insert_response_parts(self, parts: Any) -> int:
        return self._resp_parts.push(parts)

    def response_parts(self, handle: int) -> Any:
        parts = self._resp_parts.get(handle)
        if parts is None:
            raise HandleError("response", handle)
        return parts

    def take_response_parts(self, handle: int) -> Any:
        parts = self._resp_parts.take(handle)
        if parts is None:
            raise HandleError("response", handle)
        return parts

    def insert_response(self, parts: Any, body: Body) -> tuple[int, int]:
        """Store a response's parts and body; return their handles."""
        return self.insert_response_parts(parts), self.insert_body(body)

    # ----- logging endpoints -----

    def log_endpoint_handle(self, name: bytes) -> int:
        """Return the handle for the named endpoint, creating it on first use."""
        name = bytes(name)
        handle = self._log_endpoints_by_name.get(name)
        if handle is None:
            handle = self._log_endpoints.push(name)
            self._log_endpoints_by_name[name] = handle
        return handle

    def log_endpoint(self, handle: int) -> bytes:
        """Return the name of the endpoint behind a handle."""
        name = self._log_endpoints.get(handle)
        if name is None:
            raise HandleError("endpoint", handle)
        return name

    # ----- backends -----

    def backend(self, name: str) -> Optional[Any]:
        found = self._backends.get(name)
        return found if found is not None else self._dynamic_backends.get(name)

    def dynamic_backend(self, name: str) -> Optional[Any]:
        return self._dynamic_backends.get(name)

    def backend_names(self) -> Iterator[str]:
        """Names of the configured backends, then of those added at run time."""
        yield from self._backends
        yield from self._dynamic_backends

    def add_backend(self, name: str, info: Any) -> bool:
        """Add a dynamic backend; False if the name is already taken."""
        if name in self._backends or name in self._dynamic_backends:
            return False
        self._dynamic_backends[name] = info
        return True

    # ----- device detection and geolocation -----

    def device_detection_lookup(self, user_agent: str) -> Optional[str]:
        data = self._device_detection.get(user_agent)
        return None if data is None else _render(data)

    def geolocation_lookup(self, addr: IpLike) -> Optional[str]:
        data = self._geolocation.get(ipaddress.ip_address(addr))
        return None if data is None else _render(data)

    # ----- dictionaries -----

    def dictionary_handle(self, name: str) -> int:
        if name not in self._dictionaries:
            raise UnknownDictionaryError(name)
        return self._dictionaries_by_handle.push(name)

    def dictionary(self, handle: int) -> Mapping[str, str]:
        name = self._dictionaries_by_handle.get(handle)
        if name is None or name not in self._dictionaries:
            raise HandleError("dictionary", handle)
        return self._dictionaries[name]

    # ----- object store -----

    def obj_store_handle(self, key: str) -> int:
        return self._object_stores_by_handle.push(key)

    def obj_store_key(self, handle: int) -> Optional[str]:
        return self._object_stores_by_handle.get(handle)

    def obj_insert(self, store_key: str, obj_key: str, obj: bytes) -> None:
        self.object_store.setdefault(store_key, {})[obj_key] = bytes(obj)

    def obj_delete(self, store_key: str, obj_key: str) -> None:
        store = self.object_store.get(store_key)
        if store is not None:
            store.pop(obj_key, None)

    def obj_lookup(self, store_key: str, obj_key: str) -> bytes:
        """Return the stored object; KeyError if the store or the object is missing."""
        return self.object_store[store_key][obj_key]

    def insert_pending_kv_insert(self, pending: PendingKvInsertTask) -> int:
        return self._async_items.push(AsyncItem(pending))

    def pending_kv_insert(self, handle: int) -> PendingKvInsertTask:
        return self._value_of(handle, ItemKind.PENDING_KV_INSERT, "pending kv insert")

    def take_pending_kv_insert(self, handle: int) -> PendingKvInsertTask:
        return self._take_value_of(handle, ItemKind.PENDING_KV_INSERT, "pending kv insert")

    def insert_pending_kv_delete(self, pending: PendingKvDeleteTask) -> int:
        return self._async_items.push(AsyncItem(pending))

    def pending_kv_delete(self, handle: int) -> PendingKvDeleteTask:
        return self._value_of(handle, ItemKind.PENDING_KV_DELETE, "pending kv delete")

    def take_pending_kv_delete(self, handle: int) -> PendingKvDeleteTask:
        return self._take_value_of(handle, ItemKind.PENDING_KV_DELETE, "pending kv delete")

    def insert_pending_kv_lookup(self, pending: PendingKvLookupTask) -> int:
        return self._async_items.push(AsyncItem(pending))

    def pending_kv_lookup(self, handle: int) -> PendingKvLookupTask:
        return self._value_of(handle, ItemKind.PENDING_KV_LOOKUP, "pending kv lookup")

    def take_pending_kv_lookup(self, handle: int) -> PendingKvLookupTask:
        return self._take_value_of(handle, ItemKind.PENDING_KV_LOOKUP, "pending kv lookup")

    # ----- secret stores -----

    def secret_store_handle(self, name: str) -> Optional[int]:
        if name not in self._secret_stores:
            return None
        return self._secret_stores_by_handle.push(name)

    def secret_store_name(self, handle: int) -> Optional[str]:
        return self._secret_stores_by_handle.get(handle)

    def secret_handle(self, store_name: str, secret_name: str) -> Optional[int]:
        store = self._secret_stores.get(store_name)
        if store is None or secret_name not in store:
            return None
        return self._secrets_by_handle.push(StandardSecret(store_name, secret_name))

    def secret_lookup(self, handle: int) -> Optional[Secret]:
        return self._secrets_by_handle.get(handle)

    def add_secret(self, plaintext: bytes) -> int:
        return self._secrets_by_handle.push(InjectedSecret(bytes(plaintext)))

    # ----- pending requests -----

    def insert_pending_request(self, pending: PeekableTask) -> int:
        return self._async_items.push(AsyncItem(pending))

    def pending_request(self, handle: int) -> PeekableTask:
        return self._value_of(handle, ItemKind.PENDING_REQUEST, "pending request")

    def take_pending_request(self, handle: int) -> PeekableTask:
        return self._take_value_of(handle, ItemKind.PENDING_REQUEST, "pending request")

    def reinsert_pending_request(self, handle: int, pending: PeekableTask) -> None:
        """Put a pending request back under a handle this session issued."""
        try:
            self._async_items.put(handle, AsyncItem(pending))
        except KeyError:
            raise HandleError("pending request", handle) from None

    # ----- select -----

    def prepare_select_targets(self, handles: Iterable[int]) -> list[SelectTarget]:
        """Take the items out for a select; on any bad handle, put back what was taken."""
        targets: list[SelectTarget] = []
        for handle in handles:
            item = self._async_items.take(handle)
            if item is None:
                self.reinsert_select_targets(targets)
                raise HandleError("pending request", handle)
            targets.append(SelectTarget(handle, item))
        return targets

    def reinsert_select_targets(self, targets: Iterable[SelectTarget]) -> None:
        for target in targets:
            self._async_items.put(target.handle, target.item)

    async def select(self, handles: Iterable[int]) -> int:
        """Wait until one of the items is ready and return its position in ``handles``.

        With no handles this waits forever; callers bound it with a timeout.
        """
        targets = self.prepare_select_targets(handles)
        waiters: list[asyncio.Future] = []
        try:
            if not targets:
                await asyncio.get_running_loop().create_future()
            waiters = [asyncio.ensure_future(t.item.await_ready()) for t in targets]
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            return next(index for index, waiter in enumerate(waiters) if waiter in done)
        finally:
            self.reinsert_select_targets(targets)
            for waiter in waiters:
                waiter.cancel()
            if waiters:
                await asyncio.gather(*waiters, return_exceptions=True)