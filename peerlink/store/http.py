"""
Negotiation store client for the peerlink signaling HTTP API.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

import httpx

from .. import PeerConfig
from ..errors import DocumentNotFound, StoreError, StoreUnavailable, already_set
from .base import AddedListener, DocumentListener, Fields, NegotiationStore, Subscription

LOG = logging.getLogger(__name__)


class PollingSubscription(Subscription):
    """Subscription served by a background polling task."""

    def __init__(self, label: str, on_cancel: Callable[["PollingSubscription"], None]) -> None:
        self.label = label
        self._on_cancel = on_cancel
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    def start(self, loop_factory: Callable[[], Awaitable[None]]) -> None:
        self._task = asyncio.get_running_loop().create_task(loop_factory())

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        self._on_cancel(self)


class HttpNegotiationStore(NegotiationStore):
    """
    Store backed by ``peerlink.api.server``.

    Change notifications are produced by polling: documents by revision,
    sub-collections by offset.  Transport errors and 5xx responses raise
    :class:`StoreUnavailable`; while polling they are logged and retried on the
    next tick.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 0.25,
        timeout: float = 10.0,
    ) -> None:
        if client is None:
            client = httpx.AsyncClient(
                base_url=base_url, timeout=httpx.Timeout(timeout, connect=5.0)
            )
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client
        self.poll_interval = max(0.01, float(poll_interval))
        self._subscriptions: Set[PollingSubscription] = set()

    @classmethod
    def from_config(cls, config: PeerConfig) -> "HttpNegotiationStore":
        return cls(config.store_url, poll_interval=config.poll_interval)

    # ------------------------------------------------------------------ helpers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 500:
            raise StoreUnavailable(f"{method} {url} returned {response.status_code}")
        return response

    @staticmethod
    def _check(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(f"store rejected request: {response.text}") from exc

    def _forget(self, subscription: PollingSubscription) -> None:
        self._subscriptions.discard(subscription)

    async def _fetch_document(self, collection: str, doc_id: str) -> Optional[Tuple[int, Fields]]:
        response = await self._request("GET", f"/v1/{collection}/{doc_id}")
        if response.status_code == 404:
            return None
        self._check(response)
        body = response.json()
        return int(body.get("rev", 0)), dict(body.get("fields") or {})

    async def _fetch_entries(
        self, collection: str, doc_id: str, subcollection: str, offset: int
    ) -> Tuple[List[Tuple[str, Fields]], int]:
        response = await self._request(
            "GET", f"/v1/{collection}/{doc_id}/{subcollection}", params={"offset": offset}
        )
        if response.status_code == 404:
            raise DocumentNotFound(collection, doc_id)
        self._check(response)
        body = response.json()
        entries = [(str(item["id"]), dict(item.get("fields") or {})) for item in body.get("entries", [])]
        return entries, int(body.get("next", offset + len(entries)))

    # ------------------------------------------------------------------ store API

    async def create_document(self, collection: str) -> str:
        response = await self._request("POST", f"/v1/{collection}")
        self._check(response)
        return str(response.json()["id"])

    async def get_document(self, collection: str, doc_id: str) -> Optional[Fields]:
        document = await self._fetch_document(collection, doc_id)
        return None if document is None else document[1]

    async def set_fields(
        self,
        collection: str,
        doc_id: str,
        fields: Fields,
        *,
        only_if_absent: bool = False,
    ) -> None:
        response = await self._request(
            "PATCH",
            f"/v1/{collection}/{doc_id}",
            json={"fields": fields, "onlyIfAbsent": bool(only_if_absent)},
        )
        if response.status_code == 404:
            raise DocumentNotFound(collection, doc_id)
        if response.status_code == 409:
            detail = response.json().get("detail") or {}
            field = detail.get("field") if isinstance(detail, dict) else None
            raise already_set(str(field or next(iter(fields), "")), doc_id)
        self._check(response)

    async def append(self, collection: str, doc_id: str, subcollection: str, fields: Fields) -> str:
        response = await self._request(
            "POST", f"/v1/{collection}/{doc_id}/{subcollection}", json={"fields": fields}
        )
        if response.status_code == 404:
            raise DocumentNotFound(collection, doc_id)
        self._check(response)
        return str(response.json()["id"])

    async def subscribe_document(
        self, collection: str, doc_id: str, listener: DocumentListener
    ) -> Subscription:
        initial = await self._fetch_document(collection, doc_id)
        if initial is None:
            raise DocumentNotFound(collection, doc_id)
        label = f"{collection}/{doc_id}"
        subscription = PollingSubscription(label, self._forget)

        async def poll() -> None:
            rev, fields = initial
            await self._deliver(label, listener, fields)
            while not subscription.cancelled:
                await asyncio.sleep(self.poll_interval)
                try:
                    current = await self._fetch_document(collection, doc_id)
                except StoreError as exc:
                    LOG.warning("Polling %s failed: %s", label, exc)
                    continue
                if current is None or current[0] == rev:
                    continue
                rev, fields = current
                await self._deliver(label, listener, fields)

        self._subscriptions.add(subscription)
        subscription.start(poll)
        return subscription

    async def subscribe_added(
        self,
        collection: str,
        doc_id: str,
        subcollection: str,
        listener: AddedListener,
    ) -> Subscription:
        initial, cursor = await self._fetch_entries(collection, doc_id, subcollection, 0)
        label = f"{collection}/{doc_id}/{subcollection}"
        subscription = PollingSubscription(label, self._forget)

        async def poll() -> None:
            offset = cursor
            for entry_id, fields in initial:
                await self._deliver(label, listener, entry_id, fields)
            while not subscription.cancelled:
                await asyncio.sleep(self.poll_interval)
                try:
                    entries, offset = await self._fetch_entries(collection, doc_id, subcollection, offset)
                except StoreError as exc:
                    LOG.warning("Polling %s failed: %s", label, exc)
                    continue
                for entry_id, fields in entries:
                    await self._deliver(label, listener, entry_id, fields)

        self._subscriptions.add(subscription)
        subscription.start(poll)
        return subscription

    @staticmethod
    async def _deliver(label: str, listener: Callable[..., Awaitable[None]], *args: Any) -> None:
        try:
            await listener(*args)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOG.exception("Listener for %s failed", label)

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpNegotiationStore", "PollingSubscription"]
