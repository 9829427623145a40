"""
In-process negotiation store.

Backs the signaling HTTP service and the test-suite.  Each subscription owns a
queue drained by its own task, so the events of one subscription are delivered
in order and never overlap.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..errors import DocumentNotFound, StoreUnavailable, already_set
from .base import AddedListener, DocumentListener, Fields, NegotiationStore, Subscription

LOG = logging.getLogger(__name__)

IdFactory = Callable[[], str]


def _default_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    rev: int
    fields: Fields

    def to_dict(self) -> dict:
        return {"id": self.id, "rev": int(self.rev), "fields": copy.deepcopy(self.fields)}


@dataclass
class _Document:
    fields: Fields = field(default_factory=dict)
    rev: int = 0
    subcollections: Dict[str, List[Tuple[str, Fields]]] = field(default_factory=dict)


class QueuedSubscription(Subscription):
    def __init__(
        self,
        listener: Callable[..., Awaitable[None]],
        *,
        on_cancel: Callable[["QueuedSubscription"], None],
        label: str,
    ) -> None:
        self._listener = listener
        self._on_cancel = on_cancel
        self._queue: "asyncio.Queue[Tuple[Any, ...]]" = asyncio.Queue()
        self._cancelled = False
        self._outstanding = 0
        self.label = label
        self._task = asyncio.get_running_loop().create_task(self._pump())

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def busy(self) -> bool:
        return not self._cancelled and self._outstanding > 0

    def push(self, *args: Any) -> None:
        if not self._cancelled:
            self._outstanding += 1
            self._queue.put_nowait(args)

    async def _pump(self) -> None:
        while not self._cancelled:
            args = await self._queue.get()
            try:
                await self._listener(*args)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOG.exception("Listener for %s failed", self.label)
            finally:
                self._outstanding -= 1
                self._queue.task_done()

    async def join(self) -> None:
        if self._cancelled:
            return
        await self._queue.join()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not asyncio.current_task():
            self._task.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._outstanding -= 1
            self._queue.task_done()
        self._on_cancel(self)


class InMemoryNegotiationStore(NegotiationStore):
    """
    Dictionary backed store.

    ``available`` can be switched off to simulate an outage: every operation
    then raises :class:`~peerlink.errors.StoreUnavailable`.
    """

    def __init__(self, *, id_factory: Optional[IdFactory] = None) -> None:
        self._collections: Dict[str, Dict[str, _Document]] = {}
        self._id_factory: IdFactory = id_factory or _default_id
        self._doc_listeners: Dict[Tuple[str, str], Set[QueuedSubscription]] = {}
        self._added_listeners: Dict[Tuple[str, str, str], Set[QueuedSubscription]] = {}
        self._subscriptions: Set[QueuedSubscription] = set()
        self.available = True

    # ------------------------------------------------------------------ helpers

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailable("store is unavailable")

    def _require(self, collection: str, doc_id: str) -> _Document:
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise DocumentNotFound(collection, doc_id)
        return document

    def _forget(self, subscription: QueuedSubscription) -> None:
        self._subscriptions.discard(subscription)
        for listeners in self._doc_listeners.values():
            listeners.discard(subscription)
        for listeners in self._added_listeners.values():
            listeners.discard(subscription)

    def _subscribe(self, listener: Callable[..., Awaitable[None]], label: str) -> QueuedSubscription:
        subscription = QueuedSubscription(listener, on_cancel=self._forget, label=label)
        self._subscriptions.add(subscription)
        return subscription

    # ------------------------------------------------------------------ store API

    async def create_document(self, collection: str) -> str:
        self._check_available()
        documents = self._collections.setdefault(collection, {})
        doc_id = self._id_factory()
        while doc_id in documents:
            doc_id = self._id_factory()
        documents[doc_id] = _Document()
        LOG.debug("Created %s/%s", collection, doc_id)
        return doc_id

    async def get_document(self, collection: str, doc_id: str) -> Optional[Fields]:
        self._check_available()
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            return None
        return copy.deepcopy(document.fields)

    async def set_fields(
        self,
        collection: str,
        doc_id: str,
        fields: Fields,
        *,
        only_if_absent: bool = False,
    ) -> None:
        self._check_available()
        document = self._require(collection, doc_id)
        if only_if_absent:
            for name in fields:
                if name in document.fields:
                    raise already_set(name, doc_id)
        document.fields.update(copy.deepcopy(fields))
        document.rev += 1
        for subscription in list(self._doc_listeners.get((collection, doc_id), ())):
            subscription.push(copy.deepcopy(document.fields))

    async def append(self, collection: str, doc_id: str, subcollection: str, fields: Fields) -> str:
        self._check_available()
        document = self._require(collection, doc_id)
        entries = document.subcollections.setdefault(subcollection, [])
        entry_id = uuid.uuid4().hex
        entries.append((entry_id, copy.deepcopy(fields)))
        for subscription in list(self._added_listeners.get((collection, doc_id, subcollection), ())):
            subscription.push(entry_id, copy.deepcopy(fields))
        return entry_id

    async def subscribe_document(
        self, collection: str, doc_id: str, listener: DocumentListener
    ) -> Subscription:
        self._check_available()
        document = self._require(collection, doc_id)
        subscription = self._subscribe(listener, f"{collection}/{doc_id}")
        self._doc_listeners.setdefault((collection, doc_id), set()).add(subscription)
        subscription.push(copy.deepcopy(document.fields))
        return subscription

    async def subscribe_added(
        self,
        collection: str,
        doc_id: str,
        subcollection: str,
        listener: AddedListener,
    ) -> Subscription:
        self._check_available()
        document = self._require(collection, doc_id)
        subscription = self._subscribe(listener, f"{collection}/{doc_id}/{subcollection}")
        self._added_listeners.setdefault((collection, doc_id, subcollection), set()).add(subscription)
        for entry_id, fields in document.subcollections.get(subcollection, []):
            subscription.push(entry_id, copy.deepcopy(fields))
        return subscription

    # ------------------------------------------------------------------ inspection

    def snapshot(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            return None
        return DocumentSnapshot(id=doc_id, rev=document.rev, fields=copy.deepcopy(document.fields))

    def entries(
        self, collection: str, doc_id: str, subcollection: str, offset: int = 0
    ) -> List[Tuple[str, Fields]]:
        document = self._require(collection, doc_id)
        items = document.subcollections.get(subcollection, [])
        return [(entry_id, copy.deepcopy(fields)) for entry_id, fields in items[max(0, int(offset)):]]

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def flush(self) -> None:
        """Wait until every queued event has been delivered."""

        for _ in range(64):
            pending = [sub for sub in self._subscriptions if sub.busy]
            if not pending:
                return
            for subscription in pending:
                await subscription.join()
            await asyncio.sleep(0)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()


__all__ = ["DocumentSnapshot", "InMemoryNegotiationStore", "QueuedSubscription"]
