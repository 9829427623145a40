"""
Document store contract used for negotiation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

Fields = Dict[str, Any]
DocumentListener = Callable[[Fields], Awaitable[None]]
AddedListener = Callable[[str, Fields], Awaitable[None]]


class Subscription(ABC):
    """Handle for a long-lived store listener."""

    @abstractmethod
    def cancel(self) -> None: ...

    @property
    @abstractmethod
    def cancelled(self) -> bool: ...


class NegotiationStore(ABC):
    """
    Generic key-document store with per-document append-only sub-collections.

    Every operation may raise :class:`~peerlink.errors.StoreUnavailable`.
    Listeners are coroutine functions; a store delivers the events of one
    subscription one after the other, never concurrently.
    """

    @abstractmethod
    async def create_document(self, collection: str) -> str:
        """Allocate an empty document and return its generated id."""

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Fields]:
        """Read a document once.  ``None`` when it does not exist."""

    @abstractmethod
    async def set_fields(
        self,
        collection: str,
        doc_id: str,
        fields: Fields,
        *,
        only_if_absent: bool = False,
    ) -> None:
        """
        Merge ``fields`` into the document as one atomic write.

        With ``only_if_absent`` the write is rejected with
        :class:`~peerlink.errors.AlreadySet` if any of the fields is already
        present, and nothing is written.
        """

    @abstractmethod
    async def append(self, collection: str, doc_id: str, subcollection: str, fields: Fields) -> str:
        """Append an entry to a sub-collection and return its entry id."""

    @abstractmethod
    async def subscribe_document(
        self, collection: str, doc_id: str, listener: DocumentListener
    ) -> Subscription:
        """Deliver the current fields, then the fields after every change."""

    @abstractmethod
    async def subscribe_added(
        self,
        collection: str,
        doc_id: str,
        subcollection: str,
        listener: AddedListener,
    ) -> Subscription:
        """Deliver every existing entry, then every entry added later."""


__all__ = [
    "AddedListener",
    "DocumentListener",
    "Fields",
    "NegotiationStore",
    "Subscription",
]
