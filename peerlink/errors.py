"""
Error taxonomy for call negotiation.
"""

from __future__ import annotations

from typing import Optional


class NegotiationError(RuntimeError):
    """Base class for negotiation related errors."""


class InvalidTransition(NegotiationError):
    """Raised when an operation is requested in a state that does not allow it."""


class MediaUnavailable(NegotiationError):
    """Raised when the capture layer cannot provide local tracks."""


class CallNotFound(NegotiationError):
    """Raised when a call id does not resolve to a call document."""

    def __init__(self, call_id: str) -> None:
        super().__init__(f"call '{call_id}' not found")
        self.call_id = call_id


class OfferMissing(NegotiationError):
    """Raised when joining a call that has no offer yet."""

    def __init__(self, call_id: str) -> None:
        super().__init__(f"call '{call_id}' has no offer")
        self.call_id = call_id


class AlreadySet(NegotiationError):
    """Raised when a set-once field is written a second time."""

    def __init__(self, field: str, doc_id: Optional[str] = None) -> None:
        target = f" on '{doc_id}'" if doc_id else ""
        super().__init__(f"field '{field}' already set{target}")
        self.field = field
        self.doc_id = doc_id


class OfferAlreadySet(AlreadySet):
    """A call can only have one offerer."""

    def __init__(self, doc_id: Optional[str] = None) -> None:
        super().__init__("offer", doc_id)


class AnswerAlreadySet(AlreadySet):
    """A call can only have one answerer."""

    def __init__(self, doc_id: Optional[str] = None) -> None:
        super().__init__("answer", doc_id)


def already_set(field: str, doc_id: Optional[str] = None) -> AlreadySet:
    """Build the most specific :class:`AlreadySet` error for ``field``."""

    if field == "offer":
        return OfferAlreadySet(doc_id)
    if field == "answer":
        return AnswerAlreadySet(doc_id)
    return AlreadySet(field, doc_id)


class StoreError(NegotiationError):
    """Base class for store failures."""


class StoreUnavailable(StoreError):
    """Transient store failure. Never retried internally."""


class DocumentNotFound(StoreError):
    """Raised when a store operation targets a missing document."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} does not exist")
        self.collection = collection
        self.doc_id = doc_id


class RemoteUnreachable(NegotiationError):
    """
    Close reason recorded when the connection endpoint reports the remote
    side as permanently gone.  Surfaced through state-change events, not raised.
    """

    def __init__(self, connection_state: str) -> None:
        super().__init__(f"remote unreachable (connection state '{connection_state}')")
        self.connection_state = connection_state


__all__ = [
    "AlreadySet",
    "AnswerAlreadySet",
    "CallNotFound",
    "DocumentNotFound",
    "InvalidTransition",
    "MediaUnavailable",
    "NegotiationError",
    "OfferAlreadySet",
    "OfferMissing",
    "RemoteUnreachable",
    "StoreError",
    "StoreUnavailable",
    "already_set",
]
