"""
Process-local state machine for one call.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Set

from .errors import InvalidTransition, MediaUnavailable
from .rtc.webrtc import Candidate, SessionDescription

LOG = logging.getLogger(__name__)


class CallState(str, Enum):
    IDLE = "idle"
    LOCAL_MEDIA_READY = "local_media_ready"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class Role(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


_TRANSITIONS: Dict[CallState, FrozenSet[CallState]] = {
    CallState.IDLE: frozenset({CallState.LOCAL_MEDIA_READY, CallState.CLOSED}),
    CallState.LOCAL_MEDIA_READY: frozenset({CallState.NEGOTIATING, CallState.CLOSED}),
    CallState.NEGOTIATING: frozenset({CallState.CONNECTED, CallState.CLOSED}),
    CallState.CONNECTED: frozenset({CallState.CLOSED}),
    CallState.CLOSED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """
    Immutable view of a session handed to observers.
    """

    state: CallState
    role: Optional[Role]
    call_id: Optional[str]
    remote_description_applied: bool
    closed_reason: Optional[BaseException] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "role": self.role.value if self.role else None,
            "callId": self.call_id,
            "remoteDescriptionApplied": bool(self.remote_description_applied),
            "closedReason": str(self.closed_reason) if self.closed_reason else None,
        }


class CallSession:
    """
    Negotiation state owned by exactly one coordinator.

    The session never talks to the store or the endpoint itself; it records
    what the coordinator did and refuses transitions that the call lifecycle
    does not allow.
    """

    def __init__(self) -> None:
        self._state = CallState.IDLE
        self.role: Optional[Role] = None
        self.call_id: Optional[str] = None
        self.local_description: Optional[SessionDescription] = None
        self.remote_description: Optional[SessionDescription] = None
        self.description_published = False
        # Set once create_call/join_call finished every step, subscriptions included.
        self.protocol_complete = False
        self.closed_reason: Optional[BaseException] = None

        self.local_tracks: List[Any] = []
        self.remote_tracks: List[Any] = []

        # Local candidates discovered but not yet written to the store.
        self.pending_local_candidates: "asyncio.Queue[Candidate]" = asyncio.Queue()
        # Remote candidates that arrived before the remote description.
        self.pending_remote_candidates: Deque[Candidate] = deque()
        self.applied_candidate_keys: Set[str] = set()

        self._observer_counter = 0
        self._observers: Dict[int, Callable[[SessionSnapshot], None]] = {}

    # ------------------------------------------------------------------ helpers

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def remote_description_applied(self) -> bool:
        return self.remote_description is not None

    @property
    def is_closed(self) -> bool:
        return self._state is CallState.CLOSED

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            role=self.role,
            call_id=self.call_id,
            remote_description_applied=self.remote_description_applied,
            closed_reason=self.closed_reason,
        )

    def _transition(self, target: CallState) -> SessionSnapshot:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransition(f"cannot move from {self._state.value} to {target.value}")
        LOG.debug("Call %s: %s -> %s", self.call_id or "-", self._state.value, target.value)
        self._state = target
        snapshot = self.snapshot()
        self._notify(snapshot)
        return snapshot

    def _notify(self, snapshot: SessionSnapshot) -> None:
        for token, callback in list(self._observers.items()):
            try:
                callback(snapshot)
            except Exception:  # pragma: no cover - observer failures must not break the session
                LOG.exception("Session observer %s failed.", token)

    def require(self, *states: CallState) -> None:
        if self._state not in states:
            expected = ", ".join(state.value for state in states)
            raise InvalidTransition(f"session is {self._state.value}, expected {expected}")

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: Callable[[SessionSnapshot], None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    # ------------------------------------------------------------------ lifecycle

    def media_ready(self, tracks: Iterable[Any]) -> SessionSnapshot:
        collected = list(tracks or [])
        self.require(CallState.IDLE)
        if not collected:
            raise MediaUnavailable("capture layer returned no tracks")
        self.local_tracks = collected
        return self._transition(CallState.LOCAL_MEDIA_READY)

    def begin_negotiation(self, role: Role, call_id: str) -> SessionSnapshot:
        self.role = role
        self.call_id = call_id
        return self._transition(CallState.NEGOTIATING)

    def mark_connected(self) -> Optional[SessionSnapshot]:
        if self._state is CallState.CONNECTED:
            return None
        return self._transition(CallState.CONNECTED)

    def close(self, reason: Optional[BaseException] = None) -> bool:
        if self._state is CallState.CLOSED:
            return False
        self.closed_reason = reason
        self._transition(CallState.CLOSED)
        return True

    # ------------------------------------------------------------------ candidates

    def admit_remote_candidate(self, key: str) -> bool:
        """
        Record a remote candidate key.  ``False`` when it was seen before.
        """

        if key in self.applied_candidate_keys:
            return False
        self.applied_candidate_keys.add(key)
        return True

    def buffer_remote_candidate(self, candidate: Candidate) -> None:
        self.pending_remote_candidates.append(candidate)

    def take_buffered_candidates(self) -> List[Candidate]:
        buffered = list(self.pending_remote_candidates)
        self.pending_remote_candidates.clear()
        return buffered


__all__ = ["CallSession", "CallState", "Role", "SessionSnapshot"]
