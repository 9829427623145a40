"""Shared fakes for the negotiation tests."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import pytest

from peerlink.rtc.endpoint import ConnectionEndpoint
from peerlink.rtc.webrtc import Candidate, DescriptionKind, SessionDescription
from peerlink.store.memory import InMemoryNegotiationStore


class FakeEndpoint(ConnectionEndpoint):
    """
    Scripted connection endpoint.

    Emits ``local_candidates`` when the local description is applied, rejects
    remote candidates before a remote description exists (like a browser) and
    reports ``connected`` once both descriptions are in place.
    """

    def __init__(
        self,
        name: str = "A",
        *,
        local_candidates: Optional[List[Candidate]] = None,
        auto_connect: bool = True,
        before_answer: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self.name = name
        self.local_candidates = list(local_candidates or [])
        self.auto_connect = auto_connect
        self.before_answer = before_answer
        self.local_tracks: List[Any] = []
        self.local: Optional[SessionDescription] = None
        self.remote: Optional[SessionDescription] = None
        self.remote_description_calls: List[SessionDescription] = []
        self.applied_candidates: List[Candidate] = []
        self.offers_created = 0
        self.answers_created = 0
        self.closed = False
        self._candidate_handlers: List[Callable[[Optional[Candidate]], None]] = []
        self._state_handlers: List[Callable[[str], None]] = []
        self._track_handlers: List[Callable[[Any], None]] = []

    def add_local_track(self, track: Any) -> None:
        self.local_tracks.append(track)

    def on_remote_track(self, handler: Callable[[Any], None]) -> None:
        self._track_handlers.append(handler)

    def on_local_candidate(self, handler: Callable[[Optional[Candidate]], None]) -> None:
        self._candidate_handlers.append(handler)

    def on_connection_state_change(self, handler: Callable[[str], None]) -> None:
        self._state_handlers.append(handler)

    async def create_offer(self) -> SessionDescription:
        self.offers_created += 1
        return SessionDescription.offer(f"sdp-{self.name}")

    async def create_answer(self) -> SessionDescription:
        if self.remote is None or self.remote.kind is not DescriptionKind.OFFER:
            raise RuntimeError("cannot answer without a remote offer")
        if self.before_answer is not None:
            await self.before_answer()
        self.answers_created += 1
        return SessionDescription.answer(f"sdp-{self.name}")

    async def set_local_description(self, description: SessionDescription) -> None:
        self.local = description
        for candidate in self.local_candidates:
            self.discover(candidate)
        self.discover(None)
        self._maybe_connect()

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.remote = description
        self.remote_description_calls.append(description)
        self._maybe_connect()

    async def add_remote_candidate(self, candidate: Candidate) -> None:
        if self.remote is None:
            raise RuntimeError("remote description not set")
        self.applied_candidates.append(candidate)

    async def close(self) -> None:
        self.closed = True
        self.emit_state("closed")

    # test helpers

    def discover(self, candidate: Optional[Candidate]) -> None:
        for handler in list(self._candidate_handlers):
            handler(candidate)

    def emit_state(self, state: str) -> None:
        for handler in list(self._state_handlers):
            handler(state)

    def emit_track(self, track: Any) -> None:
        for handler in list(self._track_handlers):
            handler(track)

    def _maybe_connect(self) -> None:
        if self.auto_connect and self.local is not None and self.remote is not None:
            self.emit_state("connected")


def candidate(index: int, side: str = "a") -> Candidate:
    return Candidate.from_ice(
        f"candidate:{index} 1 udp {2122260223 - index} 10.0.0.{index} {50000 + index} typ host",
        sdp_mid=f"{side}0",
        sdp_mline_index=0,
    )


async def settle(store: InMemoryNegotiationStore, *coordinators: Any) -> None:
    """Let every queued store event, candidate and endpoint callback run."""

    for _ in range(10):
        for coordinator in coordinators:
            await coordinator.drain()
        await store.flush()
        await asyncio.sleep(0)


@pytest.fixture
def make_endpoint() -> Callable[..., FakeEndpoint]:
    return FakeEndpoint


@pytest.fixture
def make_candidate() -> Callable[..., Candidate]:
    return candidate


@pytest.fixture
def settle_all() -> Callable[..., Awaitable[None]]:
    return settle
