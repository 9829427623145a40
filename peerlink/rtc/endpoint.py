"""
Local connection endpoint contract and the aiortc-backed implementation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from .ice import IceConfig
from .webrtc import Candidate, SessionDescription

LOG = logging.getLogger(__name__)

LocalCandidateHandler = Callable[[Optional[Candidate]], None]
ConnectionStateHandler = Callable[[str], None]
RemoteTrackHandler = Callable[[Any], None]

CONNECTED_STATES = frozenset({"connected"})
TERMINAL_STATES = frozenset({"failed", "closed"})


class ConnectionEndpoint(ABC):
    """
    The media/transport capability a coordinator drives.

    Handlers registered through the ``on_*`` methods are plain callables
    invoked on the event loop.  ``on_local_candidate`` receives ``None`` once
    discovery reports completion.
    """

    @abstractmethod
    def add_local_track(self, track: Any) -> None: ...

    @abstractmethod
    def on_remote_track(self, handler: RemoteTrackHandler) -> None: ...

    @abstractmethod
    def on_local_candidate(self, handler: LocalCandidateHandler) -> None: ...

    @abstractmethod
    def on_connection_state_change(self, handler: ConnectionStateHandler) -> None: ...

    @abstractmethod
    async def create_offer(self) -> SessionDescription: ...

    @abstractmethod
    async def create_answer(self) -> SessionDescription: ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None: ...

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None: ...

    @abstractmethod
    async def add_remote_candidate(self, candidate: Candidate) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @property
    def local_description(self) -> Optional[SessionDescription]:
        """
        Local description as currently applied.  Endpoints that embed gathered
        candidates into it return the enriched version.
        """

        return None


class AiortcEndpoint(ConnectionEndpoint):
    """
    ``RTCPeerConnection`` wrapper.

    aiortc gathers candidates while applying the local description and embeds
    them into the SDP, so discovery reports completion without yielding any
    individual candidate.  Negotiation still completes on descriptions alone.
    """

    def __init__(self, ice: Optional[IceConfig] = None) -> None:
        from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection

        self.ice = ice or IceConfig()
        servers = [
            RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
            for server in self.ice.servers
        ]
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))
        self._candidate_handlers: List[LocalCandidateHandler] = []
        self._state_handlers: List[ConnectionStateHandler] = []
        self._track_handlers: List[RemoteTrackHandler] = []

        self._pc.on("track", self._handle_track)
        self._pc.on("connectionstatechange", self._handle_connection_state)

    @property
    def peer_connection(self) -> Any:
        return self._pc

    @property
    def local_description(self) -> Optional[SessionDescription]:
        current = self._pc.localDescription
        if current is None:
            return None
        return SessionDescription.from_dict({"type": current.type, "sdp": current.sdp})

    def _handle_track(self, track: Any) -> None:
        for handler in list(self._track_handlers):
            handler(track)

    def _handle_connection_state(self) -> None:
        state = str(self._pc.connectionState)
        LOG.debug("connection state -> %s", state)
        for handler in list(self._state_handlers):
            handler(state)

    def add_local_track(self, track: Any) -> None:
        self._pc.addTrack(track)

    def on_remote_track(self, handler: RemoteTrackHandler) -> None:
        self._track_handlers.append(handler)

    def on_local_candidate(self, handler: LocalCandidateHandler) -> None:
        self._candidate_handlers.append(handler)

    def on_connection_state_change(self, handler: ConnectionStateHandler) -> None:
        self._state_handlers.append(handler)

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription.offer(offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription.answer(answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        from aiortc import RTCSessionDescription

        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description.payload, type=description.kind.value)
        )
        # Gathering finished as part of setLocalDescription.
        for handler in list(self._candidate_handlers):
            handler(None)

    async def set_remote_description(self, description: SessionDescription) -> None:
        from aiortc import RTCSessionDescription

        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.payload, type=description.kind.value)
        )

    async def add_remote_candidate(self, candidate: Candidate) -> None:
        from aiortc.sdp import candidate_from_sdp

        raw = candidate.candidate
        if not raw:
            # End-of-candidates marker.
            return
        if raw.startswith("candidate:"):
            raw = raw.split(":", 1)[1]
        parsed = candidate_from_sdp(raw)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    async def close(self) -> None:
        await self._pc.close()


__all__ = [
    "AiortcEndpoint",
    "CONNECTED_STATES",
    "ConnectionEndpoint",
    "ConnectionStateHandler",
    "LocalCandidateHandler",
    "RemoteTrackHandler",
    "TERMINAL_STATES",
]
