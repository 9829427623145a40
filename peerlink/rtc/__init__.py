"""
WebRTC helpers.
"""

from __future__ import annotations

from .channel import CandidateChannel
from .endpoint import AiortcEndpoint, ConnectionEndpoint
from .ice import IceConfig, IceServer
from .webrtc import Candidate, DescriptionKind, SessionDescription

__all__ = [
    "AiortcEndpoint",
    "Candidate",
    "CandidateChannel",
    "ConnectionEndpoint",
    "DescriptionKind",
    "IceConfig",
    "IceServer",
    "SessionDescription",
]
