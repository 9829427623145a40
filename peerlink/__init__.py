"""
peerlink: peer-to-peer call negotiation over a shared document store.

Two peers exchange an offer, an answer and their network path candidates
through a store; :class:`peerlink.coordinator.NegotiationCoordinator` drives
the exchange for one side of one call.
"""

from __future__ import annotations

from typing import Optional

from .rtc.ice import IceConfig

__all__ = [
    "PeerConfig",
]

DEFAULT_STORE_URL = "http://127.0.0.1:8080"


class PeerConfig:
    """Top level configuration shared by the service and the clients."""

    def __init__(
        self,
        profile: str = "default",
        *,
        ice: Optional[IceConfig] = None,
        store_url: str = DEFAULT_STORE_URL,
        poll_interval: float = 0.25,
    ) -> None:
        self.profile = profile
        self.ice = ice or IceConfig()
        self.store_url = store_url
        self.poll_interval = max(0.01, float(poll_interval))
