"""
ICE server configuration handed to the connection endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_STUN_URLS = (
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)


@dataclass
class IceServer:
    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"urls": list(self.urls)}
        if self.username:
            payload["username"] = self.username
        if self.credential:
            payload["credential"] = self.credential
        return payload


@dataclass
class IceConfig:
    """
    STUN/TURN endpoints used for candidate discovery.

    The servers are external, pre-configured endpoints; this class only carries
    their addresses to whichever endpoint implementation is in use.
    """

    servers: List[IceServer] = field(
        default_factory=lambda: [IceServer(urls=list(DEFAULT_STUN_URLS))]
    )
    candidate_pool_size: int = 10

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "IceConfig":
        if not data:
            return cls()
        servers: List[IceServer] = []
        for entry in data.get("servers") or []:
            urls = entry.get("urls") or []
            if isinstance(urls, str):
                urls = [urls]
            servers.append(
                IceServer(
                    urls=[str(url) for url in urls],
                    username=entry.get("username"),
                    credential=entry.get("credential"),
                )
            )
        pool_size = data.get("candidate_pool_size", data.get("iceCandidatePoolSize", 10))
        return cls(servers=servers, candidate_pool_size=max(0, int(pool_size)))

    def iter_urls(self) -> List[str]:
        return [url for server in self.servers for url in server.urls]

    def to_dict(self) -> Dict[str, object]:
        """
        Return the browser-style configuration mapping.
        """

        return {
            "iceServers": [server.to_dict() for server in self.servers],
            "iceCandidatePoolSize": int(self.candidate_pool_size),
        }
