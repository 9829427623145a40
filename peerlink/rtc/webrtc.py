"""
Negotiation artefacts exchanged between the two peers of a call.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

Scalar = Union[str, int, float, bool, None]

_SCALAR_TYPES = (str, int, float, bool, type(None))


class DescriptionKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"


@dataclass(frozen=True)
class SessionDescription:
    """
    Opaque session description.  The payload is never interpreted here.
    """

    kind: DescriptionKind
    payload: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionDescription":
        """
        Build a description from its stored shape.

        Browser-style ``{"type", "sdp"}`` mappings are accepted as well.
        """

        if not isinstance(data, Mapping):
            raise ValueError("session description must be a mapping")
        kind = data.get("kind", data.get("type"))
        payload = data.get("payload", data.get("sdp"))
        if payload is None or not isinstance(payload, str):
            raise ValueError("session description payload must be a string")
        try:
            resolved = DescriptionKind(str(kind or "").lower())
        except ValueError:
            raise ValueError(f"unknown session description kind {kind!r}") from None
        return cls(kind=resolved, payload=payload)

    @classmethod
    def offer(cls, payload: str) -> "SessionDescription":
        return cls(kind=DescriptionKind.OFFER, payload=payload)

    @classmethod
    def answer(cls, payload: str) -> "SessionDescription":
        return cls(kind=DescriptionKind.ANSWER, payload=payload)


@dataclass(frozen=True)
class Candidate:
    """Serialisable network path candidate.  Only forwarded, never interpreted."""

    fields: Dict[str, Scalar] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for key, value in self.fields.items():
            if not isinstance(key, str):
                raise ValueError(f"candidate keys must be strings, got {key!r}")
            if not isinstance(value, _SCALAR_TYPES):
                raise ValueError(f"candidate field '{key}' is not a scalar")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Candidate":
        if not isinstance(data, Mapping):
            raise ValueError("candidate must be a mapping")
        return cls(fields=dict(data))

    @classmethod
    def from_ice(
        cls,
        candidate: str,
        sdp_mid: Optional[str] = None,
        sdp_mline_index: Optional[int] = None,
    ) -> "Candidate":
        return cls(
            fields={
                "candidate": candidate,
                "sdpMid": sdp_mid,
                "sdpMLineIndex": sdp_mline_index,
            }
        )

    @property
    def candidate(self) -> Optional[str]:
        value = self.fields.get("candidate")
        return str(value) if value is not None else None

    @property
    def sdp_mid(self) -> Optional[str]:
        value = self.fields.get("sdpMid")
        return str(value) if value is not None else None

    @property
    def sdp_mline_index(self) -> Optional[int]:
        value = self.fields.get("sdpMLineIndex")
        return int(value) if value is not None else None

    def to_dict(self) -> Dict[str, Scalar]:
        return dict(self.fields)

    def key(self) -> str:
        """Canonical form used to recognise a redelivered candidate."""

        return json.dumps(self.fields, sort_keys=True, separators=(",", ":"))


__all__ = ["Candidate", "DescriptionKind", "Scalar", "SessionDescription"]
