"""Tests covering negotiation artefacts, ICE configuration and the candidate channel."""

from __future__ import annotations

import asyncio

import pytest

from peerlink.rtc.channel import CandidateChannel
from peerlink.rtc.ice import IceConfig
from peerlink.rtc.webrtc import Candidate, DescriptionKind, SessionDescription


def test_ice_config_to_dict() -> None:
    config = IceConfig.from_dict(
        {
            "candidate_pool_size": 4,
            "servers": [
                {"urls": "stun:stun.example.com:3478"},
                {"urls": ["turn:turn.example.com"], "username": "u", "credential": "p"},
            ],
        }
    )

    payload = config.to_dict()

    assert payload["iceCandidatePoolSize"] == 4
    assert payload["iceServers"][0] == {"urls": ["stun:stun.example.com:3478"]}
    assert payload["iceServers"][1]["credential"] == "p"
    assert config.iter_urls() == ["stun:stun.example.com:3478", "turn:turn.example.com"]
    assert IceConfig.from_dict(None).candidate_pool_size == 10


def test_session_description_accepts_browser_shape() -> None:
    description = SessionDescription.from_dict({"type": "answer", "sdp": "v=0"})

    assert description.kind is DescriptionKind.ANSWER
    assert description.to_dict() == {"kind": "answer", "payload": "v=0"}
    with pytest.raises(ValueError):
        SessionDescription.from_dict({"kind": "pranswer", "payload": "v=0"})
    with pytest.raises(ValueError):
        SessionDescription.from_dict({"kind": "offer"})


def test_candidate_fields_must_be_scalars() -> None:
    candidate = Candidate.from_ice("candidate:1 1 udp 1 10.0.0.1 5000 typ host", "0", 0)

    assert candidate.sdp_mid == "0"
    assert candidate.sdp_mline_index == 0
    assert candidate.key() == Candidate.from_mapping(candidate.to_dict()).key()
    with pytest.raises(ValueError):
        Candidate.from_mapping({"candidate": ["not", "scalar"]})
    with pytest.raises(ValueError):
        Candidate.from_mapping({1: "numeric key"})


def test_candidate_channel_forwards_in_order(make_endpoint, make_candidate) -> None:
    async def scenario() -> None:
        endpoint = make_endpoint("A")
        channel = CandidateChannel(endpoint)
        forwarded = []

        async def sink(candidate: Candidate) -> None:
            await asyncio.sleep(0)
            forwarded.append(candidate.sdp_mid)

        # Discovered before a sink exists: held in the queue.
        endpoint.discover(make_candidate(1, "x"))
        channel.on_local_candidate(sink)
        endpoint.discover(make_candidate(2, "y"))
        endpoint.discover(None)
        endpoint.discover(make_candidate(3, "z"))
        await channel.drain()

        assert forwarded == ["x0", "y0", "z0"]
        assert channel.gathering_complete is True
        assert channel.pending == 0

        await channel.close()
        endpoint.discover(make_candidate(4, "w"))
        assert channel.pending == 0
        with pytest.raises(RuntimeError):
            channel.on_local_candidate(sink)

    asyncio.run(scenario())


def test_aiortc_endpoint_negotiates_without_trickle() -> None:
    pytest.importorskip("aiortc")
    from peerlink.rtc.endpoint import AiortcEndpoint

    async def scenario() -> None:
        caller = AiortcEndpoint(IceConfig(servers=[]))
        callee = AiortcEndpoint(IceConfig(servers=[]))
        completions = []
        caller.on_local_candidate(completions.append)

        caller.peer_connection.createDataChannel("chat")
        offer = await caller.create_offer()
        await caller.set_local_description(offer)
        assert completions == [None]

        published = caller.local_description
        assert published is not None and published.kind is DescriptionKind.OFFER
        await callee.set_remote_description(published)
        answer = await callee.create_answer()
        await callee.set_local_description(answer)
        await caller.set_remote_description(callee.local_description)

        # End-of-candidates markers are ignored.
        await caller.add_remote_candidate(Candidate.from_ice("", None, None))

        await caller.close()
        await callee.close()

    asyncio.run(scenario())
