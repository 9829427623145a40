"""Tests covering the HTTP store client against the signaling app."""

from __future__ import annotations

import asyncio
from typing import Callable

import httpx
import pytest

from peerlink.api.server import create_app
from peerlink.coordinator import NegotiationCoordinator
from peerlink.errors import DocumentNotFound, OfferAlreadySet, StoreUnavailable
from peerlink.session import CallState
from peerlink.store.http import HttpNegotiationStore
from peerlink.store.memory import InMemoryNegotiationStore

OFFER = {"kind": "offer", "payload": "sdp-A"}


def make_client() -> httpx.AsyncClient:
    app = create_app(store=InMemoryNegotiationStore())
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://peerlink.test")


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def test_document_operations() -> None:
    async def scenario() -> None:
        async with make_client() as client:
            store = HttpNegotiationStore(client=client, poll_interval=0.01)
            call_id = await store.create_document("calls")

            assert await store.get_document("calls", call_id) == {}
            assert await store.get_document("calls", "missing") is None

            await store.set_fields("calls", call_id, {"offer": OFFER}, only_if_absent=True)
            with pytest.raises(OfferAlreadySet) as excinfo:
                await store.set_fields("calls", call_id, {"offer": OFFER}, only_if_absent=True)
            assert excinfo.value.field == "offer"
            assert excinfo.value.doc_id == call_id

            with pytest.raises(DocumentNotFound):
                await store.set_fields("calls", "missing", {"offer": OFFER})
            with pytest.raises(DocumentNotFound):
                await store.append("calls", "missing", "offerCandidates", {"candidate": "c1"})

            await store.close()

    asyncio.run(scenario())


def test_polling_subscriptions() -> None:
    async def scenario() -> None:
        async with make_client() as client:
            store = HttpNegotiationStore(client=client, poll_interval=0.01)
            call_id = await store.create_document("calls")
            await store.append("calls", call_id, "offerCandidates", {"candidate": "c1"})

            documents = []
            added = []

            async def on_document(fields) -> None:
                documents.append(fields)

            async def on_added(entry_id, fields) -> None:
                added.append(fields["candidate"])

            doc_subscription = await store.subscribe_document("calls", call_id, on_document)
            await store.subscribe_added("calls", call_id, "offerCandidates", on_added)
            await store.set_fields("calls", call_id, {"offer": OFFER})
            await store.append("calls", call_id, "offerCandidates", {"candidate": "c2"})

            await wait_until(lambda: documents[-1:] == [{"offer": OFFER}] and added == ["c1", "c2"])
            assert documents[0] in ({}, {"offer": OFFER})
            assert store.active_subscriptions == 2

            doc_subscription.cancel()
            assert store.active_subscriptions == 1
            await store.close()
            assert store.active_subscriptions == 0

    asyncio.run(scenario())


def test_negotiation_over_http(make_endpoint, make_candidate) -> None:
    async def scenario() -> None:
        async with make_client() as client:
            caller_store = HttpNegotiationStore(client=client, poll_interval=0.01)
            callee_store = HttpNegotiationStore(client=client, poll_interval=0.01)
            caller_endpoint = make_endpoint("A", local_candidates=[make_candidate(1, "a")])
            callee_endpoint = make_endpoint("B", local_candidates=[make_candidate(2, "b")])
            caller = NegotiationCoordinator(caller_store, caller_endpoint)
            callee = NegotiationCoordinator(callee_store, callee_endpoint)
            await caller.start_local_media(lambda: ["camera"])
            await callee.start_local_media(lambda: ["camera"])

            call_id = await caller.create_call()
            await callee.join_call(call_id)

            await wait_until(
                lambda: caller.state is CallState.CONNECTED
                and callee.state is CallState.CONNECTED
                and len(caller_endpoint.applied_candidates) == 1
                and len(callee_endpoint.applied_candidates) == 1
            )
            assert caller_endpoint.remote.payload == "sdp-B"
            assert callee_endpoint.applied_candidates == [make_candidate(1, "a")]

            await caller.hangup()
            await callee.hangup()
            assert caller_store.active_subscriptions == 0
            assert callee_store.active_subscriptions == 0

    asyncio.run(scenario())


def test_transport_failures_map_to_store_unavailable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def overloaded(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "busy"})

    async def scenario() -> None:
        for handler in (refuse, overloaded):
            async with httpx.AsyncClient(
                transport=httpx.MockTransport(handler), base_url="http://peerlink.test"
            ) as client:
                store = HttpNegotiationStore(client=client)
                with pytest.raises(StoreUnavailable):
                    await store.create_document("calls")

    asyncio.run(scenario())
