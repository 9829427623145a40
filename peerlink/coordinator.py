"""
Offer/answer negotiation driven through a shared document store.

A caller allocates a call document, publishes its offer and waits for an
answer; a callee reads the offer, publishes an answer.  Both sides forward
their own candidates to a per-direction sub-collection and apply the other
side's candidates as they are added.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, TypeVar, Union

from .errors import (
    AlreadySet,
    AnswerAlreadySet,
    CallNotFound,
    InvalidTransition,
    MediaUnavailable,
    OfferAlreadySet,
    OfferMissing,
    RemoteUnreachable,
)
from .rtc.channel import CandidateChannel
from .rtc.endpoint import CONNECTED_STATES, TERMINAL_STATES, ConnectionEndpoint, RemoteTrackHandler
from .rtc.webrtc import Candidate, SessionDescription
from .session import CallSession, CallState, Role, SessionSnapshot
from .store.base import Fields, NegotiationStore, Subscription

LOG = logging.getLogger(__name__)

CALLS_COLLECTION = "calls"
OFFER_CANDIDATES = "offerCandidates"
ANSWER_CANDIDATES = "answerCandidates"

T = TypeVar("T")

TrackSource = Callable[[], Union[Iterable[Any], Awaitable[Iterable[Any]]]]


class NegotiationCoordinator:
    """
    Drive one call session end-to-end.

    Public methods and every store/endpoint callback run under one lock, so
    callbacks for this session never interleave with each other or with a
    protocol step in progress.  Each protocol step runs as its own task so
    :meth:`hangup` can cancel it before taking the lock.
    """

    def __init__(
        self,
        store: NegotiationStore,
        endpoint: ConnectionEndpoint,
        *,
        collection: str = CALLS_COLLECTION,
    ) -> None:
        self.store = store
        self.endpoint = endpoint
        self.collection = collection
        self.session = CallSession()
        self.logger = LOG.getChild(uuid.uuid4().hex[:8])
        self.channel = CandidateChannel(
            endpoint, queue=self.session.pending_local_candidates, logger=self.logger
        )

        self._lock = asyncio.Lock()
        self._subscriptions: Dict[str, Subscription] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._steps: Set[asyncio.Task] = set()
        self._hung_up = False
        self._candidate_target: Optional[str] = None
        self._remote_track_handlers: List[RemoteTrackHandler] = []

        endpoint.on_remote_track(self._handle_remote_track)
        endpoint.on_connection_state_change(self._handle_connection_state)

    # ------------------------------------------------------------------ properties

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def call_id(self) -> Optional[str]:
        return self.session.call_id

    @property
    def active_subscriptions(self) -> List[str]:
        return sorted(self._subscriptions)

    # ------------------------------------------------------------------ observers

    def on_state_change(self, callback: Callable[[SessionSnapshot], None]) -> int:
        return self.session.subscribe(callback)

    def off_state_change(self, token: int) -> None:
        self.session.unsubscribe(token)

    def on_remote_track(self, handler: RemoteTrackHandler) -> None:
        self._remote_track_handlers.append(handler)
        for track in self.session.remote_tracks:
            handler(track)

    # ------------------------------------------------------------------ public API

    async def start_local_media(self, source: TrackSource) -> SessionSnapshot:
        """
        Acquire local tracks from ``source`` and attach them to the endpoint.

        Capture failures are fatal: the session is closed and
        :class:`MediaUnavailable` is raised.
        """

        return await self._run_step(self._start_local_media(source))

    async def create_call(self) -> str:
        """
        Start a call as the offerer and return its id.

        After a :class:`~peerlink.errors.StoreUnavailable` failure the same
        method can be called again; completed steps are not repeated.
        """

        return await self._run_step(self._create_call())

    async def join_call(self, call_id: str) -> None:
        """
        Answer the call stored at ``call_id``.

        Raises :class:`CallNotFound` or :class:`OfferMissing` before anything
        is written to the store.  Resumable like :meth:`create_call`.
        """

        await self._run_step(self._join_call(call_id))

    async def hangup(self) -> None:
        """
        Cancel every listener, release the endpoint and close the session.

        A protocol step still in flight is cancelled first and fails with
        :class:`InvalidTransition`.
        """

        self._hung_up = True
        current = asyncio.current_task()
        for step in list(self._steps):
            if step is not current:
                step.cancel()
        async with self._lock:
            await self._shutdown(None)

    async def drain(self) -> None:
        """Wait for queued local candidates and pending endpoint events."""

        await self.channel.drain()
        pending = [task for task in self._tasks if task is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------ protocol steps

    async def _run_step(self, step: Awaitable[T]) -> T:
        task = asyncio.ensure_future(step)
        self._steps.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._hung_up and task.cancelled():
                raise InvalidTransition("call was hung up") from None
            raise
        finally:
            self._steps.discard(task)

    async def _start_local_media(self, source: TrackSource) -> SessionSnapshot:
        async with self._lock:
            self.session.require(CallState.IDLE)
            try:
                result = source()
                if inspect.isawaitable(result):
                    result = await result
                snapshot = self.session.media_ready(result or [])
            except MediaUnavailable as exc:
                await self._shutdown(exc)
                raise
            except Exception as exc:
                error = MediaUnavailable(f"local capture failed: {exc}")
                await self._shutdown(error)
                raise error from exc
            for track in self.session.local_tracks:
                self.endpoint.add_local_track(track)
            self.logger.info("Local media ready (%d tracks)", len(self.session.local_tracks))
            return snapshot

    async def _create_call(self) -> str:
        async with self._lock:
            session = self.session
            if session.is_closed:
                raise InvalidTransition("session is closed")
            if session.role is Role.CALLEE:
                raise InvalidTransition("session already joined a call as callee")
            if session.role is Role.CALLER and session.protocol_complete:
                raise OfferAlreadySet(session.call_id)

            if session.call_id is None:
                session.require(CallState.LOCAL_MEDIA_READY)
                call_id = await self.store.create_document(self.collection)
                session.begin_negotiation(Role.CALLER, call_id)
                self.logger.info("Created call %s", call_id)
            call_id = session.call_id

            self._attach_candidate_sink(OFFER_CANDIDATES)

            if session.local_description is None:
                offer = await self.endpoint.create_offer()
                await self.endpoint.set_local_description(offer)
                session.local_description = self.endpoint.local_description or offer

            await self._publish("offer", session.local_description)

            await self._ensure_subscription(
                "call",
                lambda: self.store.subscribe_document(self.collection, call_id, self._on_call_document),
            )
            await self._ensure_subscription(
                ANSWER_CANDIDATES,
                lambda: self.store.subscribe_added(
                    self.collection, call_id, ANSWER_CANDIDATES, self._on_remote_candidate
                ),
            )
            session.protocol_complete = True
            return call_id

    async def _join_call(self, call_id: str) -> None:
        async with self._lock:
            session = self.session
            if session.is_closed:
                raise InvalidTransition("session is closed")
            if session.role is Role.CALLER:
                raise InvalidTransition("session already created a call as caller")
            if session.call_id is not None and session.call_id != call_id:
                raise InvalidTransition(f"session is already joining call {session.call_id}")
            if session.role is Role.CALLEE and session.protocol_complete:
                raise AnswerAlreadySet(call_id)
            if session.call_id is None:
                session.require(CallState.LOCAL_MEDIA_READY)

            if not session.remote_description_applied:
                fields = await self.store.get_document(self.collection, call_id)
                if fields is None:
                    raise CallNotFound(call_id)
                if not fields.get("offer"):
                    raise OfferMissing(call_id)
                if fields.get("answer"):
                    raise AnswerAlreadySet(call_id)
                offer = SessionDescription.from_dict(fields["offer"])

                if session.call_id is None:
                    session.begin_negotiation(Role.CALLEE, call_id)
                    self.logger.info("Joining call %s", call_id)
                self._attach_candidate_sink(ANSWER_CANDIDATES)
                await self._apply_remote_description(offer)

            if session.local_description is None:
                answer = await self.endpoint.create_answer()
                await self.endpoint.set_local_description(answer)
                session.local_description = self.endpoint.local_description or answer

            await self._publish("answer", session.local_description)

            await self._ensure_subscription(
                OFFER_CANDIDATES,
                lambda: self.store.subscribe_added(
                    self.collection, call_id, OFFER_CANDIDATES, self._on_remote_candidate
                ),
            )
            session.protocol_complete = True

    def _attach_candidate_sink(self, subcollection: str) -> None:
        if self._candidate_target is not None:
            return
        self._candidate_target = subcollection
        self.channel.on_local_candidate(self._forward_local_candidate)

    async def _forward_local_candidate(self, candidate: Candidate) -> None:
        call_id = self.session.call_id
        target = self._candidate_target
        if call_id is None or target is None:
            raise InvalidTransition("no call to forward candidates to")
        await self.store.append(self.collection, call_id, target, candidate.to_dict())

    async def _publish(self, field: str, description: Optional[SessionDescription]) -> None:
        session = self.session
        if session.description_published:
            return
        if description is None or session.call_id is None:
            raise InvalidTransition(f"nothing to publish as {field}")
        payload = description.to_dict()
        try:
            await self.store.set_fields(
                self.collection, session.call_id, {field: payload}, only_if_absent=True
            )
        except AlreadySet as exc:
            # A retried write whose first attempt landed is not a conflict.
            current = await self.store.get_document(self.collection, session.call_id)
            if not current or current.get(field) != payload:
                error = OfferAlreadySet if field == "offer" else AnswerAlreadySet
                raise error(session.call_id) from exc
        session.description_published = True
        self.logger.info("Published %s for call %s", field, session.call_id)

    async def _ensure_subscription(
        self, name: str, factory: Callable[[], Awaitable[Subscription]]
    ) -> None:
        if name in self._subscriptions:
            return
        self._subscriptions[name] = await factory()

    async def _apply_remote_description(self, description: SessionDescription) -> None:
        await self.endpoint.set_remote_description(description)
        self.session.remote_description = description
        buffered = self.session.take_buffered_candidates()
        if buffered:
            self.logger.debug("Applying %d buffered remote candidates", len(buffered))
        for candidate in buffered:
            await self._apply_remote_candidate(candidate)

    async def _apply_remote_candidate(self, candidate: Candidate) -> None:
        try:
            await self.endpoint.add_remote_candidate(candidate)
        except Exception:
            self.logger.exception("Failed to apply remote candidate %s", candidate.candidate)

    # ------------------------------------------------------------------ store callbacks

    async def _on_call_document(self, fields: Fields) -> None:
        async with self._lock:
            session = self.session
            if session.is_closed or session.remote_description_applied:
                return
            answer = fields.get("answer")
            if not answer:
                return
            self.logger.info("Answer received for call %s", session.call_id)
            await self._apply_remote_description(SessionDescription.from_dict(answer))

    async def _on_remote_candidate(self, entry_id: str, fields: Fields) -> None:
        async with self._lock:
            session = self.session
            if session.is_closed:
                return
            try:
                candidate = Candidate.from_mapping(fields)
            except ValueError:
                self.logger.warning("Ignoring malformed remote candidate %s", entry_id)
                return
            if not session.admit_remote_candidate(candidate.key()):
                self.logger.debug("Ignoring redelivered remote candidate %s", entry_id)
                return
            if not session.remote_description_applied:
                session.buffer_remote_candidate(candidate)
                return
            await self._apply_remote_candidate(candidate)

    # ------------------------------------------------------------------ endpoint callbacks

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_remote_track(self, track: Any) -> None:
        if self.session.is_closed:
            return
        self.session.remote_tracks.append(track)
        for handler in list(self._remote_track_handlers):
            try:
                handler(track)
            except Exception:  # pragma: no cover - handler failures must not break the session
                self.logger.exception("Remote track handler failed")

    def _handle_connection_state(self, state: str) -> None:
        if self.session.is_closed:
            return
        self._spawn(self._on_connection_state(str(state)))

    async def _on_connection_state(self, state: str) -> None:
        async with self._lock:
            session = self.session
            if session.is_closed:
                return
            if state in CONNECTED_STATES:
                if session.state is CallState.NEGOTIATING:
                    session.mark_connected()
                    self.logger.info("Call %s connected", session.call_id)
                return
            if state in TERMINAL_STATES:
                self.logger.warning("Remote side unreachable (%s); closing call %s", state, session.call_id)
                await self._shutdown(RemoteUnreachable(state))

    # ------------------------------------------------------------------ teardown

    async def _shutdown(self, reason: Optional[BaseException]) -> None:
        session = self.session
        if session.is_closed:
            return
        for name, subscription in list(self._subscriptions.items()):
            subscription.cancel()
            self.logger.debug("Cancelled %s subscription", name)
        self._subscriptions.clear()
        await self.channel.close()
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        session.close(reason)
        try:
            await self.endpoint.close()
        except Exception:  # pragma: no cover - defensive
            self.logger.exception("Failed to close connection endpoint cleanly.")
        self.logger.info("Call %s closed", session.call_id or "-")


__all__ = [
    "ANSWER_CANDIDATES",
    "CALLS_COLLECTION",
    "NegotiationCoordinator",
    "OFFER_CANDIDATES",
]
