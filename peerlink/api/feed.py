"""
WebSocket change feed for one document and its sub-collections.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any, Dict, Iterable, List

from fastapi import WebSocket, WebSocketDisconnect

from ..errors import DocumentNotFound
from ..store.base import Fields, NegotiationStore, Subscription

LOG = logging.getLogger(__name__)

NOT_FOUND_CLOSE_CODE = 4404


class ChangeFeed:
    """Push document changes and added entries to one WebSocket client."""

    def __init__(
        self,
        store: NegotiationStore,
        websocket: WebSocket,
        collection: str,
        doc_id: str,
        *,
        queue_size: int = 256,
    ) -> None:
        self.store = store
        self.websocket = websocket
        self.collection = collection
        self.doc_id = doc_id
        self.send_queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=queue_size)
        self.subscriptions: List[Subscription] = []
        self.logger = LOG.getChild(f"ws.{uuid.uuid4().hex[:8]}")

    async def run(self, subcollections: Iterable[str] = ()) -> None:
        await self.websocket.accept()
        try:
            try:
                await self._subscribe(subcollections)
            except DocumentNotFound as exc:
                self.logger.info("Refusing feed: %s", exc)
                await self.websocket.close(code=NOT_FOUND_CLOSE_CODE, reason=str(exc))
                return

            loops = [
                asyncio.ensure_future(self._recv_loop()),
                asyncio.ensure_future(self._send_loop()),
            ]
            try:
                await asyncio.wait(loops, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in loops:
                    task.cancel()
                for task in loops:
                    with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                        await task
        finally:
            for subscription in self.subscriptions:
                subscription.cancel()
            self.subscriptions.clear()
            self.logger.debug("Feed for %s/%s closed", self.collection, self.doc_id)

    async def _subscribe(self, subcollections: Iterable[str]) -> None:
        self.subscriptions.append(
            await self.store.subscribe_document(self.collection, self.doc_id, self._on_document)
        )
        for name in subcollections:

            async def on_added(entry_id: str, fields: Fields, name: str = name) -> None:
                await self.send_queue.put(
                    {"type": "added", "subcollection": name, "id": entry_id, "fields": fields}
                )

            self.subscriptions.append(
                await self.store.subscribe_added(self.collection, self.doc_id, name, on_added)
            )

    async def _on_document(self, fields: Fields) -> None:
        await self.send_queue.put({"type": "document", "fields": fields})

    async def _recv_loop(self) -> None:
        # Clients never send anything meaningful; reading only detects disconnects.
        try:
            while True:
                await self.websocket.receive_text()
        except WebSocketDisconnect:
            self.logger.debug("Feed client disconnected")

    async def _send_loop(self) -> None:
        while True:
            message = await self.send_queue.get()
            try:
                await self.websocket.send_json(message)
            except WebSocketDisconnect:
                return
            finally:
                self.send_queue.task_done()


__all__ = ["ChangeFeed", "NOT_FOUND_CLOSE_CODE"]
