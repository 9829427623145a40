"""
Push interface over the endpoint's local candidate discovery.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from .endpoint import ConnectionEndpoint
from .webrtc import Candidate

LOG = logging.getLogger(__name__)

CandidateSink = Callable[[Candidate], Awaitable[None]]


class CandidateChannel:
    """
    Forward locally discovered candidates to a sink, one at a time, in
    discovery order.

    Candidates discovered before a sink is attached wait in the queue.  A
    failing sink call is logged and the next candidate is still forwarded.
    Completion of discovery is recorded but never stops forwarding.
    """

    def __init__(
        self,
        endpoint: ConnectionEndpoint,
        *,
        queue: Optional["asyncio.Queue[Candidate]"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._queue: "asyncio.Queue[Candidate]" = queue if queue is not None else asyncio.Queue()
        self._sink: Optional[CandidateSink] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.logger = logger or LOG
        self.gathering_complete = False
        self.forwarded = 0
        self.failed = 0
        endpoint.on_local_candidate(self._on_discovered)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_discovered(self, candidate: Optional[Candidate]) -> None:
        if self._closed:
            self.logger.debug("Ignoring candidate discovered after close")
            return
        if candidate is None:
            self.gathering_complete = True
            self.logger.debug("Local candidate discovery complete")
            return
        self._queue.put_nowait(candidate)

    def on_local_candidate(self, sink: CandidateSink) -> None:
        if self._closed:
            raise RuntimeError("candidate channel is closed")
        self._sink = sink
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._forward_loop())

    async def _forward_loop(self) -> None:
        while True:
            candidate = await self._queue.get()
            try:
                sink = self._sink
                if sink is not None:
                    await sink(candidate)
                    self.forwarded += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                self.logger.exception("Failed to forward local candidate %s", candidate.candidate)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued candidate has been handed to the sink."""

        if self._task is None or self._closed:
            return
        await self._queue.join()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


__all__ = ["CandidateChannel", "CandidateSink"]
