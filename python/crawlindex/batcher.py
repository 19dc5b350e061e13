"""
Batcher - Accumulates documents into batches for the indexing stage.

A batch is flushed when it reaches `max_docs` or when `max_wait_seconds`
have passed since its first document, whichever comes first.

Each output queue is fed by its own forwarding task from an unbounded
lane, so a stalled collection never holds batches back from the others.
Flushing waits until at least one collection has taken every batch
handed to it; when all collections are saturated the extraction workers
stop at `add()`. A stalled collection's lane grows until it recovers or
the run ends.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from .models import Batch, Document


logger = logging.getLogger(__name__)


class BatchingBuffer:
    """
    The only shared mutable state between extraction and indexing.

    All access to the current batch goes through `_lock`; one writer at a
    time. Every output queue receives the same (immutable) Batch in
    creation order, followed by a `None` end-of-stream marker after
    `close()`.
    """

    def __init__(
        self,
        outputs: Sequence["asyncio.Queue[Optional[Batch]]"],
        max_docs: int,
        max_wait_seconds: float,
        cancel_event: asyncio.Event | None = None,
    ):
        if max_docs < 1:
            raise ValueError("max_docs must be >= 1")
        self._outputs = list(outputs)
        self._lanes: List[asyncio.Queue] = [asyncio.Queue() for _ in self._outputs]
        self._forwarders: List[asyncio.Task] = []
        self.max_docs = max_docs
        self.max_wait_seconds = max_wait_seconds
        self._cancel_event = cancel_event

        self._lock = asyncio.Lock()
        self._current: List[Document] = []
        self._sequence = 0
        self._timer: Optional[asyncio.Task] = None
        self._closed = False
        self.batches_flushed = 0
        self.documents_admitted = 0

    @property
    def pending(self) -> int:
        """Documents in the current, not yet flushed batch."""
        return len(self._current)

    async def add(self, document: Document) -> None:
        """
        Admit one document. Returns only after any flush it triggered has
        been accepted by at least one output queue.
        """
        async with self._lock:
            if self._closed:
                raise RuntimeError("BatchingBuffer is closed")

            self._current.append(document)
            self.documents_admitted += 1

            if len(self._current) >= self.max_docs:
                await self._flush_locked("size")
            elif len(self._current) == 1:
                self._timer = asyncio.create_task(
                    self._flush_after(self._sequence), name=f"batch-timer-{self._sequence}"
                )

    async def close(self) -> None:
        """
        Flush the partial batch and signal end-of-stream downstream.

        Returns once every output queue has accepted everything, markers
        included.
        """
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._current:
                await self._flush_locked("shutdown")
            self._push(None)
            await asyncio.gather(*self._forwarders)
        logger.debug(f"Batching buffer closed after {self.batches_flushed} batches")

    def abort(self) -> None:
        """Stop forwarding; batches still in a lane are dropped."""
        for task in (self._timer, *self._forwarders):
            if task is not None:
                task.cancel()

    async def _flush_after(self, sequence: int) -> None:
        """Timer task: flush batch `sequence` once it is old enough."""
        if self._cancel_event is not None:
            # Cancellation cuts the wait short so the run can drain
            try:
                await asyncio.wait_for(self._cancel_event.wait(), timeout=self.max_wait_seconds)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(self.max_wait_seconds)

        async with self._lock:
            if self._sequence == sequence and self._current:
                await self._flush_locked("age")

    async def _flush_locked(self, reason: str) -> None:
        """Caller must hold `_lock`."""
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        batch = Batch(sequence=self._sequence, documents=tuple(self._current))
        self._sequence += 1
        self._current = []

        logger.debug(f"Flushing {batch.label} ({reason})")
        self._push(batch)
        self.batches_flushed += 1
        await self._wait_for_any_lane()

    def _push(self, item: Optional[Batch]) -> None:
        if not self._forwarders:
            self._forwarders = [
                asyncio.create_task(self._forward(lane, output), name=f"batch-forward-{i}")
                for i, (lane, output) in enumerate(zip(self._lanes, self._outputs))
            ]
        for lane in self._lanes:
            lane.put_nowait(item)

    async def _wait_for_any_lane(self) -> None:
        """Block until some output queue has taken everything pushed to it."""
        waiters = [asyncio.create_task(lane.join()) for lane in self._lanes]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    @staticmethod
    async def _forward(
        lane: "asyncio.Queue[Optional[Batch]]", output: "asyncio.Queue[Optional[Batch]]"
    ) -> None:
        while True:
            item = await lane.get()
            try:
                await output.put(item)
            finally:
                lane.task_done()
            if item is None:
                return
