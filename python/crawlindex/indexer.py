"""
Indexer - Submits batches to the search backend, one collection at a time.

Each IndexingCoordinator is the single consumer of its collection's batch
queue, so batches reach the backend in creation order and commits always
follow the batches they cover. Commits are periodic, never per batch.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from .config import get_config, IndexerConfig
from .models import Batch, IndexOutcome
from .errors import CommitWarning, ErrorAction, handle_error
from .solr import SearchBackend


logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number `attempt` (1-based): base, 2*base, 4*base, ..."""
    return min(base * (2 ** (attempt - 1)), maximum)


class IndexingCoordinator:
    """
    Serialized submitter for one destination collection.

    Every document of every batch it receives resolves to exactly one
    IndexOutcome, reported through `outcomes`.
    """

    def __init__(
        self,
        backend: SearchBackend,
        collection: str,
        config: IndexerConfig | None = None,
        outcomes: Optional[Callable[[IndexOutcome], None]] = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.config = config or get_config()
        self.backend = backend
        self.collection = collection
        self._outcomes = outcomes or (lambda outcome: None)
        self._cancel_event = cancel_event or asyncio.Event()

        self.batches_submitted = 0
        self.batches_failed = 0
        self.commits = 0
        self.retries = 0
        self._uncommitted = 0
        self._last_commit = time.monotonic()

    @property
    def uncommitted(self) -> int:
        """Successful submissions not yet covered by a commit."""
        return self._uncommitted

    async def run(self, batch_queue: "asyncio.Queue[Optional[Batch]]") -> None:
        """Consume batches until the `None` end-of-stream marker, then commit."""
        while True:
            batch = await self._next_batch(batch_queue)
            try:
                if batch is None:
                    break
                await self.submit(batch)
                if self._commit_due():
                    await self.commit()
            finally:
                batch_queue.task_done()

        # Final commit covers whatever the schedule hasn't
        await self.commit()
        logger.info(
            f"[{self.collection}] {self.batches_submitted} batches submitted, "
            f"{self.batches_failed} failed, {self.commits} commits, {self.retries} retries"
        )

    async def _next_batch(self, batch_queue: "asyncio.Queue[Optional[Batch]]") -> Optional[Batch]:
        """Wait for the next batch, committing whenever the interval lapses while idle."""
        while True:
            if self._uncommitted == 0 or not batch_queue.empty():
                return await batch_queue.get()

            remaining = self.config.commit_interval_seconds - (time.monotonic() - self._last_commit)
            if remaining > 0:
                try:
                    return await asyncio.wait_for(batch_queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass
            if not await self.commit():
                # Retried after the next batch or at drain
                return await batch_queue.get()

    async def submit(self, batch: Batch) -> List[IndexOutcome]:
        """
        Send one batch, retrying transient failures with exponential backoff.

        Always returns one outcome per document in the batch.
        """
        label = f"{self.collection} {batch.label}"
        attempt = 0

        while True:
            attempt += 1
            try:
                await self.backend.add_batch(self.collection, batch.documents)
            except Exception as e:
                action = handle_error(e, label, f"submit attempt {attempt}")

                if action is not ErrorAction.RETRY:
                    return self._resolve_failed(batch, e)

                if attempt >= self.config.max_attempts:
                    return self._resolve_failed(
                        batch, f"gave up after {attempt} attempts: {e}"
                    )

                # Pre-submission checkpoint: no new attempts once cancelled
                if self._cancel_event.is_set():
                    return self._resolve_failed(batch, f"cancelled during retry: {e}")

                delay = backoff_delay(
                    attempt, self.config.backoff_base_seconds, self.config.backoff_max_seconds
                )
                self.retries += 1
                logger.info(f"Retrying {label} in {delay:.2f}s")
                if await self._wait_backoff(delay):
                    return self._resolve_failed(batch, f"cancelled during retry: {e}")
                continue

            self.batches_submitted += 1
            self._uncommitted += 1
            logger.debug(f"Submitted {label}")
            return self._resolve(
                [IndexOutcome.indexed(doc.id, self.collection) for doc in batch.documents]
            )

    async def commit(self) -> bool:
        """
        Commit if anything was submitted since the last commit.

        A failed commit is only a warning: the submitted documents stay
        pending and the next successful commit makes them visible.
        """
        if self._uncommitted == 0:
            return False

        try:
            await self.backend.commit(self.collection)
        except Exception as e:
            warning = e if isinstance(e, CommitWarning) else CommitWarning(str(e))
            handle_error(warning, self.collection, "commit")
            return False

        logger.info(f"Committed {self._uncommitted} batches to {self.collection}")
        self.commits += 1
        self._uncommitted = 0
        self._last_commit = time.monotonic()
        return True

    def _commit_due(self) -> bool:
        if self._uncommitted == 0:
            return False
        if self._uncommitted >= self.config.commit_every_batches:
            return True
        return time.monotonic() - self._last_commit >= self.config.commit_interval_seconds

    async def _wait_backoff(self, delay: float) -> bool:
        """Sleep `delay` seconds; True if cancellation cut the wait short."""
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _resolve_failed(self, batch: Batch, error) -> List[IndexOutcome]:
        self.batches_failed += 1
        return self._resolve(
            [IndexOutcome.failed(doc.id, error, self.collection) for doc in batch.documents]
        )

    def _resolve(self, outcomes: List[IndexOutcome]) -> List[IndexOutcome]:
        for outcome in outcomes:
            self._outcomes(outcome)
        return outcomes
