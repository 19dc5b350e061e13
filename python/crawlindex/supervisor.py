"""
Supervisor - Wires the ingestion pipeline together and runs it to completion.

Pipeline:
    Scanner -> path queue -> ExtractionPool -> BatchingBuffer
            -> batch queue per collection -> IndexingCoordinator

Data only flows forward. The bounded queues carry backpressure backwards
and the cancel event carries cancellation to every stage boundary.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

from .config import get_config, IndexerConfig
from .models import Batch, FileRef, RunReport
from .scanner import Scanner, validate_root
from .extractor import ExtractionBackend, ExtractionPool
from .batcher import BatchingBuffer
from .indexer import IndexingCoordinator
from .solr import SearchBackend, SolrClient
from .errors import ResourceError, handle_error


logger = logging.getLogger(__name__)


class RunSupervisor:
    """
    Runs one indexing pass over a directory tree.

    Only two failures end a run early: an invalid root (TraversalError)
    and a backend that can't be opened (ResourceError). Everything else
    shows up as Failed outcomes in the report.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        backend: SearchBackend | None = None,
        extractor: ExtractionBackend | None = None,
    ):
        self.config = config or get_config()
        self.backend = backend or SolrClient(
            self.config.solr_url,
            timeout_seconds=self.config.request_timeout_seconds,
        )
        self._scanner = Scanner(self.config)
        self._extractor = extractor
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancel_requested = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """
        Request cooperative cancellation.

        The walk stops, queued files are skipped, files being extracted
        finish, the partial batch is flushed and every batch already
        flushed is submitted once.
        """
        if not self._cancel_requested:
            logger.warning("Cancellation requested; draining in-flight work")
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def run(self, root: Path | None = None) -> RunReport:
        """
        Index every file under `root` (default: config.root).

        Raises TraversalError or ResourceError for fatal conditions;
        otherwise returns the final RunReport.
        """
        start_time = time.monotonic()
        report = RunReport()

        root = validate_root(root or self.config.root)

        self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        logger.info(f"Indexing {root} into {', '.join(self.config.collections)}")

        try:
            await self.backend.open()
        except ResourceError:
            raise
        except Exception as e:
            raise ResourceError(f"Cannot open search backend: {e}") from e

        try:
            await self._run_pipeline(root, report)
        finally:
            try:
                await self.backend.close()
            except Exception as e:
                # Submitted work stays valid even if the client closes badly
                handle_error(e, None, "shutdown")

        report.cancelled = self._cancel_event.is_set()
        report.duration_seconds = time.monotonic() - start_time
        logger.info(str(report))
        return report

    async def _run_pipeline(self, root: Path, report: RunReport) -> None:
        config = self.config
        cancel_event = self._cancel_event

        path_queue: asyncio.Queue[Optional[FileRef]] = asyncio.Queue(
            maxsize=config.path_queue_size
        )
        batch_queues: Dict[str, asyncio.Queue[Optional[Batch]]] = {
            collection: asyncio.Queue(maxsize=config.batch_queue_size)
            for collection in config.collections
        }

        buffer = BatchingBuffer(
            list(batch_queues.values()),
            max_docs=config.batch_max_docs,
            max_wait_seconds=config.batch_max_wait_seconds,
            cancel_event=cancel_event,
        )
        pool = ExtractionPool(self._extractor, config)
        coordinators = [
            IndexingCoordinator(self.backend, collection, config, report.record, cancel_event)
            for collection in config.collections
        ]

        coordinator_tasks = [
            asyncio.create_task(coordinator.run(batch_queues[coordinator.collection]),
                                name=f"index-{coordinator.collection}")
            for coordinator in coordinators
        ]
        pool_task = asyncio.create_task(
            pool.run(path_queue, buffer, report.record, cancel_event), name="extract-pool"
        )
        producer_task = asyncio.create_task(
            self._produce(root, path_queue, pool.size, report), name="scan"
        )

        async def drain() -> None:
            # Each stage finishes only after its upstream has finished
            await producer_task
            await pool_task
            await buffer.close()
            await asyncio.gather(*coordinator_tasks)

        drain_task = asyncio.create_task(drain(), name="drain")
        stage_tasks: List[asyncio.Task] = [producer_task, pool_task, *coordinator_tasks]

        try:
            await self._wait_for_drain(drain_task, stage_tasks)
        finally:
            for task in (drain_task, *stage_tasks):
                task.cancel()
            await asyncio.gather(drain_task, *stage_tasks, return_exceptions=True)
            buffer.abort()
            pool.close()

        report.batches_submitted = sum(c.batches_submitted for c in coordinators)
        report.commits = sum(c.commits for c in coordinators)
        report.retries = sum(c.retries for c in coordinators)

    async def _wait_for_drain(
        self, drain_task: asyncio.Task, stage_tasks: List[asyncio.Task]
    ) -> None:
        """
        Wait for the drain to finish, failing fast if any stage crashes.

        A crashed stage would otherwise leave its neighbours blocked on a
        full or empty queue forever.
        """
        pending = {drain_task, *stage_tasks}
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is drain_task:
                    task.result()
                    return
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()

    async def _produce(
        self,
        root: Path,
        path_queue: "asyncio.Queue[Optional[FileRef]]",
        worker_count: int,
        report: RunReport,
    ) -> None:
        """Feed FileRefs to the workers, then one stop sentinel per worker."""
        async for file_ref in self._scanner.scan_iter(root, self._cancel_event):
            report.files_found += 1
            await path_queue.put(file_ref)

        logger.info(f"Scan finished: {report.files_found} files queued")
        for _ in range(worker_count):
            await path_queue.put(None)


async def run_index(
    root: Path | None = None,
    config: IndexerConfig | None = None,
) -> RunReport:
    """
    Convenience function to run one indexing pass against Solr.

    Usage:
        report = await run_index(Path("~/projects"))
        print(report)
    """
    supervisor = RunSupervisor(config)
    return await supervisor.run(root)
