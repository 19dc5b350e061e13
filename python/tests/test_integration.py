"""
Integration Tests - End-to-end runs of the pipeline.

Tests:
- Full run (scan -> extract -> batch -> submit -> commit)
- Per-file failures, backend retry, conservation of outcomes
- Cancellation while files are mid-extraction
- Fatal conditions: invalid root, unreachable backend
"""

import asyncio
from pathlib import Path

import pytest

from crawlindex.supervisor import RunSupervisor
from crawlindex.config import IndexerConfig
from crawlindex.errors import (
    IndexPermanentError, IndexTransientError, ResourceError, TraversalError,
)
from crawlindex.models import ROOT_CATEGORY

from conftest import BlockingExtractor, FakeBackend


class GatedBackend(FakeBackend):
    """Holds every submission to one collection until `gate` is set."""

    def __init__(self, gated: str):
        super().__init__()
        self.gated = gated
        self.gate = asyncio.Event()

    async def add_batch(self, collection, documents):
        if collection == self.gated:
            await self.gate.wait()
        await super().add_batch(collection, documents)


def assert_conserved(report):
    """Every file found resolved to exactly one outcome."""
    assert report.indexed + report.skipped + report.failed == report.files_found


class TestFullRun:
    """End-to-end tests for a complete run."""

    @pytest.mark.asyncio
    async def test_indexed_and_failed_scenario(self, temp_dir, test_config, fake_backend):
        """a.txt indexes at the root; b/c.bin fails extraction under category b."""
        (temp_dir / "a.txt").write_text("searchable text")
        (temp_dir / "b").mkdir()
        (temp_dir / "b" / "c.bin").write_bytes(b"\x00\xff\x00\xfe" * 16)

        report = await RunSupervisor(test_config, backend=fake_backend).run()

        assert report.files_found == 2
        assert (report.indexed, report.skipped, report.failed) == (1, 0, 1)
        assert_conserved(report)

        indexed = fake_backend.documents()
        assert indexed["/a.txt"].categories == (ROOT_CATEGORY,)
        assert indexed["/a.txt"].text == "searchable text"

        failure = report.failures[0]
        assert failure.document_id == "/b/c.bin"
        assert "binary" in failure.reason
        assert report.failure_lines() == [f"FAILED /b/c.bin: {failure.reason}"]

    @pytest.mark.asyncio
    async def test_failed_file_categories(self, temp_dir, test_config, fake_backend):
        (temp_dir / "b").mkdir()
        (temp_dir / "b" / "c.txt").write_text("text")

        await RunSupervisor(test_config, backend=fake_backend).run()

        assert fake_backend.documents()["/b/c.txt"].categories == ("b",)

    @pytest.mark.asyncio
    async def test_skips_hidden_and_pruned(self, sample_files, test_config, fake_backend):
        report = await RunSupervisor(test_config, backend=fake_backend).run()

        ids = set(fake_backend.documents())
        assert ids == {"/sample.txt", "/readme.md", "/subdir/nested/deep.txt"}
        assert report.files_found == 3
        assert_conserved(report)

    @pytest.mark.asyncio
    async def test_batches_and_commits(self, temp_dir, test_config, fake_backend):
        for i in range(7):
            (temp_dir / f"f{i}.txt").write_text(f"file {i}")

        report = await RunSupervisor(test_config, backend=fake_backend).run()

        assert report.indexed == 7
        assert all(len(docs) <= test_config.batch_max_docs for _, docs in fake_backend.added)
        assert report.batches_submitted == len(fake_backend.added)
        # Periodic commits, not one per document
        assert 1 <= report.commits < report.indexed
        assert fake_backend.calls[-1] == ("commit", "filesystem")

    @pytest.mark.asyncio
    async def test_backend_lifecycle(self, sample_files, test_config, fake_backend):
        await RunSupervisor(test_config, backend=fake_backend).run()

        assert fake_backend.opened == 1
        assert fake_backend.closed == 1

    @pytest.mark.asyncio
    async def test_ids_are_stable_across_runs(self, sample_files, test_config):
        first, second = FakeBackend(), FakeBackend()

        await RunSupervisor(test_config, backend=first).run()
        await RunSupervisor(test_config, backend=second).run()

        assert set(first.documents()) == set(second.documents())

    @pytest.mark.asyncio
    async def test_empty_directory(self, temp_dir, test_config, fake_backend):
        report = await RunSupervisor(test_config, backend=fake_backend).run()

        assert report.files_found == 0
        assert report.indexed == 0
        assert fake_backend.commit_count() == 0


class TestBackendFailures:

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self, temp_dir, test_config):
        (temp_dir / "a.txt").write_text("retry me")
        backend = FakeBackend(add_errors=[IndexTransientError("HTTP 503"), None])

        report = await RunSupervisor(test_config, backend=backend).run()

        assert report.indexed == 1
        assert report.retries == 1
        assert "/a.txt" in backend.documents()

    @pytest.mark.asyncio
    async def test_permanent_error_fails_batch_and_run_continues(self, temp_dir, test_config):
        test_config.batch_max_docs = 1
        (temp_dir / "a.txt").write_text("rejected")
        (temp_dir / "b.txt").write_text("accepted")
        backend = FakeBackend(add_errors=[IndexPermanentError("HTTP 400")])

        report = await RunSupervisor(test_config, backend=backend).run()

        assert (report.indexed, report.failed) == (1, 1)
        assert report.failures[0].collection == "filesystem"
        assert_conserved(report)

    @pytest.mark.asyncio
    async def test_close_failure_is_not_fatal(self, sample_files, test_config):
        backend = FakeBackend(close_error=ResourceError("close failed"))

        report = await RunSupervisor(test_config, backend=backend).run()

        assert report.indexed == 3

    @pytest.mark.asyncio
    async def test_multiple_collections_proceed_independently(self, temp_dir, test_config):
        test_config.collections = ["primary", "mirror"]
        (temp_dir / "a.txt").write_text("a")
        (temp_dir / "b.txt").write_text("b")
        backend = FakeBackend()

        report = await RunSupervisor(test_config, backend=backend).run()

        assert set(backend.documents("primary")) == {"/a.txt", "/b.txt"}
        assert set(backend.documents("mirror")) == {"/a.txt", "/b.txt"}
        # One outcome per document per collection
        assert report.indexed == 4
        assert backend.commit_count("primary") >= 1
        assert backend.commit_count("mirror") >= 1

    @pytest.mark.asyncio
    async def test_stalled_collection_does_not_hold_back_the_other(self, temp_dir, test_config):
        test_config.collections = ["slow", "fast"]
        test_config.batch_max_docs = 1
        test_config.batch_queue_size = 1
        for i in range(10):
            (temp_dir / f"f{i}.txt").write_text(f"file {i}")
        backend = GatedBackend(gated="slow")

        run_task = asyncio.create_task(RunSupervisor(test_config, backend=backend).run())
        for _ in range(200):
            if len(backend.documents("fast")) == 10:
                break
            await asyncio.sleep(0.01)

        assert len(backend.documents("fast")) == 10
        assert backend.documents("slow") == {}
        assert not run_task.done()

        backend.gate.set()
        report = await asyncio.wait_for(run_task, timeout=5)

        assert len(backend.documents("slow")) == 10
        assert report.indexed == 20


class TestFatalConditions:

    @pytest.mark.asyncio
    async def test_missing_root_is_fatal_before_backend_opens(self, temp_dir, test_config, fake_backend):
        supervisor = RunSupervisor(test_config, backend=fake_backend)

        with pytest.raises(TraversalError):
            await supervisor.run(temp_dir / "missing")

        assert fake_backend.opened == 0

    @pytest.mark.asyncio
    async def test_unreachable_backend_is_fatal(self, sample_files, test_config, unreachable_backend):
        with pytest.raises(ResourceError):
            await RunSupervisor(test_config, backend=unreachable_backend).run()

    @pytest.mark.asyncio
    async def test_unexpected_open_error_becomes_resource_error(self, sample_files, test_config):
        backend = FakeBackend(open_error=ConnectionRefusedError("refused"))

        with pytest.raises(ResourceError, match="refused"):
            await RunSupervisor(test_config, backend=backend).run()


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_while_three_files_mid_extraction(self, temp_dir, test_config):
        """In-flight files finish, queued files are skipped, nothing is left unresolved."""
        test_config.extractor_concurrency = 3
        test_config.batch_max_docs = 2
        for i in range(10):
            (temp_dir / f"f{i:02d}.txt").write_text(f"file {i}")

        extractor = BlockingExtractor()
        backend = FakeBackend()
        supervisor = RunSupervisor(test_config, backend=backend, extractor=extractor)
        run_task = asyncio.create_task(supervisor.run())

        for _ in range(200):
            if extractor.started_count() == 3:
                break
            await asyncio.sleep(0.01)
        assert extractor.started_count() == 3

        supervisor.cancel()
        await asyncio.sleep(0.05)
        assert not run_task.done()

        extractor.release.set()
        report = await asyncio.wait_for(run_task, timeout=5)

        assert report.cancelled
        assert len(extractor.finished) == 3
        assert report.indexed == 3
        assert set(backend.documents()) == {f"/{p.name}" for p in extractor.finished}
        assert_conserved(report)
        assert report.skipped == report.files_found - 3
        assert backend.closed == 1

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, sample_files, test_config, fake_backend):
        supervisor = RunSupervisor(test_config, backend=fake_backend)
        supervisor.cancel()

        report = await supervisor.run()

        assert report.cancelled
        assert report.files_found == 0
        assert fake_backend.closed == 1
