"""
Test Configuration - Shared fixtures for crawlindex tests.

Uses pytest fixtures to create isolated test environments, plus in-memory
stand-ins for the search backend and the extraction library.
"""

import shutil
import tempfile
import threading
from pathlib import Path
from typing import Generator, List, Optional, Sequence

import pytest

from crawlindex.config import IndexerConfig, set_config
from crawlindex.errors import ExtractionError, ResourceError
from crawlindex.models import Document, Extraction


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="crawlindex_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> Generator[IndexerConfig, None, None]:
    """Create an isolated test configuration."""
    config = IndexerConfig(
        root=temp_dir,
        solr_url="http://solr.test/solr",
        collections=["filesystem"],
        extractor_concurrency=3,
        path_queue_size=8,
        batch_queue_size=2,
        batch_max_docs=2,
        batch_max_wait_seconds=0.05,
        max_attempts=3,
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.05,
        commit_every_batches=3,
        commit_interval_seconds=60.0,
    )
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def sample_files(temp_dir: Path) -> dict[str, Path]:
    """Create sample files for testing."""
    files = {}

    # Text file
    txt = temp_dir / "sample.txt"
    txt.write_text("This is a sample text file.\nIt has multiple lines.\nFor testing purposes.")
    files["txt"] = txt

    # Markdown file
    md = temp_dir / "readme.md"
    md.write_text("# Test Readme\n\nThis is a markdown file for testing.\n")
    files["md"] = md

    # Nested file
    nested_dir = temp_dir / "subdir" / "nested"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "deep.txt"
    nested.write_text("A deeply nested file.")
    files["nested"] = nested

    # Hidden file (should be skipped)
    hidden = temp_dir / ".hidden"
    hidden.write_text("This should be skipped.")
    files["hidden"] = hidden

    # File inside a hidden directory (should be skipped)
    git_dir = temp_dir / ".git"
    git_dir.mkdir()
    (git_dir / "config").write_text("[core]")
    files["hidden_dir"] = git_dir / "config"

    # Build output (pruned directory)
    build_dir = temp_dir / "build" / "classes"
    build_dir.mkdir(parents=True)
    (build_dir / "Main.class").write_text("compiled")
    files["build"] = build_dir / "Main.class"

    return files


class FakeBackend:
    """
    In-memory search backend.

    `add_errors` / `commit_errors` are consumed one per call; `None`
    means that call succeeds.
    """

    def __init__(
        self,
        add_errors: Optional[Sequence[Optional[Exception]]] = None,
        commit_errors: Optional[Sequence[Optional[Exception]]] = None,
        open_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
    ):
        self.add_errors = list(add_errors or [])
        self.commit_errors = list(commit_errors or [])
        self.open_error = open_error
        self.close_error = close_error
        self.calls: List[tuple] = []
        self.added: List[tuple[str, List[Document]]] = []
        self.opened = 0
        self.closed = 0

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened += 1

    async def add_batch(self, collection: str, documents: Sequence[Document]) -> None:
        self.calls.append(("add", collection, [d.id for d in documents]))
        if self.add_errors:
            error = self.add_errors.pop(0)
            if error is not None:
                raise error
        self.added.append((collection, list(documents)))

    async def commit(self, collection: str) -> None:
        self.calls.append(("commit", collection))
        if self.commit_errors:
            error = self.commit_errors.pop(0)
            if error is not None:
                raise error

    async def close(self) -> None:
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error

    def documents(self, collection: str = "filesystem") -> dict[str, Document]:
        return {d.id: d for coll, docs in self.added if coll == collection for d in docs}

    def commit_count(self, collection: str = "filesystem") -> int:
        return sum(1 for call in self.calls if call == ("commit", collection))


class BlockingExtractor:
    """
    Extractor whose calls block until `release` is set.

    Lets a test hold files "mid-extraction" and act while they are.
    """

    def __init__(self, fail_names: Sequence[str] = ()):
        self.release = threading.Event()
        self.started: List[Path] = []
        self.finished: List[Path] = []
        self._lock = threading.Lock()
        self._fail_names = set(fail_names)

    def started_count(self) -> int:
        with self._lock:
            return len(self.started)

    def extract(self, path: Path) -> Extraction:
        with self._lock:
            self.started.append(path)
        self.release.wait(timeout=10)
        with self._lock:
            self.finished.append(path)
        if path.name in self._fail_names:
            raise ExtractionError(path, "forced failure")
        return Extraction(path.read_text(), "text/plain")


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def unreachable_backend() -> FakeBackend:
    return FakeBackend(open_error=ResourceError("Cannot reach Solr at http://solr.test/solr"))
