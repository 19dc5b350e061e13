"""
Indexing Configuration - Centralized settings for the crawl indexer.

Uses environment variables with sensible defaults. The root path is
resolved to an absolute path for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set


@dataclass
class IndexerConfig:
    """
    Configuration for the ingestion pipeline.

    Queue sizes bound memory between stages; they are what turns a slow
    Solr into backpressure on the extraction workers.
    """

    # --- Source ---
    root: Path = field(default_factory=lambda: Path("."))

    # --- Search backend ---
    solr_url: str = "http://localhost:8983/solr"
    collections: List[str] = field(default_factory=lambda: ["filesystem"])
    request_timeout_seconds: float = 30.0

    # --- Concurrency Limits ---
    extractor_concurrency: int = 8  # Parallel extraction workers
    path_queue_size: int = 256      # FileRefs waiting for a worker
    batch_queue_size: int = 4       # Flushed batches waiting per collection

    # --- Batching ---
    batch_max_docs: int = 50
    batch_max_wait_seconds: float = 2.0

    # --- Retry / Commit ---
    max_attempts: int = 5
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    commit_every_batches: int = 10
    commit_interval_seconds: float = 15.0

    # --- Extraction ---
    max_extract_bytes: int = 50 * 1024 * 1024

    # --- Skip Patterns ---
    skip_dirs: Set[str] = field(default_factory=lambda: {
        "build", "gradle",
    })
    hidden_prefix: str = "."

    def __post_init__(self):
        """Resolve the root and reject settings the pipeline can't run with."""
        self.root = Path(self.root).expanduser().resolve()
        self.solr_url = self.solr_url.rstrip("/")
        self.skip_dirs = set(self.skip_dirs)

        if not self.collections:
            raise ValueError("At least one destination collection is required")

        for name in (
            "extractor_concurrency", "path_queue_size", "batch_queue_size",
            "batch_max_docs", "max_attempts", "commit_every_batches",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")

        if self.batch_max_wait_seconds <= 0:
            raise ValueError("batch_max_wait_seconds must be positive")

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            CRAWLINDEX_ROOT: Base directory to index
            CRAWLINDEX_SOLR_URL: Solr base URL (up to and including /solr)
            CRAWLINDEX_COLLECTIONS: Comma-separated destination collections
            CRAWLINDEX_SKIP_DIRS: Comma-separated directory names to prune
            CRAWLINDEX_EXTRACTOR_CONCURRENCY: Parallel extraction workers
            CRAWLINDEX_BATCH_SIZE: Max documents per batch
            CRAWLINDEX_BATCH_WAIT: Max seconds a batch waits before flushing
            CRAWLINDEX_MAX_ATTEMPTS: Submission attempts per batch
            CRAWLINDEX_COMMIT_EVERY: Successful batches between commits
            CRAWLINDEX_TIMEOUT: HTTP request timeout in seconds
        """
        config = cls()

        if root := os.environ.get("CRAWLINDEX_ROOT"):
            config.root = Path(root)

        if solr_url := os.environ.get("CRAWLINDEX_SOLR_URL"):
            config.solr_url = solr_url

        if collections := os.environ.get("CRAWLINDEX_COLLECTIONS"):
            config.collections = [c.strip() for c in collections.split(",") if c.strip()]

        if skip_dirs := os.environ.get("CRAWLINDEX_SKIP_DIRS"):
            config.skip_dirs = {d.strip() for d in skip_dirs.split(",") if d.strip()}

        if workers := os.environ.get("CRAWLINDEX_EXTRACTOR_CONCURRENCY"):
            config.extractor_concurrency = int(workers)

        if batch_size := os.environ.get("CRAWLINDEX_BATCH_SIZE"):
            config.batch_max_docs = int(batch_size)

        if batch_wait := os.environ.get("CRAWLINDEX_BATCH_WAIT"):
            config.batch_max_wait_seconds = float(batch_wait)

        if attempts := os.environ.get("CRAWLINDEX_MAX_ATTEMPTS"):
            config.max_attempts = int(attempts)

        if commit_every := os.environ.get("CRAWLINDEX_COMMIT_EVERY"):
            config.commit_every_batches = int(commit_every)

        if timeout := os.environ.get("CRAWLINDEX_TIMEOUT"):
            config.request_timeout_seconds = float(timeout)

        config.__post_init__()
        return config


# Singleton default config
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig | None) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
