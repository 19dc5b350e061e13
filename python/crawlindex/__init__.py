"""
crawlindex - Concurrent file-to-Solr ingestion pipeline.

Modules:
    - config: Centralized configuration
    - errors: Failure taxonomy and error policies
    - models: FileRef, Document, Batch, IndexOutcome, RunReport
    - scanner: Lazy directory traversal with pruning
    - extractor: Text extraction (pypdf, python-docx, plain text) + worker pool
    - batcher: Size/age bounded batching with backpressure
    - indexer: Per-collection submission, retry and periodic commit
    - solr: httpx-based Solr client
    - supervisor: Pipeline wiring, drain and cancellation
    - cli: Command-line entry point

Pipeline Flow:
    Scan -> Extract (thread pool) -> Batch -> Submit (retry) -> Commit

Usage:
    from crawlindex import RunSupervisor

    supervisor = RunSupervisor()
    report = await supervisor.run(Path("~/projects"))
"""

from .supervisor import RunSupervisor, run_index

__all__ = ["RunSupervisor", "run_index"]
