"""
Data Models - Type definitions for the ingestion pipeline.

These dataclasses represent the data flowing through the pipeline stages.
Everything that crosses a stage boundary is frozen: a stage hands a value
on and never touches it again.
"""

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum


ROOT_CATEGORY = "ROOT_DIRECTORY"


class OutcomeStatus(Enum):
    """Final state of a single document."""
    INDEXED = "indexed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FileRef:
    """
    A located file plus its path metadata, pre-extraction.

    `relative_path` always uses "/" as separator so that IDs and
    categories are identical on every platform.
    """
    path: Path
    relative_path: str
    name: str
    extension: str

    @classmethod
    def from_path(cls, path: Path, root: Path) -> "FileRef":
        """Create a FileRef for `path`, which must live under `root`."""
        relative = PurePosixPath(*path.relative_to(root).parts)
        name = path.name
        # Text after the last dot; a name without a dot is its own type
        extension = name.rsplit(".", 1)[-1]
        return cls(
            path=path,
            relative_path=str(relative),
            name=name,
            extension=extension,
        )

    @property
    def document_id(self) -> str:
        """Root-relative path with a leading separator, e.g. "/b/c.bin"."""
        return "/" + self.relative_path

    @property
    def categories(self) -> Tuple[str, ...]:
        """Directory components of the root-relative path."""
        parts = tuple(p for p in PurePosixPath(self.relative_path).parent.parts if p)
        return parts or (ROOT_CATEGORY,)


@dataclass(frozen=True)
class Extraction:
    """What the extraction library gives back for one file."""
    text: str
    mime_type: str


@dataclass(frozen=True)
class Document:
    """
    Normalized, extracted representation of one file, ready for indexing.
    """
    id: str
    file_name: str
    file_type: str
    mime_type: str
    text: str
    categories: Tuple[str, ...]

    def to_solr(self) -> Dict[str, Any]:
        """Field names must match the collection schema."""
        return {
            "id": self.id,
            "filename": self.file_name,
            "filetype": self.file_type,
            "content_type": self.mime_type,
            "contents": self.text,
            "category": list(self.categories),
        }


@dataclass(frozen=True)
class Batch:
    """A bounded group of documents submitted together."""
    sequence: int
    documents: Tuple[Document, ...]

    def __len__(self) -> int:
        return len(self.documents)

    @property
    def label(self) -> str:
        return f"batch #{self.sequence} ({len(self.documents)} docs)"


@dataclass(frozen=True)
class IndexOutcome:
    """Per-document result. `collection` is None when indexing was never reached."""
    document_id: str
    status: OutcomeStatus
    collection: Optional[str] = None
    reason: str = ""

    @classmethod
    def indexed(cls, document_id: str, collection: str) -> "IndexOutcome":
        return cls(document_id, OutcomeStatus.INDEXED, collection)

    @classmethod
    def skipped(
        cls, document_id: str, reason: str, collection: Optional[str] = None
    ) -> "IndexOutcome":
        return cls(document_id, OutcomeStatus.SKIPPED, collection, reason)

    @classmethod
    def failed(
        cls, document_id: str, error: Any, collection: Optional[str] = None
    ) -> "IndexOutcome":
        return cls(document_id, OutcomeStatus.FAILED, collection, str(error))


@dataclass
class RunReport:
    """Statistics from an indexing run."""
    files_found: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    batches_submitted: int = 0
    commits: int = 0
    retries: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0
    failures: List[IndexOutcome] = field(default_factory=list)

    def record(self, outcome: IndexOutcome) -> None:
        """Fold one outcome into the counts."""
        if outcome.status is OutcomeStatus.INDEXED:
            self.indexed += 1
        elif outcome.status is OutcomeStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.failures.append(outcome)

    def failure_lines(self) -> List[str]:
        lines = []
        for outcome in self.failures:
            where = f" [{outcome.collection}]" if outcome.collection else ""
            lines.append(f"FAILED {outcome.document_id}{where}: {outcome.reason}")
        return lines

    def __str__(self) -> str:
        state = "cancelled" if self.cancelled else "complete"
        return (
            f"Run {state}: {self.files_found} files found, "
            f"{self.indexed} indexed, "
            f"{self.skipped} skipped, "
            f"{self.failed} failed "
            f"({self.batches_submitted} batches, {self.commits} commits, "
            f"{self.retries} retries) "
            f"in {self.duration_seconds:.1f}s"
        )
