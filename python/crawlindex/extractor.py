"""
Extractor - Text extraction and the extraction worker pool.

The Extractor turns one file into (text, MIME type) or raises
ExtractionError. The ExtractionPool runs a fixed number of async workers
that pull FileRefs from a bounded queue, run the Extractor in a thread
pool, and hand finished Documents to the batching buffer.
"""

import asyncio
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional, Protocol, Set

from .config import get_config, IndexerConfig
from .models import Document, Extraction, FileRef, IndexOutcome
from .errors import ExtractionError, handle_error


logger = logging.getLogger(__name__)


# Bytes sampled when deciding whether a file is text
SNIFF_BYTES = 8192

# Printable ASCII + tab, LF, CR
_TEXT_CHARS = set(range(32, 127)) | {9, 10, 13}


class ExtractionBackend(Protocol):
    def extract(self, path: Path) -> Extraction: ...


def is_binary_content(content: bytes, sample_size: int = SNIFF_BYTES) -> bool:
    """Detect binary content by null bytes and the share of non-text bytes."""
    if not content:
        return False

    sample = content[:sample_size]
    if b"\x00" in sample:
        return True

    # UTF-8 text outside ASCII is still text
    try:
        sample.decode("utf-8")
        return False
    except UnicodeDecodeError as e:
        # A multi-byte sequence cut off by the sample boundary is fine
        if e.start >= len(sample) - 3 and e.reason == "unexpected end of data":
            return False

    non_text = sum(1 for byte in sample if byte not in _TEXT_CHARS)
    return (non_text / len(sample)) > 0.30


def guess_mime_type(path: Path, default: str = "application/octet-stream") -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or default


class Extractor:
    """
    Content extraction collaborator.

    PDFs go through pypdf, Word documents through python-docx, anything
    else is read as UTF-8 text unless it sniffs as binary.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    def extract(self, path: Path) -> Extraction:
        """
        Extract text and MIME type from one file.

        Raises ExtractionError for unreadable, oversized, binary or
        corrupt files.
        """
        try:
            size = path.stat().st_size
        except OSError as e:
            raise ExtractionError(path, f"unreadable file: {e}") from e

        if size > self.config.max_extract_bytes:
            raise ExtractionError(
                path, f"file too large ({size} bytes > {self.config.max_extract_bytes})"
            )

        suffix = path.suffix.lower()
        if suffix == ".pdf":
            return Extraction(self._extract_pdf(path), "application/pdf")
        if suffix == ".docx":
            return Extraction(
                self._extract_docx(path),
                "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            )
        return self._extract_text(path)

    def _extract_pdf(self, path: Path) -> str:
        """Extract PDF text page by page using pypdf."""
        from pypdf import PdfReader
        try:
            reader = PdfReader(str(path))
            text_parts = []
            for page in reader.pages:
                if text := page.extract_text():
                    text_parts.append(text)
            return "\n".join(text_parts)
        except Exception as e:
            raise ExtractionError(path, f"corrupt PDF: {e}") from e

    def _extract_docx(self, path: Path) -> str:
        """Extract paragraph text from a Word document."""
        from docx import Document as DocxDocument
        try:
            doc = DocxDocument(str(path))
            return "\n".join(p.text for p in doc.paragraphs if p.text)
        except Exception as e:
            raise ExtractionError(path, f"corrupt Word document: {e}") from e

    def _extract_text(self, path: Path) -> Extraction:
        """Read a plain text file, rejecting binary content."""
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise ExtractionError(path, f"unreadable file: {e}") from e

        if is_binary_content(raw):
            raise ExtractionError(path, "unsupported format (binary content)")

        text = raw.decode("utf-8", errors="replace")
        return Extraction(text, guess_mime_type(path, default="text/plain"))


def build_document(ref: FileRef, extraction: Extraction) -> Document:
    """Combine a FileRef with its extraction result."""
    return Document(
        id=ref.document_id,
        file_name=ref.name,
        file_type=ref.extension,
        mime_type=extraction.mime_type,
        text=extraction.text,
        categories=ref.categories,
    )


class ExtractionPool:
    """
    Fixed-size pool of extraction workers.

    Each worker claims one FileRef at a time from the path queue. A `None`
    on the queue stops one worker. Failures never leave the worker: they
    become Failed outcomes sent straight to the outcome sink.
    """

    def __init__(
        self,
        extractor: ExtractionBackend | None = None,
        config: IndexerConfig | None = None,
    ):
        self.config = config or get_config()
        self.extractor = extractor or Extractor(self.config)
        self._executor: ThreadPoolExecutor | None = None
        self._seen_ids: Set[str] = set()
        self.extracted = 0

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.extractor_concurrency,
                thread_name_prefix="extractor"
            )
        return self._executor

    @property
    def size(self) -> int:
        return self.config.extractor_concurrency

    async def run(
        self,
        path_queue: "asyncio.Queue[Optional[FileRef]]",
        buffer,
        outcomes: Callable[[IndexOutcome], None],
        cancel_event: asyncio.Event,
    ) -> None:
        """Run all workers until each has received its stop sentinel."""
        workers = [
            asyncio.create_task(
                self._worker(i, path_queue, buffer, outcomes, cancel_event),
                name=f"extract-{i}",
            )
            for i in range(self.size)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
        logger.info(f"Extracted text from {self.extracted} files")

    async def _worker(
        self,
        worker_id: int,
        path_queue: "asyncio.Queue[Optional[FileRef]]",
        buffer,
        outcomes: Callable[[IndexOutcome], None],
        cancel_event: asyncio.Event,
    ) -> None:
        while True:
            ref = await path_queue.get()
            try:
                if ref is None:
                    logger.debug(f"Extraction worker {worker_id} stopping")
                    return

                # Claim checkpoint: after cancellation queued files are not started
                if cancel_event.is_set():
                    outcomes(IndexOutcome.skipped(ref.document_id, "cancelled before extraction"))
                    continue

                document = await self.process(ref, outcomes)
                if document is not None:
                    await buffer.add(document)
            finally:
                path_queue.task_done()

    async def process(
        self,
        ref: FileRef,
        outcomes: Callable[[IndexOutcome], None],
    ) -> Optional[Document]:
        """
        Extract one file. Returns the Document, or None after reporting
        a Skipped/Failed outcome.
        """
        doc_id = ref.document_id
        if doc_id in self._seen_ids:
            logger.warning(f"Duplicate document id {doc_id}, skipping {ref.path}")
            outcomes(IndexOutcome.skipped(doc_id, "duplicate id"))
            return None
        self._seen_ids.add(doc_id)

        loop = asyncio.get_running_loop()
        try:
            extraction = await loop.run_in_executor(
                self._get_executor(), self.extractor.extract, ref.path
            )
        except Exception as e:
            # Anything the library throws costs this file only
            handle_error(e, ref.path, "extract")
            outcomes(IndexOutcome.failed(doc_id, e))
            return None

        self.extracted += 1
        logger.debug(f"Extracted {ref.path} ({len(extraction.text)} chars)")
        return build_document(ref, extraction)

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
