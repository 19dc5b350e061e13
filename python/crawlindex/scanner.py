"""
Scanner - Lazy file system traversal.

Walks one root directory with os.scandir, pruning excluded directories
instead of filtering their contents afterwards. Produces FileRef objects
one at a time so the pipeline can start extracting before the walk ends.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncGenerator, Iterator, List

from .config import get_config, IndexerConfig
from .models import FileRef
from .errors import TraversalError, handle_error


logger = logging.getLogger(__name__)


def validate_root(root: Path) -> Path:
    """Resolve `root`, raising TraversalError if it can't be walked."""
    root = Path(root).expanduser()
    if not root.exists():
        raise TraversalError(root, "does not exist")
    if not root.is_dir():
        raise TraversalError(root, "is not a directory")
    return root.resolve()


class Scanner:
    """
    File system scanner with directory pruning.

    Exclusion rules come from the config at construction and are not
    changed afterwards:
    - directories named in `skip_dirs` are never descended into
    - any entry whose name starts with `hidden_prefix` is ignored
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._skip_dirs = frozenset(self.config.skip_dirs)
        self._hidden_prefix = self.config.hidden_prefix

    def iter_files(self, root: Path | None = None) -> Iterator[FileRef]:
        """
        Yield a FileRef for every included file under `root`.

        Raises TraversalError before yielding anything if the root is
        invalid. Each call re-walks the tree.
        """
        root = validate_root(root or self.config.root)
        yield from self._scan_directory(root, root)

    async def scan_iter(
        self,
        root: Path | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[FileRef, None]:
        """
        Streaming interface used by the pipeline.

        Stops as soon as `cancel_event` is set; the walk is never resumed.
        """
        for file_ref in self.iter_files(root):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Scan stopped by cancellation")
                return
            yield file_ref

    def _scan_directory(self, directory: Path, root: Path) -> Iterator[FileRef]:
        """Files of `directory` first, then its subdirectories in name order."""
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            if directory == root:
                raise TraversalError(root, str(e)) from e
            handle_error(e, directory, "scan_directory")
            return

        subdirs: List[Path] = []

        for entry in entries:
            if self._is_hidden(entry.name):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in self._skip_dirs:
                        logger.debug(f"Pruned directory: {entry.path}")
                        continue
                    subdirs.append(Path(entry.path))

                elif entry.is_file(follow_symlinks=False):
                    yield FileRef.from_path(Path(entry.path), root)

                else:
                    logger.debug(f"Skipped non-regular entry: {entry.path}")

            except OSError as e:
                handle_error(e, Path(entry.path), "scan_entry")
                continue

        for subdir in subdirs:
            yield from self._scan_directory(subdir, root)

    def _is_hidden(self, name: str) -> bool:
        return bool(self._hidden_prefix) and name.startswith(self._hidden_prefix)


def scan_directory(
    root: Path | None = None,
    config: IndexerConfig | None = None,
) -> List[FileRef]:
    """
    Convenience function to collect every FileRef under a root.

    Usage:
        for ref in scan_directory(Path("~/projects")):
            print(ref.document_id)
    """
    scanner = Scanner(config)
    return list(scanner.iter_files(root))
