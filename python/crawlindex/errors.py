"""
Error Handling - Centralized error policies and custom exceptions.

This module defines the failure taxonomy of the ingestion pipeline and
how each failure is handled: which ones cost a single file, which ones
cost a batch, and which ones end the run.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Record a failure for this item, continue processing
    RETRY = auto()          # Retry the operation (with backoff)
    ABORT = auto()          # Stop the entire run


class IndexingError(Exception):
    """Base exception for indexing errors."""
    pass


class TraversalError(IndexingError):
    """The root directory is missing or not a directory."""
    def __init__(self, root: Path, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"Cannot traverse {root}: {reason}")


class ExtractionError(IndexingError):
    """Text could not be extracted from a single file."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(reason)


class IndexTransientError(IndexingError):
    """Backend failure that is likely to succeed if retried."""
    pass


class IndexPermanentError(IndexingError):
    """Backend rejected the batch; the same input will always fail."""
    pass


class CommitWarning(IndexingError):
    """A commit failed. Documents already added stay added."""
    pass


class ResourceError(IndexingError):
    """The backend client could not be opened or closed."""
    pass


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


# Error type to policy mapping. Order matters: subclasses before bases.
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    TraversalError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="{error}"
    ),
    ResourceError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Search backend unavailable: {error}"
    ),
    ExtractionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Could not extract {file}: {error}"
    ),
    IndexTransientError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.WARNING,
        message_template="Transient backend error for {file}: {error}"
    ),
    IndexPermanentError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.ERROR,
        message_template="Backend rejected {file}: {error}"
    ),
    CommitWarning: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Commit failed for {file}: {error}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path | str] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path (or collection / batch label) being processed
        context: Additional context for logging

    Returns:
        The action to take (SKIP, RETRY, ABORT)
    """
    # Look up policy for this error type (or its base classes)
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    # Format and log the message
    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action
