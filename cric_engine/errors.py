"""
Domain exceptions for cric.

Notes
-----
Core engine logic avoids raising generic exceptions. Every expected failure mode
maps to a domain exception with a clear meaning, and the service boundary turns
them into output lines or UI-facing messages.
"""

from __future__ import annotations

from typing import Sequence


class CricError(RuntimeError):
    """Base exception for all cric domain failures."""


class StartupError(CricError):
    """Raised when the application data directories cannot be prepared."""


class TaskValidationError(CricError):
    """Raised when a task fails validation and must not be run."""

    def __init__(self, task_name: str, messages: Sequence[str]) -> None:
        self.task_name = task_name
        self.messages = tuple(messages)
        super().__init__(f"Task {task_name!r} is not valid: " + "; ".join(self.messages))


class DestructiveActionDeclined(CricError):
    """Raised when the user declines to clear an existing output directory."""


class FileSystemError(CricError):
    """Base class for file-system failures surfaced to the user."""


class OutputDirectoryError(FileSystemError):
    """Raised when an existing output directory cannot be removed."""


class PersistenceError(FileSystemError):
    """Raised when the task file, backup log or options file cannot be written."""


class ProcessLaunchError(CricError):
    """Raised when the jlink process cannot be started."""


class ProcessExecutionError(CricError):
    """Raised when the jlink process exits with a non-zero code."""

    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code
        super().__init__(f"jlink exited with code {exit_code}")


class StorageError(CricError):
    """Base class for problems with the persisted task envelope."""


class MalformedStorageError(StorageError):
    """Raised when the task file cannot be parsed."""


class FileFormatVersionMismatchError(StorageError):
    """Raised when the task file was written by an unsupported format version."""

    def __init__(self, found: int, expected: int) -> None:
        self.found = found
        self.expected = expected
        super().__init__(
            f"Task file format version {found} is not supported (expected {expected}). "
            "The file is left untouched; saving is disabled."
        )


class TaskStoreError(CricError):
    """Base class for task store lookups and mutations."""


class UnknownTaskError(TaskStoreError):
    """Raised when a task id is not known to the store."""


class InvalidTaskNameError(TaskStoreError):
    """Raised when a task name is blank."""


class DuplicateTaskNameError(TaskStoreError):
    """Raised when a task name is already used by another task (case-insensitive)."""


class RunStateError(CricError):
    """Base class for run-state violations."""


class TaskAlreadyRunningError(RunStateError):
    """Raised when a run is requested for a task that is already running."""


class TaskRunningError(RunStateError):
    """Raised when a running task would be edited or removed."""
