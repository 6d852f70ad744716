"""
JSON-backed task store.

This module owns the canonical task instances and their on-disk envelope.

Threading
---------
Every read and mutation runs under one re-entrant lock, so the sorted list seen
by readers never observes a half-applied change. Listeners are notified after
the lock is released.

Persistence
-----------
Every mutation is persisted immediately. A save writes the primary file
atomically, appends the same payload to the backup log, then reloads from disk
so memory mirrors exactly what was persisted.
"""

from __future__ import annotations

import logging
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path

from .clock import Clock, SystemClock, backup_tag
from .data_models import Task
from .errors import (
    DuplicateTaskNameError,
    FileFormatVersionMismatchError,
    InvalidTaskNameError,
    MalformedStorageError,
    PersistenceError,
    UnknownTaskError,
)
from .events import Event
from .storage import FILE_FORMAT_VERSION, BackupLog, read_envelope, serialize_envelope, write_text_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LoadReport:
    """
    Outcome of :meth:`TaskStore.load`.

    Attributes
    ----------
    path:
        Task file that was read.
    found:
        False when the file did not exist (an empty store, not an error).
    file_format_version:
        Version found in the file, or None when nothing was parsed.
    version_mismatch:
        True when the version differs from :data:`FILE_FORMAT_VERSION`. The
        store is then read-only.
    error:
        Parse or read error message when the file was unusable.
    quarantined_path:
        Copy of an unusable file kept aside before the store fell back to empty.
    """

    path: Path
    found: bool
    file_format_version: int | None = None
    version_mismatch: bool = False
    error: str | None = None
    quarantined_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.version_mismatch


def _name_key(name: str | None) -> str:
    return (name or "").strip().casefold()


class TaskStore:
    """
    Keyed collection of tasks with name-uniqueness validation.

    Parameters
    ----------
    tasks_path:
        Primary envelope file.
    backup_log:
        Append-only log receiving a copy of every saved envelope.
    clock:
        Source of the tag used to name quarantined copies of an unusable file.
    """

    def __init__(self, tasks_path: Path, backup_log: BackupLog, *, clock: Clock | None = None) -> None:
        self._tasks_path = tasks_path
        self._backup_log = backup_log
        self._clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._sorted: list[Task] = []
        self._file_format_version = FILE_FORMAT_VERSION
        self._read_only_reason: FileFormatVersionMismatchError | None = None

        self.tasks_changed = Event("tasks_changed")

    @property
    def path(self) -> Path:
        return self._tasks_path

    @property
    def file_format_version(self) -> int:
        """Version of the last loaded file (the current version when nothing was loaded)."""
        with self._lock:
            return self._file_format_version

    @property
    def read_only(self) -> bool:
        """True after loading a file of an unsupported format version."""
        with self._lock:
            return self._read_only_reason is not None

    def list(self) -> list[Task]:
        """Return copies of all tasks sorted by name, case-insensitive."""
        with self._lock:
            return [task.copy() for task in self._sorted]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def get_by_id(self, task_id: str) -> Task | None:
        """Return a copy of the task with ``task_id``, or None."""
        with self._lock:
            task = self._tasks.get(task_id)
            return task.copy() if task is not None else None

    def get_by_name(self, name: str) -> Task | None:
        """
        Return a copy of the first task (in list order) named ``name``, ignoring case.

        A miss is logged and returns None; it is not an error.
        """
        key = _name_key(name)
        with self._lock:
            for task in self._sorted:
                if _name_key(task.name) == key:
                    return task.copy()
        logger.info("Task not found: %s", name)
        return None

    def exists(self, name: str) -> bool:
        """Return True if any task is named ``name``, ignoring case."""
        key = _name_key(name)
        with self._lock:
            return any(_name_key(task.name) == key for task in self._sorted)

    def is_name_valid(self, old_name: str | None, new_name: str | None) -> bool:
        """
        Check whether a task currently named ``old_name`` may be renamed to ``new_name``.

        Parameters
        ----------
        old_name:
            Current name of the task being edited, or None for a new task.
        new_name:
            Proposed name.

        Returns
        -------
        bool
            False for a blank name, or when the name (ignoring case) belongs to
            any task that is not the one being renamed.
        """
        if new_name is None or not new_name.strip():
            return False
        new_key = _name_key(new_name)
        old_key = _name_key(old_name) if old_name is not None else None
        with self._lock:
            for task in self._tasks.values():
                key = _name_key(task.name)
                if key == new_key and key != old_key:
                    return False
        return True

    def unique_name(self, base: str) -> str:
        """Return ``base`` or the first free ``base (N)`` name."""
        with self._lock:
            if not self.exists(base):
                return base
            n = 2
            while self.exists(f"{base} ({n})"):
                n += 1
            return f"{base} ({n})"

    def put(self, task: Task) -> Task:
        """
        Add or replace a task and persist the store.

        Parameters
        ----------
        task:
            Task to store. The store keeps its own copy.

        Returns
        -------
        Task
            A copy of the stored task.

        Raises
        ------
        InvalidTaskNameError
            If the name is blank.
        DuplicateTaskNameError
            If another task already uses the name (ignoring case).
        PersistenceError, FileFormatVersionMismatchError
            If the store cannot be saved. The in-memory change is kept.
        """
        name = task.name.strip()
        if not name:
            raise InvalidTaskNameError("Task name must not be blank.")

        with self._lock:
            key = _name_key(name)
            for other in self._tasks.values():
                if other.task_id != task.task_id and _name_key(other.name) == key:
                    raise DuplicateTaskNameError(f"A task named {other.name!r} already exists.")

            stored = task.copy()
            stored.name = name
            self._tasks[stored.task_id] = stored
            self._resort()
            result = stored.copy()

        self._notify()
        self.save()
        return result

    def remove(self, task_id: str) -> None:
        """
        Remove a task and persist the store.

        Raises
        ------
        UnknownTaskError
            If ``task_id`` is not in the store.
        """
        with self._lock:
            if task_id not in self._tasks:
                raise UnknownTaskError(f"Unknown task id: {task_id}")
            del self._tasks[task_id]
            self._resort()
        self._notify()
        self.save()

    def remove_all(self) -> None:
        """Remove every task and persist the store."""
        with self._lock:
            self._tasks.clear()
            self._resort()
        self._notify()
        self.save()

    def touch_last_run(self, task_id: str, millis: int) -> None:
        """
        Record the start time of a successful run and persist the store.

        Raises
        ------
        UnknownTaskError
            If the task was removed meanwhile.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise UnknownTaskError(f"Unknown task id: {task_id}")
            task.last_run = millis
        self._notify()
        self.save()

    def load(self) -> LoadReport:
        """
        Replace the in-memory tasks with the content of the task file.

        Returns
        -------
        LoadReport
            What was found. A missing file yields an empty store. An unusable
            file yields an empty store and a quarantined copy of the file.
        """
        path = self._tasks_path
        try:
            envelope = read_envelope(path)
        except FileNotFoundError:
            with self._lock:
                self._tasks = {}
                self._file_format_version = FILE_FORMAT_VERSION
                self._read_only_reason = None
                self._resort()
            self._notify()
            return LoadReport(path=path, found=False)
        except (MalformedStorageError, PersistenceError) as exc:
            quarantined = self._quarantine(path)
            logger.error(
                "Task file %s is unusable (%s). Starting with an empty task list; "
                "the original file was copied to %s.",
                path,
                exc,
                quarantined,
            )
            with self._lock:
                self._tasks = {}
                self._file_format_version = FILE_FORMAT_VERSION
                self._read_only_reason = None
                self._resort()
            self._notify()
            return LoadReport(path=path, found=True, error=str(exc), quarantined_path=quarantined)

        mismatch = envelope.file_format_version != FILE_FORMAT_VERSION
        with self._lock:
            self._tasks = envelope.tasks
            self._file_format_version = envelope.file_format_version
            self._read_only_reason = (
                FileFormatVersionMismatchError(envelope.file_format_version, FILE_FORMAT_VERSION)
                if mismatch
                else None
            )
            self._resort()
        if mismatch:
            logger.warning(
                "Task file %s has format version %s, expected %s; the store is read-only.",
                path,
                envelope.file_format_version,
                FILE_FORMAT_VERSION,
            )
        self._notify()
        return LoadReport(
            path=path,
            found=True,
            file_format_version=envelope.file_format_version,
            version_mismatch=mismatch,
        )

    def save(self) -> str:
        """
        Persist all tasks.

        Returns
        -------
        str
            The JSON payload that was written.

        Raises
        ------
        FileFormatVersionMismatchError
            If the store was loaded from an unsupported format version.
        PersistenceError
            If the primary file or the backup log cannot be written.
        """
        with self._lock:
            if self._read_only_reason is not None:
                raise self._read_only_reason
            payload = serialize_envelope(self._tasks.values())
            write_text_atomic(self._tasks_path, payload + "\n")
            self._backup_log.append(payload)
            self._reload_after_save()
        return payload

    def _reload_after_save(self) -> None:
        try:
            envelope = read_envelope(self._tasks_path)
        except (OSError, MalformedStorageError, PersistenceError) as exc:
            logger.warning("Reload after save failed for %s (%s)", self._tasks_path, exc)
            return
        self._tasks = envelope.tasks
        self._file_format_version = envelope.file_format_version
        self._resort()

    def _quarantine(self, path: Path) -> Path | None:
        target = path.with_name(f"{path.name}.corrupt-{backup_tag(self._clock)}")
        try:
            shutil.copy2(path, target)
        except OSError as exc:
            logger.error("Could not keep a copy of unusable task file %s (%s)", path, exc)
            return None
        return target

    def _resort(self) -> None:
        self._sorted = sorted(self._tasks.values(), key=lambda task: _name_key(task.name))

    def _notify(self) -> None:
        self.tasks_changed.emit(self.list())
