"""
Task envelope I/O and the append-only backup log.

Design constraints
------------------
- The primary task file is written atomically (temp file + replace).
- Serialization is deterministic for a given set of tasks, so saving twice
  without a change produces identical payloads.
- Every payload written to the primary file is also appended to the backup log,
  one ``<yyyyMMdd_HHmmss>=<json>`` line per save. The log is never truncated.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator

from .clock import Clock, backup_tag
from .data_models import Task
from .errors import MalformedStorageError, PersistenceError

FILE_FORMAT_VERSION = 1


@dataclass(frozen=True, slots=True)
class Envelope:
    """
    Parsed task file.

    Attributes
    ----------
    file_format_version:
        Version number found in the file.
    tasks:
        Tasks keyed by id.
    """

    file_format_version: int
    tasks: dict[str, Task] = field(default_factory=dict)


def serialize_envelope(tasks: Iterable[Task]) -> str:
    """
    Serialize tasks into the pretty-printed envelope JSON.

    Parameters
    ----------
    tasks:
        Tasks to persist.

    Returns
    -------
    str
        JSON text without a trailing newline.
    """
    payload: dict[str, Any] = {
        "fileFormatVersion": FILE_FORMAT_VERSION,
        "tasks": {task.task_id: task.to_dict() for task in tasks},
    }
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


def parse_envelope(text: str) -> Envelope:
    """
    Parse envelope JSON.

    Raises
    ------
    MalformedStorageError
        If the text is not JSON or does not have the envelope shape.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedStorageError(f"Invalid JSON in task file ({exc})") from exc

    if not isinstance(payload, dict):
        raise MalformedStorageError("Task file does not hold a JSON object")

    version = payload.get("fileFormatVersion")
    if not isinstance(version, int) or isinstance(version, bool):
        raise MalformedStorageError("Task file has no integer fileFormatVersion")

    raw_tasks = payload.get("tasks", {})
    if not isinstance(raw_tasks, dict):
        raise MalformedStorageError("Task file 'tasks' is not an object")

    tasks: dict[str, Task] = {}
    for key, raw in raw_tasks.items():
        if not isinstance(raw, dict):
            raise MalformedStorageError(f"Task {key!r} is not an object")
        try:
            task = Task.from_dict(raw, task_id=str(key))
        except (TypeError, ValueError) as exc:
            raise MalformedStorageError(f"Task {key!r} is invalid ({exc})") from exc
        tasks[task.task_id] = task
    return Envelope(file_format_version=version, tasks=tasks)


def read_envelope(path: Path) -> Envelope:
    """
    Read and parse the task file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    PersistenceError
        If the file exists but cannot be read.
    MalformedStorageError
        If the content cannot be parsed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError as exc:
        raise PersistenceError(f"Failed to read task file: {path} ({exc})") from exc
    return parse_envelope(text)


def write_text_atomic(path: Path, text: str) -> None:
    """
    Write UTF-8 text atomically.

    Raises
    ------
    PersistenceError
        If the file cannot be written. The previous content is left in place.
    """
    path = path.expanduser()
    temp_path = path.with_suffix(path.suffix + ".tmp")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
        os.replace(temp_path, path)
    except OSError as exc:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise PersistenceError(f"Failed to write {path} ({exc!s})") from exc


class BackupLog:
    """
    Append-only log of saved envelopes.

    Notes
    -----
    - Each call to :meth:`append` writes one ``<tag>=<payload>`` line.
    - Pretty-printed payloads contain newlines; they are written as-is, so an
      entry spans several physical lines and starts at a line that matches the
      tag pattern followed by ``=``.
    """

    def __init__(self, path: Path, *, clock: Clock) -> None:
        self._path = path
        self._clock = clock

    @property
    def path(self) -> Path:
        """Return the on-disk path of the log."""
        return self._path

    def append(self, payload: str) -> str:
        """
        Append one entry.

        Returns
        -------
        str
            The tag written for this entry.

        Raises
        ------
        PersistenceError
            If the log cannot be written.
        """
        tag = backup_tag(self._clock)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8", newline="\n") as handle:
                handle.write(f"{tag}={payload}\n")
                handle.flush()
        except OSError as exc:
            raise PersistenceError(f"Failed to append to backup log {self._path} ({exc!s})") from exc
        return tag

    def entries(self) -> list[tuple[str, str]]:
        """Return every ``(tag, payload)`` pair in the log, oldest first."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceError(f"Failed to read backup log {self._path} ({exc!s})") from exc
        return list(_split_entries(text))


def _is_entry_start(line: str) -> bool:
    head, sep, _ = line.partition("=")
    if not sep or len(head) != 15 or head[8] != "_":
        return False
    return head[:8].isdigit() and head[9:].isdigit()


def _split_entries(text: str) -> Iterator[tuple[str, str]]:
    tag: str | None = None
    body: list[str] = []
    for line in text.splitlines():
        if _is_entry_start(line):
            if tag is not None:
                yield tag, "\n".join(body)
            tag, _, first = line.partition("=")
            body = [first]
        elif tag is not None:
            body.append(line)
    if tag is not None:
        yield tag, "\n".join(body)
