"""
Run state tracking.

Each task id has its own state: ``STARTABLE`` while idle, ``CANCELABLE`` while a
run is active. Tasks without an entry are idle. Several tasks may run at the
same time; one task may not run twice.

The currently selected task is tracked independently of run state and is only
used to decide what a summary view shows.
"""

from __future__ import annotations

import threading
from enum import Enum

from .errors import TaskAlreadyRunningError
from .events import Event


class RunState(str, Enum):
    """Run state of a single task."""

    STARTABLE = "startable"
    CANCELABLE = "cancelable"


class RunStateMachine:
    """
    Thread-safe per-task run state plus the current selection.

    Events
    ------
    state_changed(task_id, RunState)
        Fired after every transition, outside the lock.
    selection_changed(task_id | None)
        Fired when the selection changes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running: set[str] = set()
        self._selected: str | None = None

        self.state_changed = Event("state_changed")
        self.selection_changed = Event("selection_changed")

    def state_of(self, task_id: str) -> RunState:
        with self._lock:
            return RunState.CANCELABLE if task_id in self._running else RunState.STARTABLE

    def is_running(self, task_id: str | None = None) -> bool:
        """
        Return True if ``task_id`` is running, or if any task is when it is None.

        Controls that must not be touched mid-run are gated on this.
        """
        with self._lock:
            if task_id is None:
                return bool(self._running)
            return task_id in self._running

    def running_task_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._running)

    def enter_run(self, task_id: str) -> None:
        """
        Move ``task_id`` from STARTABLE to CANCELABLE.

        Raises
        ------
        TaskAlreadyRunningError
            If the task is already CANCELABLE.
        """
        with self._lock:
            if task_id in self._running:
                raise TaskAlreadyRunningError(f"Task {task_id} is already running.")
            self._running.add(task_id)
        self.state_changed.emit(task_id, RunState.CANCELABLE)

    def leave_run(self, task_id: str) -> None:
        """Move ``task_id`` back to STARTABLE. Idle tasks are left alone."""
        with self._lock:
            if task_id not in self._running:
                return
            self._running.discard(task_id)
        self.state_changed.emit(task_id, RunState.STARTABLE)

    @property
    def selected_task_id(self) -> str | None:
        with self._lock:
            return self._selected

    def select(self, task_id: str | None) -> None:
        with self._lock:
            if task_id == self._selected:
                return
            self._selected = task_id
        self.selection_changed.emit(task_id)
