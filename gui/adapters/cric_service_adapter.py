"""Qt adapter for the engine CricService.

The engine owns persistence and process execution. The GUI talks to this
adapter via signals/slots so that no store write, directory removal or process
launch ever runs on the UI thread.

Threading model
--------------
- A single worker QObject lives on a dedicated QThread.
- The worker owns the CricService; requests reach it via queued Qt signals.
- Core events (output lines, run state, run finished) fire on executor threads
  and are re-emitted as Qt signals, which Qt delivers on the receiver's thread.
- Deleting an existing output needs a decision before the request is sent: the
  GUI asks the user first and passes ``allow_delete`` with the run request.
"""

from __future__ import annotations

from pathlib import Path

from PySide6.QtCore import QObject, Qt, QThread, Signal, Slot

from cric_engine.data_models import Task
from cric_engine.executor import OutputLine, RunResult
from cric_engine.run_state import RunState
from cric_engine.service import CricService


class CricServiceWorker(QObject):
    """Worker that owns the engine CricService and runs in a background thread."""

    profiles_loaded = Signal(object)  # list[Task]
    profile_saved = Signal(str)  # task_id
    profile_deleted = Signal(str)  # task_id
    profile_cloned = Signal(str, str)  # source task_id, clone task_id
    run_rejected = Signal(str)  # task_id
    error = Signal(str, str)  # task_id, message

    output_line = Signal(str, str, str)  # task_id, stream, text
    run_state_changed = Signal(str, str)  # task_id, state
    run_finished = Signal(str, str, str)  # task_id, outcome, message

    def __init__(self, data_root: Path | None = None, *, service: CricService | None = None) -> None:
        super().__init__()
        self._service = service if service is not None else CricService.open(data_root)
        self._service.output_line.connect(self._on_output_line)
        self._service.run_state_changed.connect(self._on_run_state_changed)
        self._service.run_finished.connect(self._on_run_finished)
        self._service.profiles_changed.connect(self.profiles_loaded.emit)

    @property
    def service(self) -> CricService:
        return self._service

    @Slot()
    def list_profiles(self) -> None:
        """List tasks and emit results."""
        try:
            tasks = self._service.list_profiles()
        except Exception as e:
            self.error.emit("", str(e))
            return
        self.profiles_loaded.emit(tasks)

    @Slot(object)
    def save_profile(self, task: object) -> None:
        """Save an edited task and emit its id."""
        if not isinstance(task, Task):
            self.error.emit("", f"Expected a Task, got {type(task).__name__}")
            return
        try:
            saved = self._service.save_profile(task)
        except Exception as e:
            self.error.emit(task.task_id, str(e))
            return
        self.profile_saved.emit(saved.task_id)

    @Slot(str)
    def delete_profile(self, task_id: str) -> None:
        """Delete task_id and emit completion."""
        try:
            self._service.delete_profile(task_id)
        except Exception as e:
            self.error.emit(task_id, str(e))
            return
        self.profile_deleted.emit(task_id)

    @Slot(str)
    def clone_profile(self, task_id: str) -> None:
        """Clone task_id and emit the clone's id."""
        try:
            clone = self._service.clone_profile(task_id)
        except Exception as e:
            self.error.emit(task_id, str(e))
            return
        self.profile_cloned.emit(task_id, clone.task_id)

    @Slot(str, bool)
    def request_run(self, task_id: str, allow_delete: bool) -> None:
        """Start a run; rejection reasons arrive as output lines."""
        try:
            started = self._service.request_run(task_id, lambda _path: allow_delete)
        except Exception as e:
            self.error.emit(task_id, str(e))
            return
        if not started:
            self.run_rejected.emit(task_id)

    @Slot(str)
    def cancel_run(self, task_id: str) -> None:
        self._service.cancel_run(task_id)

    def _on_output_line(self, line: OutputLine) -> None:
        self.output_line.emit(line.task_id, line.stream.value, line.text)

    def _on_run_state_changed(self, task_id: str, state: RunState) -> None:
        self.run_state_changed.emit(task_id, state.value)

    def _on_run_finished(self, result: RunResult) -> None:
        self.run_finished.emit(result.task_id, result.outcome.value, result.message)


class CricServiceAdapter(QObject):
    """Qt adapter that marshals CricService calls onto a worker thread."""

    # Requests (GUI emits these; wired as queued connections to worker slots)
    request_list_profiles = Signal()
    request_save_profile = Signal(object)
    request_delete_profile = Signal(str)
    request_clone_profile = Signal(str)
    request_start_run = Signal(str, bool)
    request_cancel_run = Signal(str)

    # Results (worker emits; adapter forwards)
    profiles_loaded = Signal(object)  # list[Task]
    profile_saved = Signal(str)  # task_id
    profile_deleted = Signal(str)  # task_id
    profile_cloned = Signal(str, str)  # source task_id, clone task_id
    run_rejected = Signal(str)  # task_id
    error = Signal(str, str)  # task_id, message
    output_line = Signal(str, str, str)  # task_id, stream, text
    run_state_changed = Signal(str, str)  # task_id, state
    run_finished = Signal(str, str, str)  # task_id, outcome, message

    def __init__(self, data_root: Path | None = None, *, service: CricService | None = None) -> None:
        super().__init__()

        self._thread = QThread()
        self._worker = CricServiceWorker(data_root=data_root, service=service)
        self._worker.moveToThread(self._thread)

        # Queue requests onto worker thread.
        self.request_list_profiles.connect(
            self._worker.list_profiles, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_save_profile.connect(
            self._worker.save_profile, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_delete_profile.connect(
            self._worker.delete_profile, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_clone_profile.connect(
            self._worker.clone_profile, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_start_run.connect(
            self._worker.request_run, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_cancel_run.connect(
            self._worker.cancel_run, type=Qt.ConnectionType.QueuedConnection
        )

        # Forward results to GUI.
        self._worker.profiles_loaded.connect(self.profiles_loaded)
        self._worker.profile_saved.connect(self.profile_saved)
        self._worker.profile_deleted.connect(self.profile_deleted)
        self._worker.profile_cloned.connect(self.profile_cloned)
        self._worker.run_rejected.connect(self.run_rejected)
        self._worker.error.connect(self.error)
        self._worker.output_line.connect(self.output_line)
        self._worker.run_state_changed.connect(self.run_state_changed)
        self._worker.run_finished.connect(self.run_finished)

        self._thread.start()

    def shutdown(self, timeout: float | None = None) -> None:
        """Cancel active runs, then stop the worker thread cleanly."""
        self._worker.service.shutdown(timeout)
        self._thread.quit()
        self._thread.wait()
