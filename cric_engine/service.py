"""
cric service (collaborator-facing surface).

Purpose
-------
Construct the core components once per process and expose the small set of
operations a user interface may call: list/get/save/delete/clone tasks,
request and cancel runs, and subscribe to change notifications.

Notes
-----
- Components are injected explicitly; there are no module-level singletons.
- Expected failures of a run request (invalid task, declined deletion,
  filesystem errors, a run already active) are turned into output lines and a
  False return value. Store mutations raise domain errors for the caller to show.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .clock import Clock, SystemClock
from .command import build_command
from .data_models import Task
from .errors import (
    DestructiveActionDeclined,
    FileSystemError,
    TaskAlreadyRunningError,
    TaskRunningError,
    TaskValidationError,
    UnknownTaskError,
)
from .events import Event
from .executor import (
    DEFAULT_GRACE_PERIOD,
    ConfirmDelete,
    ExecutorManager,
    OutputLine,
    OutputStream,
    RunResult,
)
from .options import GlobalOptions, load_options, save_options
from .paths_and_safety import DataPaths, ensure_data_directories, resolve_data_paths
from .run_state import RunState, RunStateMachine
from .storage import BackupLog
from .task_store import LoadReport, TaskStore

logger = logging.getLogger(__name__)

CLONE_SUFFIX = " (copy)"


class CricService:
    """
    Facade over store, run state and executors.

    Events
    ------
    output_line(OutputLine)
    run_state_changed(task_id, RunState)
    profiles_changed(list[Task])
    run_finished(RunResult)
    """

    def __init__(
        self,
        *,
        paths: DataPaths,
        store: TaskStore,
        options: GlobalOptions,
        run_state: RunStateMachine | None = None,
        clock: Clock | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self.paths = paths
        self.store = store
        self.run_state = run_state or RunStateMachine()
        self._options = options
        self._clock = clock or SystemClock()
        self.load_report: LoadReport | None = None

        self.output_line = Event("output_line")
        self.run_state_changed = Event("run_state_changed")
        self.profiles_changed = Event("profiles_changed")
        self.run_finished = Event("run_finished")

        self.executors = ExecutorManager(
            store=self.store,
            run_state=self.run_state,
            sink=self.output_line.emit,
            clock=self._clock,
            grace_period=grace_period,
        )

        self.store.tasks_changed.connect(self.profiles_changed.emit)
        self.run_state.state_changed.connect(self.run_state_changed.emit)
        self.executors.run_finished.connect(self.run_finished.emit)

    @classmethod
    def open(
        cls,
        data_root: Path | None = None,
        *,
        clock: Clock | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> "CricService":
        """
        Build a service for a data root and load its tasks.

        Raises
        ------
        StartupError
            If the data directories cannot be created or written.
        """
        paths = resolve_data_paths(data_root)
        ensure_data_directories(paths)
        clock = clock or SystemClock()

        store = TaskStore(paths.tasks_file, BackupLog(paths.tasks_backup_file, clock=clock), clock=clock)
        service = cls(
            paths=paths,
            store=store,
            options=load_options(paths.options_file),
            clock=clock,
            grace_period=grace_period,
        )
        service.load_report = store.load()
        return service

    @property
    def options(self) -> GlobalOptions:
        return self._options

    def update_options(self, options: GlobalOptions) -> None:
        """
        Replace and persist the global options.

        Raises
        ------
        PersistenceError
            If the options file cannot be written. The new options stay active.
        """
        self._options = options
        save_options(self.paths.options_file, options)

    def list_profiles(self) -> list[Task]:
        return self.store.list()

    def get_profile(self, task_id: str) -> Task | None:
        """Return an editable copy of a task, or None."""
        return self.store.get_by_id(task_id)

    def find_profile(self, name: str) -> Task | None:
        return self.store.get_by_name(name)

    def save_profile(self, task: Task) -> Task:
        """
        Add or update a task.

        Raises
        ------
        TaskRunningError
            If the task is running.
        InvalidTaskNameError, DuplicateTaskNameError
            If the name is blank or taken.
        PersistenceError, FileFormatVersionMismatchError
            If the store could not be written.
        """
        self._require_idle(task.task_id)
        return self.store.put(task)

    def delete_profile(self, task_id: str) -> None:
        self._require_idle(task_id)
        self.store.remove(task_id)
        if self.run_state.selected_task_id == task_id:
            self.run_state.select(None)

    def delete_all_profiles(self) -> None:
        if self.run_state.is_running():
            raise TaskRunningError("Cannot remove tasks while a run is active.")
        self.store.remove_all()
        self.run_state.select(None)

    def clone_profile(self, task_id: str) -> Task:
        """
        Duplicate a task under a new id and a free ``<name> (copy)`` name.

        Raises
        ------
        UnknownTaskError
            If ``task_id`` is not in the store.
        """
        source = self.store.get_by_id(task_id)
        if source is None:
            raise UnknownTaskError(f"Unknown task id: {task_id}")
        clone = source.duplicate(self.store.unique_name(source.name + CLONE_SUFFIX))
        return self.store.put(clone)

    def select_profile(self, task_id: str | None) -> None:
        self.run_state.select(task_id)

    def selected_profile(self) -> Task | None:
        task_id = self.run_state.selected_task_id
        return self.store.get_by_id(task_id) if task_id is not None else None

    def command_for(self, task_id: str) -> list[str]:
        return build_command(self._require(task_id), self._options)

    def validation_messages(self, task_id: str) -> list[str]:
        return self._require(task_id).validate(self._options)

    def is_running(self, task_id: str | None = None) -> bool:
        return self.run_state.is_running(task_id)

    def run_state_of(self, task_id: str) -> RunState:
        return self.run_state.state_of(task_id)

    def request_run(self, task_id: str, confirm_delete: ConfirmDelete | None = None) -> bool:
        """
        Start a run for ``task_id``.

        Parameters
        ----------
        task_id:
            Task to run.
        confirm_delete:
            Asked before an existing output is removed. None declines.

        Returns
        -------
        bool
            True if the run started. Otherwise the reason was written to
            ``output_line`` and the run state is unchanged.
        """
        task = self.store.get_by_id(task_id)
        if task is None:
            self._report(task_id, OutputStream.ERR, f"Unknown task id: {task_id}")
            return False

        try:
            self.executors.start(task, self._options, confirm_delete)
        except TaskValidationError as exc:
            self._report(task_id, OutputStream.ERR, f"Task {task.name} is not valid:")
            for message in exc.messages:
                self._report(task_id, OutputStream.ERR, f"  {message}")
            return False
        except DestructiveActionDeclined as exc:
            self._report(task_id, OutputStream.INFO, str(exc))
            return False
        except (FileSystemError, TaskAlreadyRunningError) as exc:
            self._report(task_id, OutputStream.ERR, str(exc))
            return False
        return True

    def cancel_run(self, task_id: str) -> bool:
        """Request cancellation; False if the task is not running."""
        return self.executors.cancel(task_id)

    def wait_for_run(self, task_id: str, timeout: float | None = None) -> RunResult | None:
        """
        Wait for a run to finish.

        Returns
        -------
        RunResult | None
            The result of the current or most recent run, or None if the task
            never ran or the wait timed out.
        """
        executor = self.executors.get(task_id)
        if executor is None:
            return self.executors.last_result(task_id)
        if not executor.wait(timeout):
            return None
        return executor.result

    def shutdown(self, timeout: float | None = None) -> None:
        """Cancel every active run and wait for each to finish."""
        active = self.executors.active_task_ids()
        self.executors.cancel_all()
        for task_id in active:
            if not self.executors.wait(task_id, timeout):
                logger.warning("Run of task %s did not finish during shutdown", task_id)

    def _require(self, task_id: str) -> Task:
        task = self.store.get_by_id(task_id)
        if task is None:
            raise UnknownTaskError(f"Unknown task id: {task_id}")
        return task

    def _require_idle(self, task_id: str) -> None:
        if self.run_state.is_running(task_id):
            raise TaskRunningError("Cannot modify a task while it is running.")

    def _report(self, task_id: str, stream: OutputStream, text: str) -> None:
        self.output_line.emit(OutputLine(task_id, stream, text))
