"""
jlink process execution.

Threading model
---------------
- :meth:`Executor.prepare` runs on the caller's thread, so a UI can show a
  confirmation dialog from the ``confirm_delete`` callback.
- One worker thread per run spawns jlink and waits for it to exit or for a
  cancel request. It never runs on the UI thread.
- Two reader threads per run drain stdout and stderr independently and forward
  each line to the sink, tagged with its stream. Lines keep their order within
  a stream; the two streams interleave as they arrive.

Cancellation
------------
Cancel terminates the process, waits up to ``grace_period`` seconds and then
kills it. A canceled run always ends with a "Canceled" summary line and the
task back in ``STARTABLE``.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Callable

from .clock import Clock, SystemClock, epoch_millis
from .command import build_command, render_command
from .data_models import Task
from .errors import (
    CricError,
    DestructiveActionDeclined,
    ProcessExecutionError,
    ProcessLaunchError,
    TaskAlreadyRunningError,
    TaskValidationError,
)
from .events import Event
from .options import GlobalOptions
from .paths_and_safety import output_needs_confirmation, remove_output_tree
from .run_state import RunStateMachine
from .task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 5.0
_POLL_INTERVAL = 0.1
_READER_JOIN_TIMEOUT = 5.0


class OutputStream(str, Enum):
    """Source tag of a log line."""

    INFO = "info"
    OUT = "out"
    ERR = "err"


@dataclass(frozen=True, slots=True)
class OutputLine:
    """One line for the log pane."""

    task_id: str
    stream: OutputStream
    text: str


class RunOutcome(str, Enum):
    """Terminal status of a run."""

    DONE = "done"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True, slots=True)
class RunResult:
    """
    Terminal report of one run.

    Attributes
    ----------
    task_id:
        Task that was run.
    task_name:
        Name at the time of the run.
    outcome:
        DONE, FAILED or CANCELED.
    exit_code:
        Process exit code, or None if the process never started.
    started_at_ms:
        Epoch millis when the run started.
    finished_at_ms:
        Epoch millis when the run ended.
    message:
        Human-readable summary.
    """

    task_id: str
    task_name: str
    outcome: RunOutcome
    exit_code: int | None
    started_at_ms: int
    finished_at_ms: int
    message: str


LogSink = Callable[[OutputLine], None]
ConfirmDelete = Callable[[Path], bool]

_SUMMARY = {
    RunOutcome.DONE: "Done",
    RunOutcome.FAILED: "Failed",
    RunOutcome.CANCELED: "Canceled",
}


class Executor:
    """
    Runs jlink once for one task.

    Parameters
    ----------
    task:
        Task to run. The executor keeps its own copy.
    options:
        Global options used to build the command.
    store:
        Store receiving the ``last_run`` update after a successful run.
    run_state:
        State machine transitioned for this task.
    sink:
        Receives every log line.
    clock:
        Time source for ``last_run`` and result timestamps.
    grace_period:
        Seconds to wait after terminate before killing on cancel.
    on_finished:
        Called with the :class:`RunResult` after the state went back to STARTABLE.
    """

    def __init__(
        self,
        task: Task,
        *,
        options: GlobalOptions,
        store: TaskStore,
        run_state: RunStateMachine,
        sink: LogSink,
        clock: Clock | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        on_finished: Callable[[RunResult], None] | None = None,
    ) -> None:
        self._task = task.copy()
        self._options = options
        self._store = store
        self._run_state = run_state
        self._sink = sink
        self._clock = clock or SystemClock()
        self._grace_period = grace_period
        self._on_finished = on_finished

        self._cancel = threading.Event()
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self._started_at_ms = 0
        self._result: RunResult | None = None

    @property
    def task_id(self) -> str:
        return self._task.task_id

    @property
    def result(self) -> RunResult | None:
        """The terminal result, None while running."""
        return self._result

    @property
    def command(self) -> list[str]:
        return build_command(self._task, self._options)

    def prepare(self, confirm_delete: ConfirmDelete | None = None) -> None:
        """
        Validate the task and clear a previous output.

        Parameters
        ----------
        confirm_delete:
            Asked before a non-empty output directory (or a file) is removed.
            None declines.

        Raises
        ------
        TaskValidationError
            If the task is not valid. Nothing else happens.
        DestructiveActionDeclined
            If removal of the existing output was not confirmed.
        OutputDirectoryError
            If the existing output could not be removed.
        """
        messages = self._task.validate(self._options)
        if messages:
            raise TaskValidationError(self._task.name, messages)

        output = self._task.output
        if output is None or not (output.exists() or output.is_symlink()):
            return
        if output_needs_confirmation(output):
            if confirm_delete is None or not confirm_delete(output):
                raise DestructiveActionDeclined(f"Kept existing output {output}; run aborted.")
        remove_output_tree(output)

    def start(self) -> None:
        """
        Enter CANCELABLE and launch the worker thread.

        Raises
        ------
        TaskAlreadyRunningError
            If this executor already started or the task is running elsewhere.
        """
        if self._thread is not None:
            raise TaskAlreadyRunningError(f"Task {self._task.name!r} was already started.")
        self._run_state.enter_run(self.task_id)
        self._started_at_ms = epoch_millis(self._clock)
        self._thread = threading.Thread(
            target=self._run, name=f"cric-executor-{self.task_id}", daemon=True
        )
        try:
            self._thread.start()
        except RuntimeError:
            self._run_state.leave_run(self.task_id)
            raise

    def cancel(self) -> bool:
        """
        Request cancellation.

        Returns
        -------
        bool
            False if the run already finished.
        """
        if self._done.is_set():
            return False
        self._cancel.set()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the run finished; return False on timeout."""
        return self._done.wait(timeout)

    def abandon(self) -> None:
        """Release waiters of an executor that failed before its worker started."""
        if self._thread is None or not self._thread.is_alive():
            self._done.set()

    def _emit(self, stream: OutputStream, text: str) -> None:
        self._sink(OutputLine(self.task_id, stream, text))

    def _make_result(self, outcome: RunOutcome, exit_code: int | None, message: str) -> RunResult:
        return RunResult(
            task_id=self.task_id,
            task_name=self._task.name,
            outcome=outcome,
            exit_code=exit_code,
            started_at_ms=self._started_at_ms,
            finished_at_ms=epoch_millis(self._clock),
            message=message,
        )

    def _run(self) -> None:
        result = self._make_result(RunOutcome.FAILED, None, "Run did not complete")
        try:
            result = self._execute()
        except Exception as exc:
            logger.exception("Run of task %s failed unexpectedly", self._task.name)
            self._emit(OutputStream.ERR, f"{type(exc).__name__}: {exc}")
            result = self._make_result(RunOutcome.FAILED, None, str(exc))
        finally:
            self._finish(result)

    def _execute(self) -> RunResult:
        task = self._task
        self._emit(OutputStream.INFO, f"Start task {task.name}")
        command = build_command(task, self._options)
        self._emit(OutputStream.INFO, render_command(command))

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as exc:
            error = ProcessLaunchError(f"Cannot start {command[0]!r}: {exc}")
            self._emit(OutputStream.ERR, str(error))
            return self._make_result(RunOutcome.FAILED, None, str(error))

        readers = [
            self._start_reader(process.stdout, OutputStream.OUT),
            self._start_reader(process.stderr, OutputStream.ERR),
        ]
        canceled = self._wait_for_exit(process)
        for reader in readers:
            reader.join(timeout=_READER_JOIN_TIMEOUT)

        exit_code = process.returncode
        if canceled:
            return self._make_result(RunOutcome.CANCELED, exit_code, "Canceled")

        if exit_code == 0:
            try:
                self._store.touch_last_run(task.task_id, self._started_at_ms)
            except CricError as exc:
                self._emit(OutputStream.ERR, f"Could not record last run: {exc}")
            return self._make_result(RunOutcome.DONE, 0, "Done")

        error = ProcessExecutionError(exit_code)
        self._emit(OutputStream.ERR, str(error))
        return self._make_result(RunOutcome.FAILED, exit_code, str(error))

    def _start_reader(self, stream: IO[str] | None, tag: OutputStream) -> threading.Thread:
        reader = threading.Thread(
            target=self._pump,
            args=(stream, tag),
            name=f"cric-{tag.value}-{self.task_id}",
            daemon=True,
        )
        reader.start()
        return reader

    def _pump(self, stream: IO[str] | None, tag: OutputStream) -> None:
        if stream is None:
            return
        try:
            for line in stream:
                self._emit(tag, line.rstrip("\r\n"))
        except (OSError, ValueError) as exc:
            logger.debug("Reader for %s stopped: %s", tag.value, exc)
        finally:
            stream.close()

    def _wait_for_exit(self, process: subprocess.Popen[str]) -> bool:
        """Wait for exit or cancel; return True if the run was canceled."""
        while process.poll() is None:
            if self._cancel.wait(timeout=_POLL_INTERVAL):
                self._terminate(process)
                return True
        return self._cancel.is_set()

    def _terminate(self, process: subprocess.Popen[str]) -> None:
        self._emit(OutputStream.INFO, "Canceling...")
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            process.wait(timeout=self._grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Task %s did not stop within %.1fs; killing it", self._task.name, self._grace_period
            )
            self._emit(
                OutputStream.ERR, f"Process did not stop within {self._grace_period:g}s; killing it"
            )
            process.kill()
            process.wait()

    def _finish(self, result: RunResult) -> None:
        self._result = result
        stream = OutputStream.INFO if result.outcome is RunOutcome.DONE else OutputStream.ERR
        self._emit(stream, f"{_SUMMARY[result.outcome]} task {self._task.name}")
        self._run_state.leave_run(self.task_id)
        try:
            if self._on_finished is not None:
                self._on_finished(result)
        finally:
            self._done.set()


class ExecutorManager:
    """
    Registry of active executors keyed by task id.

    Events
    ------
    run_finished(RunResult)
        Fired once per run after the executor left the registry.
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        run_state: RunStateMachine,
        sink: LogSink,
        clock: Clock | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self._store = store
        self._run_state = run_state
        self._sink = sink
        self._clock = clock or SystemClock()
        self._grace_period = grace_period
        self._lock = threading.Lock()
        self._executors: dict[str, Executor] = {}
        self._last_results: dict[str, RunResult] = {}

        self.run_finished = Event("run_finished")

    def start(
        self,
        task: Task,
        options: GlobalOptions,
        confirm_delete: ConfirmDelete | None = None,
    ) -> Executor:
        """
        Prepare and launch a run for ``task``.

        Raises
        ------
        TaskAlreadyRunningError
            If the task already has an active executor.
        TaskValidationError, DestructiveActionDeclined, OutputDirectoryError
            From :meth:`Executor.prepare`; the run state is not touched.
        """
        executor = Executor(
            task,
            options=options,
            store=self._store,
            run_state=self._run_state,
            sink=self._sink,
            clock=self._clock,
            grace_period=self._grace_period,
            on_finished=self._on_finished,
        )
        with self._lock:
            if task.task_id in self._executors:
                raise TaskAlreadyRunningError(f"Task {task.name!r} is already running.")
            self._executors[task.task_id] = executor

        try:
            executor.prepare(confirm_delete)
            executor.start()
        except BaseException:
            with self._lock:
                self._executors.pop(task.task_id, None)
            executor.abandon()
            raise
        return executor

    def get(self, task_id: str) -> Executor | None:
        with self._lock:
            return self._executors.get(task_id)

    def active_task_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._executors)

    def cancel(self, task_id: str) -> bool:
        """Request cancellation of ``task_id``; False if it is not running."""
        executor = self.get(task_id)
        if executor is None:
            return False
        return executor.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            executors = list(self._executors.values())
        for executor in executors:
            executor.cancel()

    def wait(self, task_id: str, timeout: float | None = None) -> bool:
        """Wait for ``task_id`` to finish; True if it is not running (anymore)."""
        executor = self.get(task_id)
        if executor is None:
            return True
        return executor.wait(timeout)

    def last_result(self, task_id: str) -> RunResult | None:
        """Return the result of the most recent finished run of ``task_id``."""
        with self._lock:
            return self._last_results.get(task_id)

    def _on_finished(self, result: RunResult) -> None:
        with self._lock:
            self._executors.pop(result.task_id, None)
            self._last_results[result.task_id] = result
        self.run_finished.emit(result)
