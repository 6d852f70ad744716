"""
Command-line interface for cric.

Notes
-----
The CLI is intentionally thin. It parses arguments and delegates to
:class:`cric_engine.service.CricService`.

Safety posture (run command)
----------------------------
- An existing non-empty output is only removed after confirmation.
- ``--yes`` confirms up front; without it the user is asked on a terminal and
  the run is aborted when stdin is not interactive.
- Ctrl-C during a run cancels jlink and waits for the canceled outcome.
"""

from __future__ import annotations

import argparse
import sys
import threading
from datetime import datetime
from pathlib import Path

from cric_engine.command import render_command
from cric_engine.data_models import (
    COMPRESS_LEVELS,
    ENDIAN_NAMES,
    ModulePath,
    Task,
    describe_compress,
    describe_endian,
)
from cric_engine.errors import CricError, StartupError
from cric_engine.executor import OutputLine, OutputStream, RunOutcome
from cric_engine.log_setup import setup_logging
from cric_engine.paths_and_safety import ensure_data_directories, resolve_data_paths
from cric_engine.service import CricService

_ENDIAN_CODES = {name: code for code, name in ENDIAN_NAMES.items()}


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--data-root",
        default=None,
        help="Override cric data root (primarily for testing). If omitted, defaults are used.",
    )
    common.add_argument(
        "--log-verbose",
        action="store_true",
        help="Also log debug messages.",
    )

    parser = argparse.ArgumentParser(
        prog="cric",
        description="Custom Runtime Image Creator: manage and run jlink tasks",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", parents=[common], help="List tasks")

    show_p = sub.add_parser("show", parents=[common], help="Show a task and its jlink command")
    show_p.add_argument("--task", required=True, help="Task name")

    add_p = sub.add_parser("add", parents=[common], help="Add a task")
    add_p.add_argument("--name", required=True, help="Task name (unique, case-insensitive)")
    add_p.add_argument("--output", required=True, type=Path, help="Output directory for the image")
    add_p.add_argument("--description", default="", help="Free-text description")
    add_p.add_argument(
        "--jlink",
        type=Path,
        default=None,
        help="jlink executable for this task. If omitted, the global default is used.",
    )
    add_p.add_argument(
        "--module-path",
        action="append",
        default=[],
        metavar="DIR[=MOD,MOD...]",
        help="Module directory and the modules selected from it. Repeatable.",
    )
    add_p.add_argument("--bind-services", action="store_true", help="Pass --bind-services")
    add_p.add_argument(
        "--ignore-signing", action="store_true", help="Pass --ignore-signing-information"
    )
    add_p.add_argument("--no-headers", action="store_true", help="Pass --no-header-files")
    add_p.add_argument("--no-man-pages", action="store_true", help="Pass --no-man-pages")
    add_p.add_argument("--strip-debug", action="store_true", help="Pass --strip-debug")
    add_p.add_argument(
        "--compress",
        type=int,
        choices=sorted(COMPRESS_LEVELS),
        default=0,
        help="Compression level (0: none, 1: constant string sharing, 2: ZIP).",
    )
    add_p.add_argument(
        "--endian",
        choices=list(_ENDIAN_CODES),
        default="native",
        help="Byte order of the generated image (default: native).",
    )
    add_p.add_argument(
        "--launcher", default="", metavar="NAME=MODULE[/MAINCLASS]", help="Launcher command"
    )

    clone_p = sub.add_parser("clone", parents=[common], help="Clone a task")
    clone_p.add_argument("--task", required=True, help="Task name")

    remove_p = sub.add_parser("remove", parents=[common], help="Remove a task")
    target = remove_p.add_mutually_exclusive_group(required=True)
    target.add_argument("--task", help="Task name")
    target.add_argument("--all", action="store_true", help="Remove every task")

    run_p = sub.add_parser("run", parents=[common], help="Run jlink for a task")
    run_p.add_argument("--task", required=True, help="Task name")
    run_p.add_argument(
        "--yes",
        action="store_true",
        help="Remove an existing output without asking.",
    )

    options_p = sub.add_parser("options", parents=[common], help="Show or change global options")
    options_p.add_argument("--jlink", default=None, help="Default jlink executable ('' clears it)")
    options_p.add_argument(
        "--debug",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Pass -J-Djlink.debug=true to jlink",
    )
    options_p.add_argument(
        "--verbose",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Pass --verbose to jlink",
    )

    return parser


def parse_module_path(value: str) -> ModulePath:
    """
    Parse ``DIR`` or ``DIR=mod1,mod2`` into a :class:`ModulePath`.

    Raises
    ------
    ValueError
        If the directory part is empty.
    """
    directory, _, modules = value.rpartition("=") if "=" in value else (value, "", "")
    if not directory.strip():
        raise ValueError(f"Invalid --module-path value: {value!r}")
    selected = {name.strip() for name in modules.split(",") if name.strip()}
    return ModulePath(directory=Path(directory), selected_modules=selected)


def format_last_run(millis: int) -> str:
    """Render ``last_run`` epoch millis for display."""
    if millis <= 0:
        return "never"
    return datetime.fromtimestamp(millis / 1000).isoformat(sep=" ", timespec="seconds")


class _ConsoleSink:
    """Prints output lines; stderr for ERR, stdout otherwise."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __call__(self, line: OutputLine) -> None:
        stream = sys.stderr if line.stream is OutputStream.ERR else sys.stdout
        with self._lock:
            print(line.text, file=stream, flush=True)


def _confirm_delete_factory(assume_yes: bool):
    def confirm(path: Path) -> bool:
        if assume_yes:
            return True
        if not sys.stdin.isatty():
            print(f"Output {path} exists; pass --yes to replace it.", file=sys.stderr)
            return False
        answer = input(f"Delete existing output {path}? [y/N] ")
        return answer.strip().lower() in {"y", "yes"}

    return confirm


def _require_task(service: CricService, name: str) -> Task:
    task = service.find_profile(name)
    if task is None:
        raise CricError(f"No task named {name!r}")
    return task


def _cmd_list(service: CricService, args: argparse.Namespace) -> int:
    tasks = service.list_profiles()
    if not tasks:
        print("No tasks.")
        return 0
    for task in tasks:
        print(f"{task.name}\tlast run: {format_last_run(task.last_run)}")
    return 0


def _cmd_show(service: CricService, args: argparse.Namespace) -> int:
    task = _require_task(service, args.task)
    jlink = task.resolve_jlink(service.options.jlink_path)
    print(f"Name:        {task.name}")
    print(f"Id:          {task.task_id}")
    print(f"Description: {task.description}")
    print(f"jlink:       {jlink if jlink is not None else ''}")
    print(f"Output:      {task.output if task.output is not None else ''}")
    print(f"Compress:    {describe_compress(task.compress)}")
    print(f"Endian:      {describe_endian(task.endian)}")
    print(f"Launcher:    {task.launcher}")
    for module_path in task.module_paths:
        stale = module_path.stale_modules()
        suffix = f" (missing: {', '.join(stale)})" if stale else ""
        print(f"Module path: {module_path.directory} [{', '.join(module_path.sorted_modules())}]{suffix}")
    print(f"Last run:    {format_last_run(task.last_run)}")
    print("Command:")
    print("    " + render_command(service.command_for(task.task_id)))

    messages = service.validation_messages(task.task_id)
    if messages:
        print("Validation:")
        for message in messages:
            print(f"  {message}")
    else:
        print("Validation:  OK")
    return 0


def _cmd_add(service: CricService, args: argparse.Namespace) -> int:
    try:
        module_paths = [parse_module_path(value) for value in args.module_path]
    except ValueError as exc:
        print(f"ERROR: {exc}")
        return 2

    task = Task.new(args.name)
    task.description = args.description
    task.jlink = args.jlink
    task.output = args.output
    task.launcher = args.launcher
    task.bind_services = args.bind_services
    task.ignore_signing = args.ignore_signing
    task.no_headers = args.no_headers
    task.no_man_pages = args.no_man_pages
    task.strip_debug = args.strip_debug
    task.compress = args.compress
    task.endian = _ENDIAN_CODES[args.endian]
    task.module_paths = module_paths

    saved = service.save_profile(task)
    print(f"Added task {saved.name} ({saved.task_id})")
    return 0


def _cmd_clone(service: CricService, args: argparse.Namespace) -> int:
    source = _require_task(service, args.task)
    clone = service.clone_profile(source.task_id)
    print(f"Cloned {source.name} as {clone.name}")
    return 0


def _cmd_remove(service: CricService, args: argparse.Namespace) -> int:
    if args.all:
        service.delete_all_profiles()
        print("Removed all tasks")
        return 0
    task = _require_task(service, args.task)
    service.delete_profile(task.task_id)
    print(f"Removed task {task.name}")
    return 0


def _cmd_run(service: CricService, args: argparse.Namespace) -> int:
    task = _require_task(service, args.task)
    sink = _ConsoleSink()
    service.output_line.connect(sink)
    try:
        if not service.request_run(task.task_id, _confirm_delete_factory(args.yes)):
            return 2
        try:
            result = service.wait_for_run(task.task_id)
        except KeyboardInterrupt:
            service.cancel_run(task.task_id)
            result = service.wait_for_run(task.task_id)
    finally:
        service.output_line.disconnect(sink)

    if result is None or result.outcome is not RunOutcome.DONE:
        return 1
    return 0


def _cmd_options(service: CricService, args: argparse.Namespace) -> int:
    changes: dict[str, object] = {}
    if args.jlink is not None:
        changes["jlink_path"] = Path(args.jlink) if args.jlink.strip() else None
    if args.debug is not None:
        changes["jlink_debug"] = args.debug
    if args.verbose is not None:
        changes["jlink_verbose"] = args.verbose
    if changes:
        service.update_options(service.options.replace(**changes))

    options = service.options
    print(f"jlink:   {options.jlink_path if options.jlink_path is not None else ''}")
    print(f"debug:   {options.jlink_debug}")
    print(f"verbose: {options.jlink_verbose}")
    return 0


_COMMANDS = {
    "list": _cmd_list,
    "show": _cmd_show,
    "add": _cmd_add,
    "clone": _cmd_clone,
    "remove": _cmd_remove,
    "run": _cmd_run,
    "options": _cmd_options,
}


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Parameters
    ----------
    argv:
        Optional argument vector. If None, argparse uses sys.argv.

    Returns
    -------
    int
        Process exit code: 0 on success, 1 when a run failed or was canceled
        or cric could not start, 2 when a command was rejected.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    data_root = Path(args.data_root) if args.data_root else None

    try:
        paths = resolve_data_paths(data_root)
        ensure_data_directories(paths)
        setup_logging(paths.log_file, verbose=args.log_verbose)
        service = CricService.open(paths.data_root)
    except StartupError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    report = service.load_report
    if report is not None and not report.ok:
        if report.version_mismatch:
            print(
                f"WARNING: {report.path} has file format version {report.file_format_version}; "
                "tasks are read-only.",
                file=sys.stderr,
            )
        else:
            print(f"WARNING: {report.error}", file=sys.stderr)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(service, args)
    except CricError as exc:
        print(f"ERROR: {exc}")
        return 2
    finally:
        service.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
