"""
jlink command-line construction.

The argument vector is part of the user-facing contract: it is shown verbatim
before a run, so token order is fixed. Execution always uses the discrete
vector; :func:`render_command` exists for display only.
"""

from __future__ import annotations

import os

from .data_models import ENDIAN_NAMES, Task
from .options import GlobalOptions

DISPLAY_SEPARATOR = " \\\n    "

# Boolean task attribute -> jlink flag, in emission order.
BOOLEAN_FLAGS: tuple[tuple[str, str], ...] = (
    ("bind_services", "--bind-services"),
    ("ignore_signing", "--ignore-signing-information"),
    ("no_headers", "--no-header-files"),
    ("no_man_pages", "--no-man-pages"),
    ("strip_debug", "--strip-debug"),
)


def build_command(task: Task, options: GlobalOptions) -> list[str]:
    """
    Build the jlink argument vector for a task.

    Parameters
    ----------
    task:
        Task to build for. It is not validated here.
    options:
        Global options (default jlink path, debug and verbose flags).

    Returns
    -------
    list[str]
        ``argv`` with the executable first. Module selections are concatenated
        across module paths without de-duplication.
    """
    jlink = task.resolve_jlink(options.jlink_path)
    command: list[str] = [str(jlink) if jlink is not None else ""]

    if options.jlink_debug:
        command.append("-J-Djlink.debug=true")
    if options.jlink_verbose:
        command.append("--verbose")

    for attribute, flag in BOOLEAN_FLAGS:
        if getattr(task, attribute):
            command.append(flag)

    command.append(f"--compress={task.compress}")

    if task.endian > 0:
        command.extend(["--endian", ENDIAN_NAMES.get(task.endian, str(task.endian))])

    directories: list[str] = []
    modules: list[str] = []
    for module_path in task.module_paths:
        directories.append(str(module_path.directory) if module_path.directory is not None else "")
        modules.extend(module_path.sorted_modules())

    command.extend(["--module-path", os.pathsep.join(directories)])
    command.extend(["--add-modules", ",".join(modules)])

    if task.launcher.strip():
        command.extend(["--launcher", task.launcher.strip()])

    command.extend(["--output", str(task.output) if task.output is not None else ""])
    return command


def render_command(command: list[str]) -> str:
    """Join an argument vector for display, one option per continuation line."""
    return DISPLAY_SEPARATOR.join(command)
