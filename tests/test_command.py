from __future__ import annotations

import os
from pathlib import Path

from cric_engine.command import build_command, render_command
from cric_engine.data_models import ModulePath, Task
from cric_engine.options import GlobalOptions


def _demo_task() -> Task:
    task = Task.new("demo")
    task.jlink = Path("/opt/jdk/bin/jlink")
    task.output = Path("/tmp/img")
    task.module_paths = [ModulePath(Path("/mods"), {"java.logging", "java.base"})]
    task.compress = 2
    task.strip_debug = True
    return task


def test_demo_task_command_tail() -> None:
    command = build_command(_demo_task(), GlobalOptions(jlink_verbose=False))

    assert command == [
        str(Path("/opt/jdk/bin/jlink")),
        "--strip-debug",
        "--compress=2",
        "--module-path",
        str(Path("/mods")),
        "--add-modules",
        "java.base,java.logging",
        "--output",
        str(Path("/tmp/img")),
    ]


def test_boolean_flags_follow_fixed_order_regardless_of_assignment_order() -> None:
    task = _demo_task()
    task.strip_debug = True
    task.no_man_pages = True
    task.no_headers = True
    task.ignore_signing = True
    task.bind_services = True

    command = build_command(task, GlobalOptions(jlink_verbose=False))

    assert command[1:7] == [
        "--bind-services",
        "--ignore-signing-information",
        "--no-header-files",
        "--no-man-pages",
        "--strip-debug",
        "--compress=2",
    ]


def test_debug_precedes_verbose() -> None:
    command = build_command(_demo_task(), GlobalOptions(jlink_debug=True, jlink_verbose=True))
    assert command[1:3] == ["-J-Djlink.debug=true", "--verbose"]


def test_endian_is_two_tokens_and_only_when_not_native() -> None:
    task = _demo_task()
    assert "--endian" not in build_command(task, GlobalOptions())

    task.endian = 2
    command = build_command(task, GlobalOptions())
    index = command.index("--endian")
    assert command[index + 1] == "big"
    assert command[index - 1] == "--compress=2"


def test_module_paths_join_with_pathsep_and_modules_are_not_deduplicated() -> None:
    task = _demo_task()
    task.module_paths.append(ModulePath(Path("/more"), {"java.base", "app"}))

    command = build_command(task, GlobalOptions())

    module_path = command[command.index("--module-path") + 1]
    add_modules = command[command.index("--add-modules") + 1]
    assert module_path == os.pathsep.join([str(Path("/mods")), str(Path("/more"))])
    assert add_modules == "java.base,java.logging,app,java.base"


def test_launcher_precedes_output() -> None:
    task = _demo_task()
    task.launcher = "  demo=demo.app/demo.Main  "

    command = build_command(task, GlobalOptions())

    assert command[-4:] == ["--launcher", "demo=demo.app/demo.Main", "--output", str(Path("/tmp/img"))]


def test_global_jlink_used_when_task_has_none() -> None:
    task = _demo_task()
    task.jlink = None
    command = build_command(task, GlobalOptions(jlink_path=Path("/usr/bin/jlink")))
    assert command[0] == str(Path("/usr/bin/jlink"))


def test_render_command_puts_each_token_on_a_continuation_line() -> None:
    rendered = render_command(["jlink", "--compress=2", "--output", "/tmp/img"])
    assert rendered == "jlink \\\n    --compress=2 \\\n    --output \\\n    /tmp/img"
