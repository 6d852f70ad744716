from __future__ import annotations

import io
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest

import cric.cli as cli_module
from cric_engine.data_models import ModulePath

FakeJlinkFactory = Callable[[str], Path]

SUCCESS = """
print("jlink ok")
sys.exit(0)
"""

FAILURE = """
print("jlink broke", file=sys.stderr)
sys.exit(4)
"""


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _run(data_root: Path, *args: str) -> int:
    return cli_module.main([args[0], "--data-root", str(data_root), *args[1:]])


def _add(data_root: Path, tmp_path: Path, name: str, jlink: Path, *extra: str) -> int:
    mods = tmp_path / "mods"
    mods.mkdir(exist_ok=True)
    return _run(
        data_root,
        "add",
        "--name",
        name,
        "--output",
        str(tmp_path / "out" / name),
        "--jlink",
        str(jlink),
        "--module-path",
        f"{mods}=java.base",
        *extra,
    )


def test_add_list_show(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    data = tmp_path / "data"
    mods = tmp_path / "mods"
    mods.mkdir()
    (mods / "java.base.jmod").write_bytes(b"")

    rc = _run(
        data,
        "add",
        "--name",
        "demo",
        "--output",
        str(tmp_path / "img"),
        "--jlink",
        str(tmp_path / "jlink"),
        "--module-path",
        f"{mods}=java.logging,java.base",
        "--strip-debug",
        "--compress",
        "2",
        "--endian",
        "big",
    )
    assert rc == 0
    assert "Added task demo" in capsys.readouterr().out

    assert _run(data, "list") == 0
    out = capsys.readouterr().out
    assert "demo\tlast run: never" in out

    assert _run(data, "show", "--task", "DEMO") == 0
    out = capsys.readouterr().out
    assert "Compress:    ZIP" in out
    assert "Endian:      big" in out
    assert "(missing: java.logging)" in out
    assert "--strip-debug \\\n    --compress=2 \\\n    --endian \\\n    big" in out
    assert f"Invalid jlink: {tmp_path / 'jlink'}" in out


def test_list_empty(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path / "data", "list") == 0
    assert "No tasks." in capsys.readouterr().out


def test_duplicate_name_returns_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    data = tmp_path / "data"
    assert _add(data, tmp_path, "Build", tmp_path / "jlink") == 0
    capsys.readouterr()

    rc = _add(data, tmp_path, "build", tmp_path / "jlink")

    out = capsys.readouterr().out
    assert rc == 2
    assert "ERROR:" in out


def test_unknown_task_returns_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = _run(tmp_path / "data", "show", "--task", "ghost")
    assert rc == 2
    assert "ERROR: No task named 'ghost'" in capsys.readouterr().out


def test_clone_and_remove(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    data = tmp_path / "data"
    _add(data, tmp_path, "demo", tmp_path / "jlink")

    assert _run(data, "clone", "--task", "demo") == 0
    assert "Cloned demo as demo (copy)" in capsys.readouterr().out

    assert _run(data, "remove", "--task", "demo") == 0
    _run(data, "list")
    out = capsys.readouterr().out
    assert "demo (copy)\t" in out
    assert "demo\t" not in out

    assert _run(data, "remove", "--all") == 0
    _run(data, "list")
    assert "No tasks." in capsys.readouterr().out


def test_parse_module_path() -> None:
    assert cli_module.parse_module_path("/mods=b, a") == ModulePath(Path("/mods"), {"a", "b"})
    assert cli_module.parse_module_path("/mods") == ModulePath(Path("/mods"), set())
    with pytest.raises(ValueError):
        cli_module.parse_module_path("=a")


def test_run_success_returns_0(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], make_fake_jlink: FakeJlinkFactory
) -> None:
    data = tmp_path / "data"
    _add(data, tmp_path, "demo", make_fake_jlink(SUCCESS))
    capsys.readouterr()

    rc = _run(data, "run", "--task", "demo")

    out = capsys.readouterr().out
    assert rc == 0
    assert "Start task demo" in out
    assert "jlink ok" in out
    assert "Done task demo" in out

    _run(data, "list")
    assert "last run: never" not in capsys.readouterr().out


def test_run_failure_returns_1(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], make_fake_jlink: FakeJlinkFactory
) -> None:
    data = tmp_path / "data"
    _add(data, tmp_path, "demo", make_fake_jlink(FAILURE))
    capsys.readouterr()

    rc = _run(data, "run", "--task", "demo")

    err = capsys.readouterr().err
    assert rc == 1
    assert "jlink broke" in err
    assert "jlink exited with code 4" in err
    assert "Failed task demo" in err


def test_run_invalid_task_returns_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    data = tmp_path / "data"
    _add(data, tmp_path, "demo", tmp_path / "missing-jlink")
    capsys.readouterr()

    rc = _run(data, "run", "--task", "demo")

    err = capsys.readouterr().err
    assert rc == 2
    assert "Task demo is not valid:" in err


def test_run_keeps_existing_output_without_yes(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
    make_fake_jlink: FakeJlinkFactory,
) -> None:
    data = tmp_path / "data"
    _add(data, tmp_path, "demo", make_fake_jlink(SUCCESS))
    output = tmp_path / "out" / "demo"
    output.mkdir(parents=True)
    (output / "release").write_text("old", encoding="utf-8")
    monkeypatch.setattr(sys, "stdin", io.StringIO(""))

    rc = _run(data, "run", "--task", "demo")

    assert rc == 2
    assert "pass --yes" in capsys.readouterr().err
    assert (output / "release").exists()

    rc = _run(data, "run", "--task", "demo", "--yes")

    assert rc == 0
    assert not (output / "release").exists()


def test_options_update_and_show(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    data = tmp_path / "data"

    rc = _run(data, "options", "--jlink", "/opt/jdk/bin/jlink", "--debug", "--no-verbose")

    out = capsys.readouterr().out
    assert rc == 0
    assert "debug:   True" in out
    assert "verbose: False" in out
    stored = json.loads((data / "options.json").read_text(encoding="utf-8"))
    assert stored["jlink_debug"] is True
    assert stored["jlink_path"] == str(Path("/opt/jdk/bin/jlink"))

    _run(data, "options", "--jlink", "")
    assert "jlink:   \n" in capsys.readouterr().out


def test_startup_error_returns_1(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")

    rc = _run(blocker, "list")

    assert rc == 1
    assert "ERROR:" in capsys.readouterr().err


def test_version_mismatch_warns_and_refuses_writes(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    data = tmp_path / "data"
    data.mkdir()
    (data / "tasks.json").write_text(
        json.dumps({"fileFormatVersion": 2, "tasks": {}}), encoding="utf-8"
    )

    assert _run(data, "list") == 0
    assert "tasks are read-only" in capsys.readouterr().err

    rc = _add(data, tmp_path, "demo", tmp_path / "jlink")
    assert rc == 2
    assert "ERROR:" in capsys.readouterr().out


def test_log_file_is_written(tmp_path: Path) -> None:
    data = tmp_path / "data"
    _run(data, "show", "--task", "ghost", "--log-verbose")
    assert "Task not found: ghost" in (data / "var" / "cric.log").read_text(encoding="utf-8")
