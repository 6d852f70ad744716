from __future__ import annotations

from pathlib import Path

import pytest

from cric_engine.data_models import (
    ModulePath,
    Task,
    describe_compress,
    describe_endian,
    scan_module_directory,
)
from cric_engine.options import GlobalOptions


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


def _valid_task(tmp_path: Path) -> Task:
    jlink = _touch(tmp_path / "jdk" / "bin" / "jlink")
    mods = tmp_path / "mods"
    mods.mkdir()
    task = Task.new("demo")
    task.jlink = jlink
    task.output = tmp_path / "img"
    task.module_paths = [ModulePath(mods, {"java.base"})]
    return task


def test_scan_module_directory_lists_jmod_base_names_sorted(tmp_path: Path) -> None:
    mods = tmp_path / "mods"
    for name in ["java.logging.jmod", "java.base.jmod", "README.txt"]:
        _touch(mods / name)
    (mods / "nested.jmod").mkdir()

    assert scan_module_directory(mods) == ["java.base", "java.logging"]
    assert scan_module_directory(tmp_path / "missing") == []
    assert scan_module_directory(None) == []


def test_module_path_available_and_stale(tmp_path: Path) -> None:
    mods = tmp_path / "mods"
    for name in ["java.base", "java.logging", "java.sql"]:
        _touch(mods / f"{name}.jmod")

    module_path = ModulePath(mods, {"java.base", "gone.module"})

    assert module_path.available_modules() == ["java.logging", "java.sql"]
    assert module_path.stale_modules() == ["gone.module"]
    assert module_path.sorted_modules() == ["gone.module", "java.base"]


def test_copy_is_independent_of_original() -> None:
    original = Task.new("demo")
    original.module_paths = [ModulePath(Path("/mods"), {"java.base"})]

    copy = original.copy()
    copy.module_paths[0].selected_modules.add("java.sql")
    copy.module_paths.append(ModulePath(Path("/other"), set()))
    copy.name = "changed"

    assert copy.task_id == original.task_id
    assert original.name == "demo"
    assert original.module_paths == [ModulePath(Path("/mods"), {"java.base"})]


def test_duplicate_gets_new_id_and_resets_last_run() -> None:
    original = Task.new("demo")
    original.last_run = 1234

    clone = original.duplicate("demo (copy)")

    assert clone.task_id != original.task_id
    assert clone.last_run == 0
    assert clone.name == "demo (copy)"


def test_resolve_jlink_falls_back_to_global_default() -> None:
    task = Task.new("demo")
    default = Path("/opt/jdk/bin/jlink")
    assert task.resolve_jlink(default) == default

    task.jlink = Path("/custom/jlink")
    assert task.resolve_jlink(default) == Path("/custom/jlink")


def test_valid_task_has_no_messages(tmp_path: Path) -> None:
    task = _valid_task(tmp_path)
    assert task.validate(GlobalOptions()) == []
    assert task.is_valid(GlobalOptions())


def test_validate_reports_each_problem(tmp_path: Path) -> None:
    task = Task.new("broken")
    task.jlink = tmp_path / "nope" / "jlink"
    task.module_paths = [ModulePath(tmp_path / "missing-mods", set())]
    task.launcher = "not a launcher"
    task.compress = 7
    task.endian = 5

    messages = task.validate(GlobalOptions())

    assert messages == [
        f"Invalid jlink: {tmp_path / 'nope' / 'jlink'}",
        "Invalid output directory",
        f"Invalid module directory: {tmp_path / 'missing-mods'}",
        "Invalid launcher: not a launcher",
        "Invalid compress level: 7",
        "Invalid endian: 5",
    ]


def test_validate_is_recomputed_on_each_call(tmp_path: Path) -> None:
    task = _valid_task(tmp_path)
    assert task.is_valid(GlobalOptions())

    task.jlink.unlink()

    assert task.validate(GlobalOptions()) == [f"Invalid jlink: {task.jlink}"]


def test_validate_uses_global_jlink_when_task_has_none(tmp_path: Path) -> None:
    task = _valid_task(tmp_path)
    jlink = task.jlink
    task.jlink = None

    assert "Invalid jlink: " in task.validate(GlobalOptions())
    assert task.validate(GlobalOptions(jlink_path=jlink)) == []


@pytest.mark.parametrize(
    "launcher", ["app=com.example.app", "app=com.example.app/com.example.Main"]
)
def test_launcher_accepts_name_module_and_optional_main_class(
    tmp_path: Path, launcher: str
) -> None:
    task = _valid_task(tmp_path)
    task.launcher = launcher
    assert task.validate(GlobalOptions()) == []


def test_dict_round_trip_preserves_fields() -> None:
    task = Task.new("demo")
    task.description = "image for demo"
    task.jlink = Path("/opt/jdk/bin/jlink")
    task.output = Path("/tmp/img")
    task.strip_debug = True
    task.no_man_pages = True
    task.compress = 2
    task.endian = 1
    task.launcher = "demo=demo.app/demo.Main"
    task.module_paths = [ModulePath(Path("/mods"), {"java.logging", "java.base"})]
    task.last_run = 1700000000000

    payload = task.to_dict()

    assert payload["uuid"] == task.task_id
    assert payload["stripDebug"] is True
    assert payload["modulePaths"] == [
        {"directory": str(Path("/mods")), "selectedModules": ["java.base", "java.logging"]}
    ]
    assert Task.from_dict(payload) == task


def test_unset_paths_serialize_as_empty_strings() -> None:
    payload = Task.new("demo").to_dict()
    assert payload["jlink"] == ""
    assert payload["output"] == ""
    assert Task.from_dict(payload).output is None


def test_from_dict_uses_envelope_key_when_uuid_missing() -> None:
    task = Task.from_dict({"name": "demo"}, task_id="abc")
    assert task.task_id == "abc"


def test_from_dict_rejects_bad_module_paths() -> None:
    with pytest.raises(ValueError):
        Task.from_dict({"uuid": "x", "modulePaths": ["not-an-object"]})


def test_display_labels() -> None:
    assert describe_compress(2) == "ZIP"
    assert describe_endian(1) == "little"
    assert describe_compress(9) == "Unknown (9)"
