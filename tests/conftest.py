from __future__ import annotations

import os
import stat
import sys
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

from cric_engine.clock import FixedClock
from cric_engine.storage import BackupLog
from cric_engine.task_store import TaskStore

FakeJlinkFactory = Callable[[str], Path]


@pytest.fixture()
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 17, 12, 30, 45, tzinfo=timezone.utc))


@pytest.fixture()
def store(tmp_path: Path, fixed_clock: FixedClock) -> TaskStore:
    data_root = tmp_path / "data"
    return TaskStore(
        data_root / "tasks.json",
        BackupLog(data_root / "tasks.bak", clock=fixed_clock),
        clock=fixed_clock,
    )


@pytest.fixture()
def make_fake_jlink(tmp_path: Path) -> FakeJlinkFactory:
    """Return a factory writing an executable Python script that stands in for jlink."""
    if os.name == "nt":
        pytest.skip("fake jlink scripts rely on a POSIX shebang")

    counter = {"n": 0}

    def _make(body: str) -> Path:
        counter["n"] += 1
        script = tmp_path / "bin" / f"jlink{counter['n']}"
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(
            f"#!{sys.executable}\nimport signal, sys, time\n" + textwrap.dedent(body),
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make

