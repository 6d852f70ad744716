"""
Filesystem path policy and safety gates.

This module is the single choke point for determining where cric keeps its own
data and for the one destructive operation the engine performs: clearing a
previous runtime image before jlink writes a new one.

- Application data lives under a cric "data root".
- Output trees are only removed after explicit confirmation, and never when the
  target is a filesystem root, the user's home directory or a shallow path.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import OutputDirectoryError, StartupError

logger = logging.getLogger(__name__)

DATA_ROOT_ENV = "CRIC_DATA_ROOT"


@dataclass(frozen=True, slots=True)
class DataPaths:
    """
    Concrete resolved paths for cric application data.

    Attributes
    ----------
    data_root:
        Root directory for all cric data.
    tasks_file:
        Primary task envelope (pretty-printed JSON).
    tasks_backup_file:
        Append-only log of every envelope ever saved.
    options_file:
        Global options (default jlink, debug/verbose flags, UI flags).
    logs_root:
        Directory for the application log.
    log_file:
        Application log file.
    """

    data_root: Path
    tasks_file: Path
    tasks_backup_file: Path
    options_file: Path
    logs_root: Path
    log_file: Path


class SafetyViolationError(OutputDirectoryError):
    """Raised when a removal is blocked by safety policy."""


def default_data_root() -> Path:
    """
    Resolve the default cric data root.

    Preference order:
    1) $CRIC_DATA_ROOT
    2) %LOCALAPPDATA%\\cric
    3) %APPDATA%\\cric
    4) $XDG_CONFIG_HOME/cric
    5) ~/.config/cric
    """
    override = os.environ.get(DATA_ROOT_ENV)
    if override:
        return Path(override).expanduser()

    local = os.environ.get("LOCALAPPDATA")
    if local:
        return Path(local) / "cric"

    roaming = os.environ.get("APPDATA")
    if roaming:
        return Path(roaming) / "cric"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "cric"

    return Path.home() / ".config" / "cric"


def resolve_data_paths(data_root: Path | None = None) -> DataPaths:
    """
    Resolve and return all filesystem paths for cric data.

    Parameters
    ----------
    data_root:
        Optional override for the data root.

    Returns
    -------
    DataPaths
        Resolved paths. Nothing is created on disk.
    """
    root = (data_root or default_data_root()).expanduser().resolve()
    logs_root = root / "var"
    return DataPaths(
        data_root=root,
        tasks_file=root / "tasks.json",
        tasks_backup_file=root / "tasks.bak",
        options_file=root / "options.json",
        logs_root=logs_root,
        log_file=logs_root / "cric.log",
    )


def ensure_data_directories(paths: DataPaths) -> None:
    """
    Create the data directories if they do not already exist.

    Raises
    ------
    StartupError
        If the directories cannot be created or are not writable. The
        application cannot run without them.
    """
    for directory in (paths.data_root, paths.logs_root):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupError(f"Cannot create data directory {directory}: {exc}") from exc
        if not os.access(directory, os.W_OK):
            raise StartupError(f"Data directory is not writable: {directory}")


def output_needs_confirmation(output: Path) -> bool:
    """
    Return True if clearing ``output`` would destroy user data.

    An empty directory can be removed without asking; anything else that exists
    (a non-empty directory, a file, a symlink) needs confirmation.

    Raises
    ------
    OutputDirectoryError
        If an existing directory cannot be listed.
    """
    if output.is_symlink() or output.is_file():
        return True
    if output.is_dir():
        try:
            return any(output.iterdir())
        except OSError as exc:
            raise OutputDirectoryError(f"Cannot inspect existing output {output}: {exc}") from exc
    return False


def remove_output_tree(output: Path) -> None:
    """
    Remove an existing jlink output tree.

    Parameters
    ----------
    output:
        Output path of a task. A missing path is a no-op.

    Raises
    ------
    SafetyViolationError
        If the path is a filesystem root, the home directory or too shallow.
    OutputDirectoryError
        If deletion fails.
    """
    if not output.exists() and not output.is_symlink():
        return

    target = output.expanduser().absolute()
    _assert_not_protected(target)
    _assert_min_depth(target, min_parts=3, purpose="output removal")

    try:
        if target.is_symlink() or target.is_file():
            target.unlink()
        else:
            shutil.rmtree(target)
    except OSError as exc:
        raise OutputDirectoryError(f"Failed to remove existing output {target}: {exc}") from exc
    logger.info("Removed existing output %s", target)


def _assert_min_depth(path: Path, min_parts: int, purpose: str) -> None:
    """Block obviously dangerous shallow targets like / or C:\\."""
    parts = path.parts
    if len(parts) < min_parts:
        raise SafetyViolationError(
            f"Unsafe path for {purpose}: {path} is too shallow ({len(parts)} parts)."
        )


def _assert_not_protected(path: Path) -> None:
    resolved = path.resolve()
    if resolved == Path(resolved.anchor):
        raise SafetyViolationError(f"Refusing to remove filesystem root: {resolved}")
    home = Path.home().resolve()
    if resolved == home or resolved in home.parents:
        raise SafetyViolationError(f"Refusing to remove home directory or its parents: {resolved}")
