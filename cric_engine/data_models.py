"""Data models for cric.

This module defines the task (a named jlink configuration) and its module-path
entries, together with their JSON shape. Instances are plain mutable records:
the TaskStore owns the canonical ones and hands out copies to editors, which
stay independent until they are saved back.

Notes
-----
Copies are built by explicit reconstruction so that the module-path list and
each module set are fresh objects. Nothing is shared between a task and its copy.
"""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Self

if TYPE_CHECKING:
    from .options import GlobalOptions

JMOD_SUFFIX = ".jmod"

# Combo-box index -> meaning. The persisted integer is passed to jlink verbatim
# as --compress=<N>.
COMPRESS_LEVELS: dict[int, str] = {
    0: "No compression",
    1: "Constant string sharing",
    2: "ZIP",
}

ENDIAN_NAMES: dict[int, str] = {
    0: "native",
    1: "little",
    2: "big",
}

_LAUNCHER_RE = re.compile(r"^[^=\s]+=[^/\s]+(/[^/\s]+)?$")


def describe_compress(code: int) -> str:
    """Return the display label for a compress code."""
    return COMPRESS_LEVELS.get(code, f"Unknown ({code})")


def describe_endian(code: int) -> str:
    """Return the display label for an endian code."""
    return ENDIAN_NAMES.get(code, f"unknown ({code})")


def _path_to_str(path: Path | None) -> str:
    return "" if path is None else str(path)


def _path_from_str(value: object) -> Path | None:
    if isinstance(value, str) and value.strip():
        return Path(value)
    return None


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def scan_module_directory(directory: Path | None) -> list[str]:
    """
    List module names available in a module-path directory.

    Parameters
    ----------
    directory:
        Directory to scan (not recursive).

    Returns
    -------
    list[str]
        Sorted base names of ``*.jmod`` files. Empty when the directory is
        unset, missing or unreadable.
    """
    if directory is None or not directory.is_dir():
        return []
    try:
        names = {
            entry.name[: -len(JMOD_SUFFIX)]
            for entry in os.scandir(directory)
            if entry.is_file() and entry.name.endswith(JMOD_SUFFIX)
        }
    except OSError:
        return []
    return sorted(names)


@dataclass(slots=True)
class ModulePath:
    """
    One module-path directory plus the modules selected from it.

    Attributes
    ----------
    directory:
        Directory scanned for ``*.jmod`` files.
    selected_modules:
        Module names to pass to ``--add-modules``.
    """

    directory: Path | None = None
    selected_modules: set[str] = field(default_factory=set)

    def sorted_modules(self) -> list[str]:
        """Return the selected modules in their natural (sorted) order."""
        return sorted(self.selected_modules)

    def scan(self) -> list[str]:
        """Return every module name currently found in ``directory``."""
        return scan_module_directory(self.directory)

    def available_modules(self) -> list[str]:
        """Return scanned modules that are not selected yet."""
        return [name for name in self.scan() if name not in self.selected_modules]

    def stale_modules(self) -> list[str]:
        """Return selected modules no longer present in ``directory``."""
        present = set(self.scan())
        return sorted(name for name in self.selected_modules if name not in present)

    def copy(self) -> ModulePath:
        """Return an independent copy."""
        return ModulePath(directory=self.directory, selected_modules=set(self.selected_modules))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`ModulePath` from its JSON mapping."""
        modules = payload.get("selectedModules") or []
        return cls(
            directory=_path_from_str(payload.get("directory")),
            selected_modules={str(name) for name in modules},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "directory": _path_to_str(self.directory),
            "selectedModules": self.sorted_modules(),
        }


@dataclass(slots=True)
class Task:
    """
    A named, persisted jlink configuration.

    The ``task_id`` is assigned once at creation and never changes; everything
    else is editable. ``last_run`` holds epoch milliseconds of the start of the
    last successful run, 0 when the task has never run.
    """

    task_id: str
    name: str = ""
    description: str = ""
    jlink: Path | None = None
    launcher: str = ""
    output: Path | None = None
    bind_services: bool = False
    ignore_signing: bool = False
    no_headers: bool = False
    no_man_pages: bool = False
    strip_debug: bool = False
    compress: int = 0
    endian: int = 0
    module_paths: list[ModulePath] = field(default_factory=list)
    last_run: int = 0

    @classmethod
    def new(cls, name: str = "") -> Self:
        """Create a blank task with a fresh identifier."""
        return cls(task_id=str(uuid.uuid4()), name=name)

    def copy(self) -> Task:
        """
        Return an independent copy with the same identifier.

        Used to hand a task to an editor without aliasing the stored instance.
        """
        return Task(
            task_id=self.task_id,
            name=self.name,
            description=self.description,
            jlink=self.jlink,
            launcher=self.launcher,
            output=self.output,
            bind_services=self.bind_services,
            ignore_signing=self.ignore_signing,
            no_headers=self.no_headers,
            no_man_pages=self.no_man_pages,
            strip_debug=self.strip_debug,
            compress=self.compress,
            endian=self.endian,
            module_paths=[mp.copy() for mp in self.module_paths],
            last_run=self.last_run,
        )

    def duplicate(self, name: str) -> Task:
        """
        Clone this task under a new identity.

        Parameters
        ----------
        name:
            Name for the clone (callers pick a non-conflicting one).

        Returns
        -------
        Task
            Copy with a fresh ``task_id``, ``last_run`` reset to 0 and the new name.
        """
        clone = self.copy()
        clone.task_id = str(uuid.uuid4())
        clone.last_run = 0
        clone.name = name
        return clone

    def resolve_jlink(self, default: Path | None) -> Path | None:
        """Return the task's own jlink path, or ``default`` when it is blank."""
        if self.jlink is not None and str(self.jlink).strip():
            return self.jlink
        return default

    def validate(self, options: GlobalOptions) -> list[str]:
        """
        Validate the task for running.

        The result is recomputed on every call; nothing is cached, since the
        filesystem may have changed since the last check.

        Parameters
        ----------
        options:
            Global options supplying the default jlink path.

        Returns
        -------
        list[str]
            Validation messages. Empty when the task may be run.
        """
        messages: list[str] = []

        jlink = self.resolve_jlink(options.jlink_path)
        if jlink is None or not jlink.is_file():
            messages.append(f"Invalid jlink: {_path_to_str(jlink)}")

        if self.output is None or not str(self.output).strip():
            messages.append("Invalid output directory")
        elif not _is_writable_target(self.output):
            messages.append(f"Output directory is not writable: {self.output}")

        for module_path in self.module_paths:
            if module_path.directory is None or not module_path.directory.is_dir():
                messages.append(
                    f"Invalid module directory: {_path_to_str(module_path.directory)}"
                )

        if not _is_blank(self.launcher) and not _LAUNCHER_RE.match(self.launcher.strip()):
            messages.append(f"Invalid launcher: {self.launcher}")

        if self.compress not in COMPRESS_LEVELS:
            messages.append(f"Invalid compress level: {self.compress}")
        if self.endian not in ENDIAN_NAMES:
            messages.append(f"Invalid endian: {self.endian}")

        return messages

    def is_valid(self, options: GlobalOptions) -> bool:
        """Return True if :meth:`validate` reports no messages."""
        return not self.validate(options)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, task_id: str | None = None) -> Self:
        """
        Construct a :class:`Task` from its JSON mapping.

        Parameters
        ----------
        payload:
            Mapping using the persisted key names.
        task_id:
            Identifier to use when the payload carries no ``uuid`` (the
            envelope key).

        Raises
        ------
        ValueError
            If the payload has no usable identifier or a field has the wrong type.
        """
        identifier = payload.get("uuid") or task_id
        if not identifier:
            raise ValueError("Task payload has no uuid")
        module_paths = payload.get("modulePaths") or []
        if not isinstance(module_paths, list) or not all(
            isinstance(mp, Mapping) for mp in module_paths
        ):
            raise ValueError("modulePaths must be a list of objects")
        return cls(
            task_id=str(identifier),
            name=str(payload.get("name") or ""),
            description=str(payload.get("description") or ""),
            jlink=_path_from_str(payload.get("jlink")),
            launcher=str(payload.get("launcher") or ""),
            output=_path_from_str(payload.get("output")),
            bind_services=bool(payload.get("bindServices", False)),
            ignore_signing=bool(payload.get("ignoreSigning", False)),
            no_headers=bool(payload.get("noHeaders", False)),
            no_man_pages=bool(payload.get("noManPages", False)),
            strip_debug=bool(payload.get("stripDebug", False)),
            compress=int(payload.get("compress", 0)),
            endian=int(payload.get("endian", 0)),
            module_paths=[ModulePath.from_dict(mp) for mp in module_paths],
            last_run=int(payload.get("last_run", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict using the persisted key names."""
        return {
            "uuid": self.task_id,
            "name": self.name,
            "description": self.description,
            "jlink": _path_to_str(self.jlink),
            "output": _path_to_str(self.output),
            "bindServices": self.bind_services,
            "ignoreSigning": self.ignore_signing,
            "noHeaders": self.no_headers,
            "noManPages": self.no_man_pages,
            "stripDebug": self.strip_debug,
            "compress": self.compress,
            "endian": self.endian,
            "launcher": self.launcher,
            "modulePaths": [mp.to_dict() for mp in self.module_paths],
            "last_run": self.last_run,
        }


def _is_writable_target(output: Path) -> bool:
    """Return True if ``output`` exists writable, or its nearest existing ancestor is."""
    candidate = output.expanduser().absolute()
    while not candidate.exists():
        parent = candidate.parent
        if parent == candidate:
            return False
        candidate = parent
    if candidate == output.expanduser().absolute() and not candidate.is_dir():
        # An existing file is replaced after confirmation; check its directory.
        candidate = candidate.parent
    return candidate.is_dir() and os.access(candidate, os.W_OK)
