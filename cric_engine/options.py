from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .storage import write_text_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """
    Persisted global options.

    Notes
    -----
    ``jlink_path``, ``jlink_debug`` and ``jlink_verbose`` feed the command
    builder. ``night_mode`` and ``word_wrap`` belong to the UI; the core only
    stores them.
    """

    jlink_path: Path | None = None
    jlink_debug: bool = False
    jlink_verbose: bool = True
    night_mode: bool = True
    word_wrap: bool = False

    @staticmethod
    def defaults() -> "GlobalOptions":
        return GlobalOptions()

    def replace(self, **changes: Any) -> "GlobalOptions":
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jlink_path": str(self.jlink_path) if self.jlink_path is not None else "",
            "jlink_debug": self.jlink_debug,
            "jlink_verbose": self.jlink_verbose,
            "night_mode": self.night_mode,
            "word_wrap": self.word_wrap,
        }


def _bool(payload: dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if isinstance(value, bool):
        return value
    logger.warning("Ignoring non-boolean option %s=%r", key, value)
    return default


def load_options(path: Path) -> GlobalOptions:
    """
    Load global options from disk.

    Parameters
    ----------
    path:
        Options file.

    Returns
    -------
    GlobalOptions
        Loaded options, or defaults if the file is missing. Unreadable files
        and invalid values are logged and replaced by defaults.
    """
    defaults = GlobalOptions.defaults()
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return defaults
    except OSError as exc:
        logger.warning("Cannot read options file %s (%s); using defaults", path, exc)
        return defaults

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Invalid JSON in options file %s (%s); using defaults", path, exc)
        return defaults
    if not isinstance(payload, dict):
        logger.warning("Options file %s does not hold an object; using defaults", path)
        return defaults

    jlink = payload.get("jlink_path")
    jlink_path = Path(jlink) if isinstance(jlink, str) and jlink.strip() else None

    return GlobalOptions(
        jlink_path=jlink_path,
        jlink_debug=_bool(payload, "jlink_debug", defaults.jlink_debug),
        jlink_verbose=_bool(payload, "jlink_verbose", defaults.jlink_verbose),
        night_mode=_bool(payload, "night_mode", defaults.night_mode),
        word_wrap=_bool(payload, "word_wrap", defaults.word_wrap),
    )


def save_options(path: Path, options: GlobalOptions) -> None:
    """
    Save global options to disk.

    Raises
    ------
    PersistenceError
        If the file cannot be written.
    """
    text = json.dumps(options.to_dict(), indent=2, sort_keys=True) + "\n"
    write_text_atomic(path, text)
