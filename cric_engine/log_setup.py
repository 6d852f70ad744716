from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_file: Path | None, *, verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    log_file:
        File receiving every record (appended). None logs to stderr only.
    verbose:
        Log DEBUG records as well.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # stderr only carries warnings unless verbose.
    handlers[0].setLevel(logging.DEBUG if verbose else logging.WARNING)
