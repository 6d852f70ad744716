"""
Module entrypoint for the cric CLI.

This file exists so that `python -m cric ...` works consistently in all
environments, including when the console-script wrapper is not installed.
"""

from __future__ import annotations

from cric.cli import main


def _run() -> None:
    """
    Execute the cric command line interface.

    Raises
    ------
    SystemExit
        Always, carrying the CLI exit code.
    """
    raise SystemExit(main())


if __name__ == "__main__":
    _run()
