"""
Callback registration for core change notifications.

The core emits events; collaborators (the CLI, the Qt adapter, tests) connect
callables. Emission happens on whichever thread produced the change, so
subscribers that touch a UI must marshal to their own thread (the Qt adapter
does this through queued signals).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Event:
    """
    A named list of listeners.

    Notes
    -----
    A listener that raises is logged and skipped; the remaining listeners still
    run and the emitter is not interrupted.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    def connect(self, listener: Listener) -> Listener:
        """Register ``listener`` and return it (usable as a decorator)."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)
        return listener

    def disconnect(self, listener: Listener) -> None:
        """Remove ``listener``; unknown listeners are ignored."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, *args: Any) -> None:
        """Call every listener with ``args``."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener %r for event %s failed", listener, self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
