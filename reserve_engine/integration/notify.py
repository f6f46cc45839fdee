"""Best-effort notifications to connected collaborators.

A failing listener must never abort the operation that triggered it: errors
are logged with their traceback and counted, never re-raised.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping

logger = logging.getLogger(__name__)

Listener = Callable[[Mapping[str, Any]], None]


class Notifier:
    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def notify(self, payload: Mapping[str, Any]) -> int:
        """Deliver *payload* to every listener. Returns the number of failures."""
        failures = 0
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                failures += 1
                logger.warning("%s listener %r failed", self.name, listener, exc_info=True)
        return failures
