"""
MAILDECK - Readiness Signal

Process-scoped readiness flag. One instance is created by the bootstrap
context and handed to every application factory that needs to answer
readiness probes; the final bootstrap stage is its only writer.
"""
from __future__ import annotations

import time
from typing import Optional

from observability.logging import get_logger

logger = get_logger("maildeck.readiness")


class ReadinessFlag:
    """Monotonic false -> true flag. There is no way to reset it."""

    __slots__ = ("_ready", "_ready_at")

    def __init__(self) -> None:
        self._ready = False
        self._ready_at: Optional[float] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def ready_at(self) -> Optional[float]:
        """Wall-clock time of the transition, or None while starting."""
        return self._ready_at

    def mark_ready(self) -> bool:
        """
        Set the flag.

        Returns True on the single false -> true transition and False on any
        later call, which leaves the original timestamp untouched.
        """
        if self._ready:
            logger.warning("Readiness already signalled; ignoring repeated call", component="Service")
            return False
        self._ready = True
        self._ready_at = time.time()
        return True

    def __bool__(self) -> bool:
        return self._ready

    def __repr__(self) -> str:
        return f"ReadinessFlag(ready={self._ready})"
