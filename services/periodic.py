"""
MAILDECK - Periodic Services

Fire-and-forget services started after the privilege drop. Each one runs its
tick on a fixed interval; a failed tick is logged and retried next interval.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional
from zoneinfo import ZoneInfo, available_timezones

from observability.logging import get_logger
from services.base import PeriodicService, TickFunction

logger = get_logger("maildeck.services.periodic")

OffsetStore = Callable[[Dict[str, int]], Awaitable[None]]


def timezone_offsets(now: Optional[datetime] = None) -> Dict[str, int]:
    """Current UTC offset, in minutes, of every known IANA timezone."""
    now = now or datetime.now(timezone.utc)
    offsets: Dict[str, int] = {}
    for name in sorted(available_timezones()):
        try:
            offset = now.astimezone(ZoneInfo(name)).utcoffset()
        except (KeyError, ValueError):
            continue
        if offset is not None:
            offsets[name] = int(offset.total_seconds() // 60)
    return offsets


class TzUpdateService(PeriodicService):
    """
    Keeps the timezone offset table current across DST changes.

    Offsets are kept in `offsets`; when a store callback is given it receives
    every freshly computed table.
    """

    def __init__(self, interval: float = 600.0, store: Optional[OffsetStore] = None):
        super().__init__("tzupdate", interval)
        self._store = store
        self.offsets: Dict[str, int] = {}

    async def tick(self) -> None:
        offsets = timezone_offsets()
        changed = offsets != self.offsets
        self.offsets = offsets
        if changed and self._store is not None:
            await self._store(offsets)
        logger.debug("Timezone offsets refreshed", zones=len(offsets), changed=changed)


class TriggersService(PeriodicService):
    """Evaluates campaign triggers."""

    def __init__(self, interval: float = 10.0, tick: Optional[TickFunction] = None):
        super().__init__("triggers", interval, tick)


class GdprCleanupService(PeriodicService):
    """Purges personal data of unsubscribed subscribers past retention."""

    def __init__(self, interval: float = 3600.0, tick: Optional[TickFunction] = None):
        super().__init__("gdpr-cleanup", interval, tick)
