"""
MAILDECK - Report Processor

Last service initialized before readiness. A report cannot still be
processing when the server starts, so init() fails any report left in that
state by a previous run.
"""
from __future__ import annotations

from sqlalchemy import update

from db.engine import StorageEngine
from db.models import Report, ReportState
from observability.logging import get_logger

logger = get_logger("maildeck.services.reports")


class ReportProcessor:
    """Owns report state transitions."""

    name = "report-processor"

    def __init__(self, engine: StorageEngine):
        self.engine = engine
        self.initialized = False

    async def init(self) -> int:
        """Mark interrupted reports as failed. Returns how many were reset."""
        async with self.engine.session() as session:
            result = await session.execute(
                update(Report)
                .where(Report.state == ReportState.PROCESSING.value)
                .values(state=ReportState.FAILED.value)
            )
        reset = result.rowcount or 0
        self.initialized = True
        if reset:
            logger.warning("Interrupted reports marked as failed", count=reset, component="Reports")
        return reset
