"""
MAILDECK - Worker Services

Spawned services with an initialization handshake:

- Executor: local process pool for task execution
- Importer, FeedChecker, Senders: queue-driven asyncio workers
"""
from __future__ import annotations

import asyncio
import os
from concurrent.futures import ProcessPoolExecutor
from typing import Any, Callable, Optional, TypeVar

from core.privileges import PrivilegeController, demote_worker
from observability.logging import get_logger
from services.base import JobHandler, SpawnedService, WorkerService

logger = get_logger("maildeck.services.workers")

T = TypeVar("T")


class Executor(SpawnedService):
    """
    Local task executor backed by a process pool.

    The handshake runs a trivial job in the pool so that at least one worker
    process exists before anything that depends on the executor starts. The
    pool is created while the process may still be root; every worker
    switches to the service account in its initializer.
    """

    def __init__(self, max_workers: int = 2, privileges: Optional[PrivilegeController] = None):
        super().__init__("executor")
        self.max_workers = max_workers
        self.privileges = privileges
        self._pool: Optional[ProcessPoolExecutor] = None
        self.worker_pid: Optional[int] = None

    async def setup(self) -> None:
        identity = self.privileges.worker_identity() if self.privileges else None
        if identity is None:
            self._pool = ProcessPoolExecutor(max_workers=self.max_workers)
        else:
            self._pool = ProcessPoolExecutor(
                max_workers=self.max_workers, initializer=demote_worker, initargs=identity,
            )
        loop = asyncio.get_running_loop()
        self.worker_pid = await loop.run_in_executor(self._pool, os.getpid)
        logger.info("Executor ready", worker_pid=self.worker_pid, workers=self.max_workers,
                    component="Executor")

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a picklable callable in the pool."""
        if self._pool is None:
            raise RuntimeError("Executor is not running")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, fn, *args)

    async def teardown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None


class Importer(WorkerService):
    """Processes list import jobs."""

    def __init__(self, handler: Optional[JobHandler] = None):
        super().__init__("importer", handler)


class FeedChecker(WorkerService):
    """Checks RSS campaign feeds for new entries."""

    def __init__(self, handler: Optional[JobHandler] = None):
        super().__init__("feedcheck", handler)


class Senders(WorkerService):
    """
    Outbound message senders.

    Web handlers may queue messages as soon as the listeners are up, so the
    queue accepts jobs before the worker is spawned; they are handled once
    the worker starts.
    """

    def __init__(self, handler: Optional[JobHandler] = None):
        super().__init__("senders", handler)

    def submit(self, job: Any) -> None:
        self._queue.put_nowait(job)
