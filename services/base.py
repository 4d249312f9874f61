"""
MAILDECK - Background Service Contract

Two startup disciplines:

    spawn()  awaitable handshake; returns only once the service has finished
             its own asynchronous setup. The bootstrap waits on it before the
             next stage.
    start()  fire-and-forget; schedules the service's loop and returns at once.

Any failure raised before a spawn handshake completes is reported as a
FatalServiceStartError, after teardown() has released whatever setup()
acquired; the same holds when the handshake is cancelled. Retrying is the
service's own business, never the sequencer's.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from core.errors import FatalServiceStartError, MaildeckError
from observability.logging import get_logger

logger = get_logger("maildeck.services")


class StartDiscipline(str, Enum):
    SPAWN = "spawn"
    START = "start"


@runtime_checkable
class ServiceHandle(Protocol):
    """What the bootstrap needs to know about a background service."""

    @property
    def name(self) -> str:
        ...

    @property
    def discipline(self) -> StartDiscipline:
        ...

    async def stop(self) -> None:
        ...


class ServiceBase(ABC):
    """Common state for all background services."""

    discipline: StartDiscipline = StartDiscipline.SPAWN

    def __init__(self, name: Optional[str] = None):
        self._name = name or self.__class__.__name__
        self._running = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def stop(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r}, running={self._running})"


class SpawnedService(ServiceBase):
    """Service with an asynchronous initialization handshake."""

    discipline = StartDiscipline.SPAWN

    def __init__(self, name: Optional[str] = None, enabled: bool = True):
        super().__init__(name)
        self.enabled = enabled

    async def spawn(self) -> None:
        """Run setup() and return once the service is initialized."""
        if self._running:
            raise RuntimeError(f"Service {self.name} was already spawned")

        if not self.enabled:
            logger.debug("Service disabled, skipping", service=self.name, component="Service")
            return

        try:
            await self.setup()
        except BaseException as e:
            # includes cancellation by a startup timeout
            await self.teardown()
            if isinstance(e, Exception) and not isinstance(e, MaildeckError):
                raise FatalServiceStartError(
                    f"{self.name} failed to start: {e}", service_name=self.name, cause=e,
                ) from e
            raise

        self._running = True
        logger.info("Service started", service=self.name, component="Service")

    @abstractmethod
    async def setup(self) -> None:
        """Acquire resources; return when the service is ready."""
        ...

    async def teardown(self) -> None:
        """Release resources acquired by setup()."""

    async def stop(self) -> None:
        if not self._running:
            return
        try:
            await self.teardown()
        finally:
            self._running = False
            logger.debug("Service stopped", service=self.name, component="Service")


JobHandler = Callable[[Any], Awaitable[None]]


class WorkerService(SpawnedService):
    """
    Spawned asyncio worker consuming a job queue.

    The handshake completes once prepare() has run inside the worker task.
    If the worker dies before that, spawn() fails.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        handler: Optional[JobHandler] = None,
        enabled: bool = True,
    ):
        super().__init__(name, enabled)
        self._handler = handler or self.handle
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._task: Optional["asyncio.Task[None]"] = None
        self.processed = 0

    async def setup(self) -> None:
        ready = asyncio.Event()
        self._task = asyncio.create_task(self._run(ready), name=f"svc:{self.name}")
        waiter = asyncio.create_task(ready.wait())

        try:
            await asyncio.wait({self._task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if not ready.is_set():
            error = None if self._task.cancelled() else self._task.exception()
            raise FatalServiceStartError(
                f"{self.name} worker exited before signalling readiness",
                service_name=self.name,
                cause=error,
            )

    async def _run(self, ready: asyncio.Event) -> None:
        await self.prepare()
        ready.set()
        while True:
            job = await self._queue.get()
            try:
                await self._handler(job)
                self.processed += 1
            except Exception:
                logger.exception("Job failed", service=self.name, component="Service")
            finally:
                self._queue.task_done()

    async def prepare(self) -> None:
        """Worker-side initialization, run before readiness is signalled."""

    async def handle(self, job: Any) -> None:
        logger.debug("Job received", service=self.name, job=repr(job))

    def submit(self, job: Any) -> None:
        """Queue a job for the worker."""
        if not self._running:
            raise RuntimeError(f"Service {self.name} is not running")
        self._queue.put_nowait(job)

    async def drain(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def teardown(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


TickFunction = Callable[[], Awaitable[None]]


class PeriodicService(ServiceBase):
    """Fire-and-forget service running tick() on a fixed interval."""

    discipline = StartDiscipline.START

    def __init__(
        self,
        name: Optional[str] = None,
        interval: float = 60.0,
        tick: Optional[TickFunction] = None,
    ):
        super().__init__(name)
        self.interval = interval
        self._tick_fn = tick or self.tick
        self._task: Optional["asyncio.Task[None]"] = None
        self.runs = 0

    def start(self) -> None:
        """Schedule the loop on the running event loop and return immediately."""
        if self._task is not None:
            raise RuntimeError(f"Service {self.name} was already started")
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._loop(), name=f"svc:{self.name}")
        self._running = True
        logger.info("Service started", service=self.name, interval=self.interval, component="Service")

    async def _loop(self) -> None:
        while True:
            try:
                await self._tick_fn()
                self.runs += 1
            except Exception:
                # next interval is the retry
                logger.exception("Periodic run failed", service=self.name, component="Service")
            await asyncio.sleep(self.interval)

    async def tick(self) -> None:
        """One unit of periodic work."""

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._running = False
