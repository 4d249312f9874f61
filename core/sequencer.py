"""
MAILDECK - Bootstrap Sequencer

Drives an explicit, ordered list of startup stages. Each stage is awaited to
completion before the next one begins and the first failure ends the run;
nothing is retried.

The order is fixed when the list is composed. `validate()` checks the
declared constraints up front so that a reordering mistake fails at
composition time instead of in production:

    - every name in `requires` refers to an earlier stage
    - no stage marked `privileged` comes after the stage that drops privileges
    - at most one stage drops privileges

Usage:
    sequencer = BootstrapSequencer([
        BootstrapStage("check_storage", check, error_type=FatalStorageError),
        BootstrapStage("run_migrations", migrate, requires=("check_storage",),
                       error_type=FatalMigrationError),
    ])
    outcomes = await sequencer.run()
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, Type, Union

from core.errors import (
    FatalServiceStartError,
    MaildeckError,
    StartupError,
    StartupTimeoutError,
)
from observability.logging import LogContext, get_logger
from observability.tracing import create_span

logger = get_logger("maildeck.bootstrap")

StageAction = Callable[[], Union[Awaitable[Any], Any]]


@dataclass(frozen=True)
class BootstrapStage:
    """One step of the startup chain."""

    name: str
    action: StageAction
    requires: Tuple[str, ...] = ()
    # Needs root: must run before the privilege drop
    privileged: bool = False
    drops_privileges: bool = False
    error_type: Type[StartupError] = FatalServiceStartError
    timeout: Optional[float] = None
    description: str = ""


@dataclass(frozen=True, slots=True)
class StageOutcome:
    """Immutable record of a settled stage."""

    name: str
    index: int
    success: bool
    started_at: float
    duration_ms: float
    error: Optional[str] = None
    error_type: Optional[str] = None


class BootstrapSequencer:
    """Fail-fast driver for an ordered stage list."""

    def __init__(
        self,
        stages: Sequence[BootstrapStage],
        startup_timeout: Optional[float] = None,
    ):
        self._stages: List[BootstrapStage] = list(stages)
        self._startup_timeout = startup_timeout
        self._outcomes: List[StageOutcome] = []
        self._running = False
        self.validate()

    @property
    def stages(self) -> List[BootstrapStage]:
        return list(self._stages)

    @property
    def outcomes(self) -> List[StageOutcome]:
        return list(self._outcomes)

    @property
    def completed(self) -> List[str]:
        """Names of the stages that finished successfully, in order."""
        return [o.name for o in self._outcomes if o.success]

    def validate(self) -> None:
        """Check the ordering constraints of the composed list."""
        seen: List[str] = []
        drop_stage: Optional[str] = None

        for stage in self._stages:
            if stage.name in seen:
                raise ValueError(f"Duplicate bootstrap stage: {stage.name}")

            missing = [dep for dep in stage.requires if dep not in seen]
            if missing:
                raise ValueError(
                    f"Stage {stage.name!r} requires {missing} to run before it"
                )

            if stage.privileged and drop_stage is not None:
                raise ValueError(
                    f"Privileged stage {stage.name!r} is ordered after privilege drop ({drop_stage!r})"
                )

            if stage.drops_privileges:
                if drop_stage is not None:
                    raise ValueError(
                        f"Privileges dropped twice: {drop_stage!r} and {stage.name!r}"
                    )
                drop_stage = stage.name

            seen.append(stage.name)

    async def run(self) -> List[StageOutcome]:
        """
        Execute all stages in order.

        Raises:
            StartupError: the first stage failure (or timeout)
            MaildeckError: non-startup library errors propagate unchanged
        """
        if self._running or self._outcomes:
            raise RuntimeError("Bootstrap sequence has already been run")
        self._running = True

        total_start = time.time()
        try:
            if self._startup_timeout is None:
                await self._run_stages()
            else:
                try:
                    await asyncio.wait_for(self._run_stages(), timeout=self._startup_timeout)
                except asyncio.TimeoutError as e:
                    stage = self._current_stage_name()
                    raise StartupTimeoutError(
                        f"Startup did not complete within {self._startup_timeout}s",
                        timeout_seconds=self._startup_timeout,
                        stage=stage,
                        cause=e,
                    ) from e
        finally:
            self._running = False

        logger.debug(
            "Bootstrap sequence finished",
            stages=len(self._outcomes),
            duration_ms=round((time.time() - total_start) * 1000),
        )
        return self.outcomes

    def _current_stage_name(self) -> Optional[str]:
        index = len(self._outcomes)
        if index < len(self._stages):
            return self._stages[index].name
        return None

    async def _run_stages(self) -> None:
        for index, stage in enumerate(self._stages):
            await self._run_stage(index, stage)

    async def _run_stage(self, index: int, stage: BootstrapStage) -> None:
        started_at = time.time()
        with LogContext(stage=stage.name), create_span(
            f"bootstrap.{stage.name}",
            attributes={"stage.index": index, "stage.privileged": stage.privileged},
        ):
            logger.debug("Running bootstrap stage", index=index)
            try:
                await self._invoke(stage)
            except MaildeckError as e:
                if e.stage is None:
                    e.stage = stage.name
                self._record(stage, index, started_at, e)
                raise
            except asyncio.TimeoutError as e:
                error = StartupTimeoutError(
                    f"Stage {stage.name} did not complete within {stage.timeout}s",
                    timeout_seconds=stage.timeout,
                    stage=stage.name,
                    cause=e,
                )
                self._record(stage, index, started_at, error)
                raise error from e
            except Exception as e:
                error = stage.error_type(
                    str(e) or type(e).__name__, stage=stage.name, cause=e,
                )
                self._record(stage, index, started_at, error)
                raise error from e

        self._record(stage, index, started_at, None)

    async def _invoke(self, stage: BootstrapStage) -> None:
        result = stage.action()
        if inspect.isawaitable(result):
            if stage.timeout is not None:
                await asyncio.wait_for(result, timeout=stage.timeout)
            else:
                await result

    def _record(
        self,
        stage: BootstrapStage,
        index: int,
        started_at: float,
        error: Optional[BaseException],
    ) -> None:
        outcome = StageOutcome(
            name=stage.name,
            index=index,
            success=error is None,
            started_at=started_at,
            duration_ms=(time.time() - started_at) * 1000,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        )
        self._outcomes.append(outcome)

        if outcome.success:
            logger.debug("Stage complete", stage=stage.name, duration_ms=round(outcome.duration_ms))
        else:
            logger.debug("Stage failed", stage=stage.name, error=outcome.error)

    def describe(self) -> List[dict]:
        """Static view of the composed order, for the CLI."""
        return [
            {
                "index": i,
                "name": s.name,
                "requires": list(s.requires),
                "privileged": s.privileged,
                "drops_privileges": s.drops_privileges,
                "description": s.description,
            }
            for i, s in enumerate(self._stages)
        ]
