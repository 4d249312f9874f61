"""
Tests for services/workers.py, services/periodic.py and services/reports.py.
"""
import asyncio
import os
import pwd
import subprocess
import sys
from concurrent.futures import Future
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from core.errors import FatalServiceStartError
from core.privileges import PrivilegeController, demote_worker
from db.models import Report, ReportState
from services.periodic import GdprCleanupService, TriggersService, TzUpdateService, timezone_offsets
from services.reports import ReportProcessor
from services.workers import Executor, FeedChecker, Importer, Senders


def _completed(result=None, error=None) -> Future:
    future: Future = Future()
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)
    return future


DROP_THEN_RUN = """
import asyncio, grp, os, pwd
from core.privileges import PrivilegeController
from services.workers import Executor

async def check():
    nobody = pwd.getpwnam("nobody")
    privileges = PrivilegeController("nobody", grp.getgrgid(nobody.pw_gid).gr_name)
    executor = Executor(2, privileges)
    await executor.spawn()
    privileges.drop_privileges()
    euids = {await executor.run(os.geteuid) for _ in range(6)}
    await executor.stop()
    print(os.geteuid(), sorted(euids))

asyncio.run(check())
"""


class TestExecutor:

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_warm_worker_before_ready(self):
        executor = Executor(max_workers=1)

        await executor.spawn()
        try:
            assert executor.worker_pid is not None
            assert executor.worker_pid != os.getpid()
            assert await executor.run(pow, 2, 10) == 1024
        finally:
            await executor.stop()

    @pytest.mark.asyncio
    async def test_run_requires_running_pool(self):
        with pytest.raises(RuntimeError):
            await Executor().run(pow, 2, 2)

    @pytest.mark.asyncio
    async def test_workers_demoted_when_root(self):
        privileges = PrivilegeController("maildeck", "mail")

        with patch.object(privileges, "worker_identity", return_value=(1001, 1002)), \
                patch("services.workers.ProcessPoolExecutor") as pool_cls:
            pool_cls.return_value.submit.return_value = _completed(4242)
            executor = Executor(2, privileges)
            await executor.spawn()

        pool_cls.assert_called_once_with(max_workers=2, initializer=demote_worker, initargs=(1001, 1002))
        assert executor.worker_pid == 4242
        await executor.stop()

    @pytest.mark.asyncio
    async def test_plain_pool_without_identity(self):
        privileges = PrivilegeController()

        with patch.object(privileges, "worker_identity", return_value=None), \
                patch("services.workers.ProcessPoolExecutor") as pool_cls:
            pool_cls.return_value.submit.return_value = _completed(4242)
            executor = Executor(1, privileges)
            await executor.spawn()

        pool_cls.assert_called_once_with(max_workers=1)
        await executor.stop()

    @pytest.mark.asyncio
    async def test_failed_warmup_shuts_pool_down(self):
        with patch("services.workers.ProcessPoolExecutor") as pool_cls:
            pool = pool_cls.return_value
            pool.submit.return_value = _completed(error=RuntimeError("worker died"))
            executor = Executor(1)

            with pytest.raises(FatalServiceStartError, match="worker died"):
                await executor.spawn()

        pool.shutdown.assert_called_once_with(wait=False, cancel_futures=True)
        assert not executor.is_running

    @pytest.mark.slow
    @pytest.mark.skipif(os.geteuid() != 0, reason="needs root")
    def test_jobs_after_drop_run_unprivileged(self):
        try:
            nobody_uid = pwd.getpwnam("nobody").pw_uid
        except KeyError:
            pytest.skip("no 'nobody' account")
        root = Path(__file__).resolve().parents[2]

        result = subprocess.run(
            [sys.executable, "-c", DROP_THEN_RUN],
            cwd=root, env={**os.environ, "PYTHONPATH": str(root)},
            capture_output=True, text=True, timeout=60,
        )

        assert result.returncode == 0, result.stderr
        assert result.stdout.strip().splitlines()[-1] == f"{nobody_uid} [{nobody_uid}]"


class TestQueueWorkers:

    def test_service_names(self):
        assert Importer().name == "importer"
        assert FeedChecker().name == "feedcheck"
        assert Senders().name == "senders"

    @pytest.mark.asyncio
    async def test_senders_accept_jobs_before_spawn(self):
        sent = []

        async def deliver(message):
            sent.append(message)

        senders = Senders(handler=deliver)
        senders.submit("queued-early")

        await senders.spawn()
        try:
            await asyncio.wait_for(senders.drain(), timeout=1)
        finally:
            await senders.stop()

        assert sent == ["queued-early"]


class TestTzUpdate:

    def test_offsets_for_fixed_instant(self):
        offsets = timezone_offsets(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))

        assert offsets["UTC"] == 0
        assert offsets["Asia/Kolkata"] == 330
        assert offsets["America/New_York"] == -300

    @pytest.mark.asyncio
    async def test_store_called_only_on_change(self):
        store = AsyncMock()
        service = TzUpdateService(store=store)

        await service.tick()
        await service.tick()

        store.assert_awaited_once()
        assert service.offsets["UTC"] == 0


def test_periodic_service_names():
    assert TzUpdateService().name == "tzupdate"
    assert TriggersService().name == "triggers"
    assert GdprCleanupService().name == "gdpr-cleanup"


class TestReportProcessor:

    @pytest.mark.asyncio
    async def test_processing_reports_marked_failed(self, storage_engine):
        async with storage_engine.session() as session:
            session.add_all([
                Report(name="interrupted", state=ReportState.PROCESSING.value),
                Report(name="done", state=ReportState.FINISHED.value),
                Report(name="waiting", state=ReportState.SCHEDULED.value),
            ])

        processor = ReportProcessor(storage_engine)
        reset = await processor.init()

        assert reset == 1
        assert processor.initialized
        async with storage_engine.session() as session:
            states = dict((await session.execute(select(Report.name, Report.state))).all())
        assert states == {
            "interrupted": ReportState.FAILED.value,
            "done": ReportState.FINISHED.value,
            "waiting": ReportState.SCHEDULED.value,
        }

    @pytest.mark.asyncio
    async def test_nothing_to_reset(self, storage_engine):
        assert await ReportProcessor(storage_engine).init() == 0
