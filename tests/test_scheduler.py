"""
Lifecycle Scheduler Tests - 스윕 스케줄러 테스트
"""
import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from app.subscription.models import SweepReport
from scheduler.scheduler import LifecycleScheduler


def fake_orchestrator(report=None, error=None):
    orchestrator = MagicMock()
    orchestrator.sweep = AsyncMock(
        return_value=report or SweepReport(started_at=datetime.now(timezone.utc), processed=2),
        side_effect=error
    )
    return orchestrator


class TestLifecycleScheduler:
    """스윕 스케줄러"""

    def test_setup_registers_job(self):
        """간격 트리거 등록"""
        scheduler = LifecycleScheduler(fake_orchestrator(), interval_minutes=15)
        scheduler.setup()

        jobs = scheduler.scheduler.get_jobs()
        assert [job.id for job in jobs] == ["lifecycle_sweep"]
        assert jobs[0].trigger.interval.total_seconds() == 15 * 60

    @pytest.mark.asyncio
    async def test_run_now(self):
        """즉시 실행 - 결과 보관"""
        orchestrator = fake_orchestrator()
        scheduler = LifecycleScheduler(orchestrator)

        report = await scheduler.run_now()

        assert report.processed == 2
        orchestrator.sweep.assert_awaited_once()
        status = scheduler.get_status()
        assert status["is_running"] is False
        assert status["last_report"]["processed"] == 2

    @pytest.mark.asyncio
    async def test_overlapping_run_skipped(self):
        """진행 중이면 건너뜀"""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_sweep():
            started.set()
            await release.wait()
            return SweepReport(started_at=datetime.now(timezone.utc))

        orchestrator = MagicMock()
        orchestrator.sweep = slow_sweep
        scheduler = LifecycleScheduler(orchestrator)

        first = asyncio.create_task(scheduler.run_now())
        await started.wait()
        assert await scheduler.run_now() is None

        release.set()
        assert await first is not None

    @pytest.mark.asyncio
    async def test_error_logged_not_raised(self):
        """스윕 오류 - 스케줄러는 계속 동작"""
        scheduler = LifecycleScheduler(fake_orchestrator(error=RuntimeError("db down")))

        assert await scheduler.run_now() is None
        assert scheduler.get_status()["is_running"] is False
