"""
구독 라이프사이클 스윕 스케줄러
"""
from typing import Optional
from datetime import datetime, timezone
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from app.subscription.config import scheduler_config
from app.subscription.models import SweepReport


class LifecycleScheduler:
    """미종료 클럽 주기적 평가 스케줄러"""

    def __init__(self, orchestrator, interval_minutes: Optional[int] = None):
        """
        Args:
            orchestrator: LifecycleOrchestrator
            interval_minutes: 스윕 간격 (기본: SWEEP_INTERVAL_MINUTES)
        """
        self.scheduler = AsyncIOScheduler()
        self.orchestrator = orchestrator
        self.interval_minutes = interval_minutes or scheduler_config.sweep_interval_minutes
        self._is_running = False
        self._last_sweep: Optional[datetime] = None
        self._last_report: Optional[SweepReport] = None

    def setup(self):
        """스케줄러 설정"""
        self.scheduler.add_job(
            self._run_sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            id="lifecycle_sweep",
            name="Subscription Lifecycle Sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"구독 스윕 스케줄 등록 ({self.interval_minutes}분 간격)")

    async def _run_sweep(self) -> Optional[SweepReport]:
        """스윕 실행 (이전 스윕이 진행 중이면 스킵)"""
        if self._is_running:
            logger.warning("이미 스윕이 진행 중입니다")
            return None

        self._is_running = True
        logger.info("=== 구독 스윕 시작 ===")

        try:
            report = await self.orchestrator.sweep()
            self._last_sweep = datetime.now(timezone.utc)
            self._last_report = report
            return report
        except Exception as e:
            logger.error(f"구독 스윕 오류: {e}")
            return None
        finally:
            self._is_running = False

    def start(self):
        """스케줄러 시작"""
        self.setup()
        self.scheduler.start()
        logger.info("스케줄러 시작됨")

    def stop(self):
        """스케줄러 중지"""
        self.scheduler.shutdown()
        logger.info("스케줄러 중지됨")

    def get_status(self) -> dict:
        """스케줄러 상태 조회"""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

        return {
            "is_running": self._is_running,
            "last_sweep": self._last_sweep.isoformat() if self._last_sweep else None,
            "last_report": self._last_report.model_dump(mode="json") if self._last_report else None,
            "jobs": jobs
        }

    async def run_now(self) -> Optional[SweepReport]:
        """즉시 실행"""
        return await self._run_sweep()
