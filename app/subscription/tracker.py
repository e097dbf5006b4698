"""
참여도 기록

선수 생성, 경기 기록 등 클럽의 사용 신호를 누적한다.
자격 판단은 eligibility 모듈이 담당한다.
"""
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from .models import EngagementEvent, EngagementMetrics
from .repository import SubscriptionRepository, short_id


class EngagementTracker:
    """참여도 기록기"""

    def __init__(self, repository: SubscriptionRepository):
        self.repository = repository

    async def record(
        self,
        club_id: str,
        event: EngagementEvent,
        now: Optional[datetime] = None
    ) -> EngagementMetrics:
        """이벤트 반영 후 최신 스냅샷 반환"""
        occurred_at = event.occurred_at or now or datetime.now(timezone.utc)
        metrics = await self.repository.increment_metric(
            club_id, event.event_type, event.count, occurred_at
        )
        logger.debug(
            f"참여도 +{event.count} {event.event_type.value} ({short_id(club_id)})"
        )
        return metrics

    async def snapshot(self, club_id: str) -> EngagementMetrics:
        return await self.repository.get_metrics(club_id)
