"""
Engagement Tracker Tests - 참여도 기록 테스트
"""
import pytest
from datetime import timedelta

from app.subscription.models import EngagementEvent, EngagementEventType
from app.subscription.tracker import EngagementTracker


class TestEngagementTracker:
    """참여도 누적"""

    @pytest.mark.asyncio
    async def test_counts_accumulate(self, repository, club_id, now):
        """이벤트별 카운터 증가"""
        tracker = EngagementTracker(repository)

        await tracker.record(club_id, EngagementEvent(event_type=EngagementEventType.PLAYER_CREATED), now)
        await tracker.record(club_id, EngagementEvent(event_type=EngagementEventType.PLAYER_CREATED, count=3), now)
        metrics = await tracker.record(club_id, EngagementEvent(event_type=EngagementEventType.DASHBOARD_LOGIN), now)

        assert metrics.players_invited_count == 4
        assert metrics.dashboard_login_count == 1
        assert metrics.matches_logged_count == 0

    @pytest.mark.asyncio
    async def test_occurred_at_preferred(self, repository, club_id, now):
        """이벤트 발생 시각 우선"""
        tracker = EngagementTracker(repository)
        occurred = now - timedelta(hours=2)

        metrics = await tracker.record(
            club_id,
            EngagementEvent(event_type=EngagementEventType.MATCH_LOGGED, occurred_at=occurred),
            now
        )

        assert metrics.last_activity_at == occurred

    @pytest.mark.asyncio
    async def test_snapshot_empty(self, repository, club_id):
        """기록 없음 - 0"""
        metrics = await EngagementTracker(repository).snapshot(club_id)
        assert metrics.invitations_sent_count == 0
        assert metrics.last_activity_at is None

    def test_count_bounds(self):
        """count 범위 검증"""
        with pytest.raises(ValueError):
            EngagementEvent(event_type=EngagementEventType.INVITATION_SENT, count=0)
