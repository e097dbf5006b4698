"""
Pytest configuration and fixtures for subscription lifecycle tests
"""

import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.subscription.config import LifecycleConfig
from app.subscription.lifecycle import LifecycleOrchestrator
from app.subscription.models import (
    ClubSubscription,
    EngagementMetrics,
    SubscriptionStatus,
)
from app.subscription.repository import InMemorySubscriptionRepository

CLUB_ID = "7f3c9a12-5b4e-4d2a-9c61-0e8f2b7a4d10"


@pytest.fixture
def club_id():
    """테스트 클럽 ID"""
    return CLUB_ID


@pytest.fixture
def now():
    """고정 시각 (UTC)"""
    return datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    """기본값 설정 (환경변수 무시)"""
    return LifecycleConfig(
        trial_days=14,
        founder_trial_days=90,
        extension_days=15,
        grace_hours=48,
        proposal_lapse_policy="never",
        test_mode=True,
    )


@pytest.fixture
def repository():
    """메모리 저장소"""
    return InMemorySubscriptionRepository()


@pytest.fixture
def orchestrator(repository, config):
    """메모리 저장소 기반 오케스트레이터"""
    return LifecycleOrchestrator(repository, config)


def make_subscription(club_id: str, started_at: datetime, days: int = 14, **fields) -> ClubSubscription:
    """체험 중 구독 레코드"""
    ends_at = started_at + timedelta(days=days)
    data = {
        "club_id": club_id,
        "status": SubscriptionStatus.TRIALING,
        "trial_started_at": started_at,
        "trial_ends_at": ends_at,
        "trial_base_ends_at": ends_at,
        "created_at": started_at,
        "updated_at": started_at,
    }
    data.update(fields)
    return ClubSubscription(**data)


def make_metrics(club_id: str, players: int = 0, matches: int = 0, logins: int = 0, invitations: int = 0) -> EngagementMetrics:
    """참여도 스냅샷"""
    return EngagementMetrics(
        club_id=club_id,
        players_invited_count=players,
        matches_logged_count=matches,
        dashboard_login_count=logins,
        invitations_sent_count=invitations,
    )
