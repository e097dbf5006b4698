"""
유예 기간 계산

체험 종료 시점과 현재 시각만으로 단계(TRIALING/GRACE/EXPIRED)를 계산한다.
저장된 상태를 신뢰하지 않고 조회할 때마다 다시 계산해야 한다.
"""
from datetime import datetime, timedelta
from typing import Optional

from .config import LifecycleConfig, lifecycle_config
from .models import GraceStatus, SubscriptionStatus


def grace_status(
    trial_ends_at: datetime,
    now: datetime,
    config: Optional[LifecycleConfig] = None
) -> GraceStatus:
    """
    체험 종료 시점 기준 현재 단계와 남은 시간

    - now < trial_ends_at: TRIALING (체험 종료까지)
    - trial_ends_at <= now < trial_ends_at + grace: GRACE (유예 종료까지)
    - 그 이후: EXPIRED (남은 시간 0)
    """
    config = config or lifecycle_config
    grace_ends_at = trial_ends_at + timedelta(hours=config.grace_hours)

    if now < trial_ends_at:
        return GraceStatus(
            phase=SubscriptionStatus.TRIALING,
            remaining=trial_ends_at - now,
            grace_ends_at=grace_ends_at
        )

    if now < grace_ends_at:
        return GraceStatus(
            phase=SubscriptionStatus.GRACE,
            remaining=grace_ends_at - now,
            grace_ends_at=grace_ends_at
        )

    return GraceStatus(
        phase=SubscriptionStatus.EXPIRED,
        remaining=timedelta(0),
        grace_ends_at=grace_ends_at
    )


def days_remaining(trial_ends_at: Optional[datetime], now: datetime) -> int:
    """체험 종료까지 남은 일수 (자정 기준, 음수 없음)"""
    if trial_ends_at is None:
        return 0
    return max(0, (trial_ends_at.date() - now.date()).days)
