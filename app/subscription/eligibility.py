"""
체험 연장 자격 평가

순수 함수: 참여도 스냅샷과 구독 상태만 보고 결정하며 상태를 변경하지 않는다.
결정의 적용은 ExtensionManager가 담당한다.

기준:
- AUTO: 선수 10명 이상 또는 경기 20건 이상
- PROPOSED: 체험 12일차 이후, 중간 참여 신호 4개 중 2개 이상
  (선수 4명+, 경기 10건+, 대시보드 접속 3회+, 초대 발송 1건+)
"""
from datetime import datetime
from typing import Dict, Optional

from .config import LifecycleConfig, lifecycle_config
from .models import (
    ClubSubscription,
    EngagementMetrics,
    EligibilityDecision,
    EngagementLevel,
    ExtensionMode,
    SubscriptionStatus,
)

REASON_PLAYERS = "10_players"
REASON_MATCHES = "20_matches"


def engagement_signals(
    metrics: EngagementMetrics,
    config: Optional[LifecycleConfig] = None
) -> Dict[str, bool]:
    """중간 수준 참여 신호"""
    config = config or lifecycle_config
    return {
        "players": metrics.players_invited_count >= config.proposal_min_players,
        "matches": metrics.matches_logged_count >= config.proposal_min_matches,
        "logins": metrics.dashboard_login_count >= config.proposal_min_logins,
        "invitations": metrics.invitations_sent_count >= config.proposal_min_invitations,
    }


def evaluate(
    metrics: EngagementMetrics,
    subscription: ClubSubscription,
    now: datetime,
    config: Optional[LifecycleConfig] = None
) -> EligibilityDecision:
    """연장 자격 평가"""
    config = config or lifecycle_config

    # 클럽당 연장은 한 번만 (자동/제안 공통)
    if subscription.has_extension:
        return EligibilityDecision.none("already_extended")

    if subscription.status != SubscriptionStatus.TRIALING or now >= subscription.trial_ends_at:
        return EligibilityDecision.none("not_in_trial")

    if metrics.players_invited_count < config.min_players_for_extension:
        return EligibilityDecision.none("no_players")

    if metrics.players_invited_count >= config.auto_min_players:
        return EligibilityDecision(qualifies=True, mode=ExtensionMode.AUTO, reason=REASON_PLAYERS)

    if metrics.matches_logged_count >= config.auto_min_matches:
        return EligibilityDecision(qualifies=True, mode=ExtensionMode.AUTO, reason=REASON_MATCHES)

    signals = engagement_signals(metrics, config)
    days_in_trial = (now - subscription.trial_started_at).days
    if days_in_trial < config.proposal_day:
        return EligibilityDecision.none("too_early", signals)

    if sum(signals.values()) >= config.proposal_min_signals:
        return EligibilityDecision(
            qualifies=True,
            mode=ExtensionMode.PROPOSED,
            reason="engagement_signals",
            signals=signals
        )

    return EligibilityDecision.none("below_threshold", signals)


def engagement_score(
    metrics: EngagementMetrics,
    config: Optional[LifecycleConfig] = None
) -> EngagementLevel:
    """참여도 등급 (low/medium/high)"""
    config = config or lifecycle_config
    score = 0

    if metrics.players_invited_count >= config.auto_min_players:
        score += 3
    elif metrics.players_invited_count >= config.proposal_min_players:
        score += 1

    if metrics.matches_logged_count >= config.auto_min_matches:
        score += 3
    elif metrics.matches_logged_count >= config.proposal_min_matches:
        score += 1

    if metrics.dashboard_login_count >= config.proposal_min_logins:
        score += 1
    if metrics.invitations_sent_count >= config.proposal_min_invitations:
        score += 1

    if score >= 6:
        return EngagementLevel.HIGH
    if score >= 3:
        return EngagementLevel.MEDIUM
    return EngagementLevel.LOW
