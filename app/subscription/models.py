"""
Subscription Lifecycle Models

Pydantic 모델 정의
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
from pydantic import BaseModel, Field, field_validator


# =============================================
# Enums
# =============================================

class SubscriptionStatus(str, Enum):
    """구독 상태"""
    TRIALING = "trialing"   # 무료 체험
    GRACE = "grace"         # 체험 종료 후 48시간 유예
    ACTIVE = "active"       # 유료 구독
    CANCELED = "canceled"   # 해지 (종료 상태)
    EXPIRED = "expired"     # 만료 (종료 상태)


# 시간 경과로 진행되는 상태의 순서 (역행 금지)
TIME_DRIVEN_ORDER = {
    SubscriptionStatus.TRIALING: 0,
    SubscriptionStatus.GRACE: 1,
    SubscriptionStatus.EXPIRED: 2,
}

TERMINAL_STATUSES = {SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED}


class PlanCycle(str, Enum):
    """결제 주기"""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class OfferType(str, Enum):
    """가입 오퍼 유형"""
    STANDARD = "standard"   # 14일 체험
    FOUNDER = "founder"     # 90일 체험


class ExtensionKind(str, Enum):
    """연장 유형"""
    AUTO = "auto"           # 시스템 자동 부여
    PROPOSED = "proposed"   # 제안 후 관리자 수락


class ExtensionMode(str, Enum):
    """자격 평가 결과"""
    AUTO = "auto"
    PROPOSED = "proposed"
    NONE = "none"


class EngagementEventType(str, Enum):
    """참여도 이벤트"""
    PLAYER_CREATED = "player_created"
    MATCH_LOGGED = "match_logged"
    DASHBOARD_LOGIN = "dashboard_login"
    INVITATION_SENT = "invitation_sent"


class BillingEventType(str, Enum):
    """결제사 콜백 이벤트"""
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


class EngagementLevel(str, Enum):
    """참여도 점수 등급"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================
# Persisted Records
# =============================================

class ClubSubscription(BaseModel):
    """클럽 구독 레코드 (club_subscriptions 테이블, 클럽당 1행)"""
    club_id: str
    status: SubscriptionStatus = SubscriptionStatus.TRIALING
    offer_type: OfferType = OfferType.STANDARD

    # 체험 기간
    trial_started_at: datetime
    trial_ends_at: datetime
    trial_base_ends_at: Optional[datetime] = None

    # 결제 주기
    plan_cycle: Optional[PlanCycle] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None  # 다음 갱신 시점
    pending_plan_cycle: Optional[PlanCycle] = None
    pending_plan_effective_at: Optional[datetime] = None

    # 자동/제안 연장 (클럽당 1회)
    extension_kind: Optional[ExtensionKind] = None
    extension_granted_at: Optional[datetime] = None
    auto_extension_reason: Optional[str] = None
    extension_proposed: bool = False
    extension_proposed_days: Optional[int] = None
    extension_proposed_at: Optional[datetime] = None
    extension_accepted_at: Optional[datetime] = None

    # 관리자 수동 연장
    manual_extension_days: Optional[int] = None
    manual_extension_at: Optional[datetime] = None
    manual_extension_by: Optional[str] = None
    manual_extension_notes: Optional[str] = None

    status_changed_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_extension(self) -> bool:
        """자동/제안 연장 중 하나라도 존재하는지"""
        return self.extension_kind is not None or self.extension_proposed

    @property
    def proposal_pending(self) -> bool:
        """수락 대기 중인 제안이 있는지"""
        return self.extension_proposed and self.extension_accepted_at is None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class EngagementMetrics(BaseModel):
    """클럽 참여도 스냅샷 (club_engagement_metrics 테이블)"""
    club_id: str
    players_invited_count: int = 0
    matches_logged_count: int = 0
    dashboard_login_count: int = 0
    invitations_sent_count: int = 0
    last_activity_at: Optional[datetime] = None


class AuditEntry(BaseModel):
    """구독 변경 감사 로그 (append-only)"""
    club_id: str
    action: str
    actor: str = "system"
    previous: Dict[str, Any] = Field(default_factory=dict)
    new: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# =============================================
# Decisions & Views
# =============================================

class GraceStatus(BaseModel):
    """유예 기간 계산 결과"""
    phase: SubscriptionStatus
    remaining: timedelta
    grace_ends_at: datetime


class EligibilityDecision(BaseModel):
    """연장 자격 평가 결과"""
    qualifies: bool = False
    mode: ExtensionMode = ExtensionMode.NONE
    reason: Optional[str] = None
    signals: Dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def none(cls, reason: Optional[str] = None, signals: Optional[Dict[str, bool]] = None) -> "EligibilityDecision":
        return cls(qualifies=False, mode=ExtensionMode.NONE, reason=reason, signals=signals or {})


class SubscriptionView(BaseModel):
    """구독 조회 응답 (유예 상태는 매번 새로 계산)"""
    subscription: ClubSubscription
    grace: GraceStatus
    days_remaining: int
    engagement_level: Optional[EngagementLevel] = None


class EvaluationResult(BaseModel):
    """라이프사이클 평가 1회 결과"""
    club_id: str
    status: SubscriptionStatus
    advanced: bool = False
    committed_plan_change: bool = False
    decision: Optional[EligibilityDecision] = None
    extension_applied: Optional[ExtensionMode] = None


class SweepReport(BaseModel):
    """스윕 결과 요약"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: int = 0
    advanced: int = 0
    extended: int = 0
    committed: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)


# =============================================
# Request Models
# =============================================

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """시간대 없는 시각은 UTC로 간주"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BillingEvent(BaseModel):
    """결제사 콜백 이벤트 (서명 검증은 외부에서 완료됨)"""
    event_type: BillingEventType
    occurred_at: Optional[datetime] = None
    plan_cycle: Optional[PlanCycle] = None
    current_period_end: Optional[datetime] = None
    external_id: Optional[str] = None

    @field_validator("occurred_at", "current_period_end")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class EngagementEvent(BaseModel):
    """참여도 이벤트"""
    event_type: EngagementEventType
    count: int = Field(default=1, ge=1, le=1000)
    occurred_at: Optional[datetime] = None

    @field_validator("occurred_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ScheduleActivationRequest(BaseModel):
    """결제 주기 변경 요청"""
    plan_cycle: PlanCycle


class ActivateRequest(BaseModel):
    """즉시 활성화 요청"""
    plan_cycle: Optional[PlanCycle] = None


class StartTrialRequest(BaseModel):
    """체험 시작 요청"""
    offer_type: OfferType = OfferType.STANDARD


class ManualExtensionRequest(BaseModel):
    """관리자 수동 연장 요청"""
    days: int = Field(..., ge=1, le=365)
    notes: Optional[str] = Field(None, max_length=1000)
