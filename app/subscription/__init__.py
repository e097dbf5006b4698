"""
Club Subscription Lifecycle Module

클럽 SaaS 구독 라이프사이클
- 체험 기간 / 48시간 유예 / 만료
- 참여도 기반 자동·제안 연장
- 결제 주기 변경 예약 및 확정
"""

from .router import router as subscription_router
from .lifecycle import LifecycleOrchestrator
from .models import (
    SubscriptionStatus,
    PlanCycle,
    OfferType,
    ExtensionMode,
    EngagementEventType,
    BillingEventType,
    ClubSubscription,
)
from .exceptions import (
    LifecycleError,
    NotFound,
    AlreadyExtended,
    NoProposalPending,
    InvalidTransition,
    PersistenceError,
    Unauthorized,
)

__all__ = [
    "subscription_router",
    "LifecycleOrchestrator",
    "SubscriptionStatus",
    "PlanCycle",
    "OfferType",
    "ExtensionMode",
    "EngagementEventType",
    "BillingEventType",
    "ClubSubscription",
    "LifecycleError",
    "NotFound",
    "AlreadyExtended",
    "NoProposalPending",
    "InvalidTransition",
    "PersistenceError",
    "Unauthorized",
]
