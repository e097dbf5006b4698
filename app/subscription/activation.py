"""
구독 활성화 / 결제 주기 변경 스케줄러

결제 주기 변경(월간 → 연간 등)은 결제 중인 주기가 있으면 다음 갱신 시점으로
미뤄서 주기 중간 일할 계산이나 이중 청구를 피한다. 미뤄진 변경은
pending_plan_cycle / pending_plan_effective_at에 저장되고, 갱신 시점이 지난 뒤
첫 스윕 또는 조회에서 확정된다.
"""
import calendar
from datetime import datetime, timezone
from typing import Optional, Tuple

from loguru import logger

from .audit import AuditAction, AuditRecorder
from .exceptions import InvalidTransition, NotFound, PersistenceError
from .models import ClubSubscription, PlanCycle, SubscriptionStatus
from .repository import SubscriptionRepository, short_id


def next_renewal_at(start: datetime, cycle: PlanCycle) -> datetime:
    """다음 갱신 시점 (월 단위는 말일 보정)"""
    if cycle == PlanCycle.ANNUAL:
        year = start.year + 1
        day = min(start.day, calendar.monthrange(year, start.month)[1])
        return start.replace(year=year, day=day)

    month = start.month % 12 + 1
    year = start.year + (1 if start.month == 12 else 0)
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def in_paid_cycle(subscription: ClubSubscription, now: datetime) -> bool:
    """갱신 경계가 남아 있는 유료 주기 중인지"""
    return (
        subscription.status == SubscriptionStatus.ACTIVE
        and subscription.plan_cycle is not None
        and subscription.current_period_end is not None
        and now < subscription.current_period_end
    )


class ActivationScheduler:
    """구독 활성화 스케줄러"""

    def __init__(self, repository: SubscriptionRepository, audit: AuditRecorder):
        self.repository = repository
        self.audit = audit

    async def _load(self, club_id: str) -> ClubSubscription:
        subscription = await self.repository.get_subscription(club_id)
        if subscription is None:
            raise NotFound("구독 정보를 찾을 수 없습니다", club_id)
        return subscription

    async def _reload_after_conflict(self, club_id: str) -> ClubSubscription:
        current = await self._load(club_id)
        if current.is_terminal:
            raise InvalidTransition(f"종료된 구독입니다 (현재: {current.status.value})", club_id)
        logger.warning(f"동시 변경 감지 ({short_id(club_id)})")
        raise PersistenceError("다른 요청과 충돌했습니다. 다시 시도해주세요", club_id)

    async def schedule_activation(
        self,
        club_id: str,
        requested_cycle: PlanCycle,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """
        결제 주기 변경 요청

        - 결제 중인 주기가 있고 다른 주기를 요청 → 다음 갱신 시점으로 예약
        - 현재 주기와 같은 주기를 요청 → 예약된 변경 철회
        - 그 외 (첫 활성화, 경계 충돌 없음) → 즉시 적용
        """
        now = now or datetime.now(timezone.utc)
        subscription, _ = await self.commit_pending_change(club_id, now)

        if subscription.is_terminal:
            raise InvalidTransition(
                f"종료된 구독은 결제 주기를 변경할 수 없습니다 (현재: {subscription.status.value})", club_id
            )

        if in_paid_cycle(subscription, now):
            if requested_cycle == subscription.plan_cycle:
                if subscription.pending_plan_cycle is None:
                    return subscription
                return await self._withdraw_pending(subscription, now, actor)
            return await self._defer(subscription, requested_cycle, now, actor)

        return await self._apply_now(subscription, requested_cycle, now, actor)

    async def _defer(
        self,
        subscription: ClubSubscription,
        requested_cycle: PlanCycle,
        now: datetime,
        actor: str
    ) -> ClubSubscription:
        effective_at = subscription.current_period_end
        if (subscription.pending_plan_cycle == requested_cycle
                and subscription.pending_plan_effective_at == effective_at):
            return subscription

        updated = await self.audit.apply(
            AuditAction.PLAN_CHANGE_SCHEDULED,
            subscription,
            expected={
                "status": SubscriptionStatus.ACTIVE,
                "plan_cycle": subscription.plan_cycle,
                "pending_plan_cycle": subscription.pending_plan_cycle,
                "current_period_end": effective_at,
            },
            changes={
                "pending_plan_cycle": requested_cycle,
                "pending_plan_effective_at": effective_at,
            },
            actor=actor,
            metadata={"requested_cycle": requested_cycle.value},
            at=now
        )
        if updated is None:
            return await self._reload_after_conflict(subscription.club_id)

        logger.info(
            f"결제 주기 변경 예약: {short_id(subscription.club_id)} "
            f"{subscription.plan_cycle.value} → {requested_cycle.value} ({effective_at.isoformat()})"
        )
        return updated

    async def _withdraw_pending(
        self,
        subscription: ClubSubscription,
        now: datetime,
        actor: str
    ) -> ClubSubscription:
        updated = await self.audit.apply(
            AuditAction.PLAN_CHANGE_WITHDRAWN,
            subscription,
            expected={
                "plan_cycle": subscription.plan_cycle,
                "pending_plan_cycle": subscription.pending_plan_cycle,
            },
            changes={
                "pending_plan_cycle": None,
                "pending_plan_effective_at": None,
            },
            actor=actor,
            at=now
        )
        if updated is None:
            return await self._reload_after_conflict(subscription.club_id)
        return updated

    async def _apply_now(
        self,
        subscription: ClubSubscription,
        requested_cycle: PlanCycle,
        now: datetime,
        actor: str
    ) -> ClubSubscription:
        if subscription.plan_cycle == requested_cycle and subscription.pending_plan_cycle is None:
            return subscription

        changes = {
            "plan_cycle": requested_cycle,
            "pending_plan_cycle": None,
            "pending_plan_effective_at": None,
        }
        # 경계가 지난 유료 구독은 새 주기를 지금부터 시작
        if subscription.status == SubscriptionStatus.ACTIVE:
            changes["current_period_start"] = now
            changes["current_period_end"] = next_renewal_at(now, requested_cycle)

        updated = await self.audit.apply(
            AuditAction.PLAN_CHANGED,
            subscription,
            expected={
                "status": subscription.status,
                "plan_cycle": subscription.plan_cycle,
                "pending_plan_cycle": subscription.pending_plan_cycle,
            },
            changes=changes,
            actor=actor,
            metadata={"requested_cycle": requested_cycle.value},
            at=now
        )
        if updated is None:
            return await self._reload_after_conflict(subscription.club_id)

        logger.info(f"결제 주기 즉시 적용: {short_id(subscription.club_id)} → {requested_cycle.value}")
        return updated

    async def commit_pending_change(
        self,
        club_id: str,
        now: Optional[datetime] = None
    ) -> Tuple[ClubSubscription, bool]:
        """
        갱신 시점이 지난 예약 변경 확정 (멱등)

        Returns:
            (최신 레코드, 이번 호출로 확정되었는지)
        """
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)

        pending = subscription.pending_plan_cycle
        effective_at = subscription.pending_plan_effective_at
        if pending is None or effective_at is None or now < effective_at:
            return subscription, False
        if subscription.status != SubscriptionStatus.ACTIVE:
            return subscription, False

        updated = await self.audit.apply(
            AuditAction.PLAN_CHANGE_COMMITTED,
            subscription,
            expected={
                "pending_plan_cycle": pending,
                "pending_plan_effective_at": effective_at,
            },
            changes={
                "plan_cycle": pending,
                "pending_plan_cycle": None,
                "pending_plan_effective_at": None,
                "current_period_start": effective_at,
                "current_period_end": next_renewal_at(effective_at, pending),
            },
            at=now
        )
        if updated is None:
            current = await self._load(club_id)
            if current.pending_plan_cycle is None:
                # 다른 호출이 이미 확정함
                return current, False
            raise PersistenceError("다른 요청과 충돌했습니다. 다시 시도해주세요", club_id)

        logger.info(f"결제 주기 변경 확정: {short_id(club_id)} → {pending.value}")
        return updated, True

    async def activate_subscription(
        self,
        club_id: str,
        cycle: Optional[PlanCycle] = None,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """체험 → 유료 즉시 전환 (이미 활성이면 그대로 반환)"""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)

        if subscription.status == SubscriptionStatus.ACTIVE:
            return subscription
        if subscription.status not in (SubscriptionStatus.TRIALING, SubscriptionStatus.GRACE):
            raise InvalidTransition(
                f"체험/유예 중인 클럽만 활성화할 수 있습니다 (현재: {subscription.status.value})", club_id
            )

        cycle = cycle or subscription.plan_cycle or PlanCycle.MONTHLY
        updated = await self.audit.apply(
            AuditAction.SUBSCRIPTION_ACTIVATED,
            subscription,
            expected={"status": subscription.status},
            changes={
                "status": SubscriptionStatus.ACTIVE,
                "status_changed_at": now,
                "activated_at": now,
                "plan_cycle": cycle,
                "pending_plan_cycle": None,
                "pending_plan_effective_at": None,
                "current_period_start": now,
                "current_period_end": next_renewal_at(now, cycle),
            },
            actor=actor,
            metadata={"plan_cycle": cycle.value},
            at=now
        )
        if updated is None:
            current = await self._load(club_id)
            if current.status == SubscriptionStatus.ACTIVE:
                return current
            return await self._reload_after_conflict(club_id)

        logger.info(f"구독 활성화: {short_id(club_id)} ({cycle.value})")
        return updated
