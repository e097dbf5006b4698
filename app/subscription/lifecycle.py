"""
Lifecycle Orchestrator

클럽 구독 라이프사이클 진입점. 요청 또는 스케줄된 스윕마다:
1. 구독 레코드 조회
2. 갱신 시점이 지난 결제 주기 변경 확정
3. 시간 경과에 따른 상태 전진 (TRIALING → GRACE → EXPIRED, 역행 없음)
4. 체험 중이면 참여도 평가 후 연장 적용
5. 최신 상태 반환

상태 머신:
- TRIALING →(체험 종료)→ GRACE →(유예 48시간 경과, 미결제)→ EXPIRED
- TRIALING/GRACE →(결제 확인)→ ACTIVE →(해지)→ CANCELED
- 클럽 삭제 시 레코드 제거
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from loguru import logger

from .activation import ActivationScheduler
from .audit import AuditAction, AuditRecorder
from .config import LifecycleConfig, lifecycle_config
from .eligibility import evaluate, engagement_score
from .exceptions import (
    AlreadyExtended,
    InvalidTransition,
    LifecycleError,
    NotFound,
    PersistenceError,
)
from .extensions import ExtensionManager
from .grace import days_remaining, grace_status
from .models import (
    TIME_DRIVEN_ORDER,
    AuditEntry,
    BillingEvent,
    BillingEventType,
    ClubSubscription,
    EligibilityDecision,
    EngagementEvent,
    EngagementMetrics,
    EvaluationResult,
    ExtensionMode,
    OfferType,
    PlanCycle,
    SubscriptionStatus,
    SubscriptionView,
    SweepReport,
)
from .repository import SubscriptionRepository, short_id
from .tracker import EngagementTracker


class LifecycleOrchestrator:
    """구독 라이프사이클 오케스트레이터"""

    def __init__(
        self,
        repository: SubscriptionRepository,
        config: Optional[LifecycleConfig] = None
    ):
        self.repository = repository
        self.config = config or lifecycle_config
        self.audit = AuditRecorder(repository)
        self.tracker = EngagementTracker(repository)
        self.extensions = ExtensionManager(repository, self.audit, self.config)
        self.activation = ActivationScheduler(repository, self.audit)

    # =============================================
    # 생성 / 조회
    # =============================================

    async def start_trial(
        self,
        club_id: str,
        offer_type: OfferType = OfferType.STANDARD,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """클럽 가입 시 체험 시작 (이미 있으면 기존 레코드 반환)"""
        now = now or datetime.now(timezone.utc)
        existing = await self.repository.get_subscription(club_id)
        if existing:
            return existing

        days = self.config.founder_trial_days if offer_type == OfferType.FOUNDER else self.config.trial_days
        trial_ends_at = now + timedelta(days=days)
        subscription = ClubSubscription(
            club_id=club_id,
            status=SubscriptionStatus.TRIALING,
            offer_type=offer_type,
            trial_started_at=now,
            trial_ends_at=trial_ends_at,
            trial_base_ends_at=trial_ends_at,
            status_changed_at=now,
            created_at=now,
            updated_at=now,
        )

        try:
            created = await self.repository.insert_subscription(subscription)
        except PersistenceError:
            # 동시 가입 요청: 먼저 생성된 레코드 사용
            existing = await self.repository.get_subscription(club_id)
            if existing:
                return existing
            raise

        try:
            await self.audit.record(
                AuditAction.TRIAL_STARTED, None, created, actor,
                metadata={"offer_type": offer_type.value, "days": days}, at=now
            )
        except PersistenceError:
            await self.repository.delete_subscription(club_id)
            raise

        logger.info(f"체험 시작: {short_id(club_id)} ({days}일, {offer_type.value})")
        return created

    async def _load(self, club_id: str) -> ClubSubscription:
        subscription = await self.repository.get_subscription(club_id)
        if subscription is None:
            raise NotFound("구독 정보를 찾을 수 없습니다", club_id)
        return subscription

    async def _advance_status(
        self,
        subscription: ClubSubscription,
        now: datetime
    ) -> Tuple[ClubSubscription, bool]:
        """시간 경과에 따른 상태 전진 (순서상 앞으로만)"""
        if subscription.status not in TIME_DRIVEN_ORDER:
            return subscription, False

        implied = grace_status(subscription.trial_ends_at, now, self.config).phase
        if TIME_DRIVEN_ORDER[implied] <= TIME_DRIVEN_ORDER[subscription.status]:
            return subscription, False

        updated = await self.audit.apply(
            AuditAction.STATUS_ADVANCED,
            subscription,
            expected={
                "status": subscription.status,
                "trial_ends_at": subscription.trial_ends_at,
            },
            changes={
                "status": implied,
                "status_changed_at": now,
            },
            metadata={"from": subscription.status.value, "to": implied.value},
            at=now
        )
        if updated is None:
            # 다른 호출이 먼저 전진시켰거나 연장됨
            return await self._load(subscription.club_id), False

        logger.info(
            f"상태 전이: {short_id(subscription.club_id)} "
            f"{subscription.status.value} → {implied.value}"
        )
        return updated, True

    async def _refresh(
        self,
        club_id: str,
        now: datetime
    ) -> Tuple[ClubSubscription, bool, bool]:
        """예약 변경 확정 + 상태 전진"""
        subscription, committed = await self.activation.commit_pending_change(club_id, now)
        subscription, advanced = await self._advance_status(subscription, now)
        return subscription, advanced, committed

    def _view(
        self,
        subscription: ClubSubscription,
        now: datetime,
        metrics: Optional[EngagementMetrics] = None
    ) -> SubscriptionView:
        return SubscriptionView(
            subscription=subscription,
            grace=grace_status(subscription.trial_ends_at, now, self.config),
            days_remaining=days_remaining(subscription.trial_ends_at, now),
            engagement_level=engagement_score(metrics, self.config) if metrics else None,
        )

    async def get_club_subscription(
        self,
        club_id: str,
        now: Optional[datetime] = None
    ) -> SubscriptionView:
        """최신 구독 상태 (유예 상태는 매번 새로 계산)"""
        now = now or datetime.now(timezone.utc)
        subscription, _, _ = await self._refresh(club_id, now)
        metrics = await self.tracker.snapshot(club_id)
        return self._view(subscription, now, metrics)

    async def list_audit(self, club_id: str, limit: int = 50) -> List[AuditEntry]:
        await self._load(club_id)
        return await self.repository.list_audit(club_id, limit)

    # =============================================
    # 참여도 / 연장
    # =============================================

    async def check_auto_extension_eligibility(
        self,
        club_id: str,
        now: Optional[datetime] = None
    ) -> EligibilityDecision:
        """연장 자격 확인 (상태 변경 없음)"""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)
        metrics = await self.tracker.snapshot(club_id)
        return evaluate(metrics, subscription, now, self.config)

    async def update_engagement_metrics(
        self,
        club_id: str,
        event: EngagementEvent,
        now: Optional[datetime] = None
    ) -> EngagementMetrics:
        """
        참여도 이벤트 반영 후 자동 연장 확인

        연장 평가 실패는 이벤트 기록을 실패시키지 않는다. 다음 스윕에서 재평가된다.
        """
        now = now or datetime.now(timezone.utc)
        await self._load(club_id)
        metrics = await self.tracker.record(club_id, event, now)

        try:
            await self.evaluate_club(club_id, now)
        except LifecycleError as e:
            logger.warning(f"참여도 반영 후 연장 평가 실패 ({short_id(club_id)}): {e.message}")

        return metrics

    async def evaluate_club(
        self,
        club_id: str,
        now: Optional[datetime] = None
    ) -> EvaluationResult:
        """라이프사이클 평가 1회 (요청 또는 스윕)"""
        now = now or datetime.now(timezone.utc)
        subscription, advanced, committed = await self._refresh(club_id, now)

        decision = None
        applied = None
        if subscription.status == SubscriptionStatus.TRIALING:
            metrics = await self.tracker.snapshot(club_id)
            decision = evaluate(metrics, subscription, now, self.config)
            if decision.qualifies:
                try:
                    subscription = await self.extensions.apply_decision(club_id, decision, now)
                    applied = decision.mode
                except AlreadyExtended:
                    logger.debug(f"다른 평가가 먼저 연장을 적용함 ({short_id(club_id)})")
                    subscription = await self._load(club_id)

        return EvaluationResult(
            club_id=club_id,
            status=subscription.status,
            advanced=advanced,
            committed_plan_change=committed,
            decision=decision,
            extension_applied=applied,
        )

    async def grant_auto_extension(
        self,
        club_id: str,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """자동 연장 부여"""
        now = now or datetime.now(timezone.utc)
        subscription, _, _ = await self._refresh(club_id, now)
        metrics = await self.tracker.snapshot(club_id)
        decision = evaluate(metrics, subscription, now, self.config)
        reason = decision.reason if decision.mode == ExtensionMode.AUTO else "requested"
        return await self.extensions.grant_auto_extension(club_id, reason, now, actor)

    async def accept_proposed_extension(
        self,
        club_id: str,
        actor: str,
        now: Optional[datetime] = None
    ) -> ClubSubscription:
        """클럽 관리자의 연장 제안 수락"""
        now = now or datetime.now(timezone.utc)
        await self._refresh(club_id, now)
        return await self.extensions.accept_proposed_extension(club_id, actor, now)

    async def grant_manual_extension(
        self,
        club_id: str,
        days: int,
        actor: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ClubSubscription:
        """운영 관리자 수동 연장"""
        now = now or datetime.now(timezone.utc)
        await self._refresh(club_id, now)
        return await self.extensions.grant_manual_extension(club_id, days, actor, notes, now)

    # =============================================
    # 활성화 / 결제 이벤트
    # =============================================

    async def activate_subscription(
        self,
        club_id: str,
        cycle: Optional[PlanCycle] = None,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        now = now or datetime.now(timezone.utc)
        await self._refresh(club_id, now)
        return await self.activation.activate_subscription(club_id, cycle, now, actor)

    async def schedule_activation(
        self,
        club_id: str,
        cycle: PlanCycle,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        now = now or datetime.now(timezone.utc)
        await self._refresh(club_id, now)
        return await self.activation.schedule_activation(club_id, cycle, now, actor)

    async def cancel_subscription(
        self,
        club_id: str,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """ACTIVE → CANCELED (이미 해지됐으면 그대로 반환)"""
        now = now or datetime.now(timezone.utc)
        subscription, _, _ = await self._refresh(club_id, now)

        if subscription.status == SubscriptionStatus.CANCELED:
            return subscription
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidTransition(
                f"활성 구독만 해지할 수 있습니다 (현재: {subscription.status.value})", club_id
            )

        updated = await self.audit.apply(
            AuditAction.SUBSCRIPTION_CANCELED,
            subscription,
            expected={"status": SubscriptionStatus.ACTIVE},
            changes={
                "status": SubscriptionStatus.CANCELED,
                "status_changed_at": now,
                "canceled_at": now,
                "pending_plan_cycle": None,
                "pending_plan_effective_at": None,
            },
            actor=actor,
            at=now
        )
        if updated is None:
            current = await self._load(club_id)
            if current.status == SubscriptionStatus.CANCELED:
                return current
            raise PersistenceError("다른 요청과 충돌했습니다. 다시 시도해주세요", club_id)

        logger.info(f"구독 해지: {short_id(club_id)}")
        return updated

    async def _renew_period(
        self,
        subscription: ClubSubscription,
        period_end: datetime,
        now: datetime,
        period_start: Optional[datetime] = None
    ) -> ClubSubscription:
        """결제사가 알려준 주기로 갱신 (period_start 없으면 이전 주기 끝부터)"""
        updated = await self.audit.apply(
            AuditAction.SUBSCRIPTION_RENEWED,
            subscription,
            expected={
                "status": SubscriptionStatus.ACTIVE,
                "current_period_end": subscription.current_period_end,
            },
            changes={
                "current_period_start": period_start or subscription.current_period_end or now,
                "current_period_end": period_end,
            },
            actor="billing",
            metadata={"period_end": period_end.isoformat()},
            at=now
        )
        return updated or await self._load(subscription.club_id)

    async def handle_billing_event(
        self,
        club_id: str,
        event: BillingEvent,
        now: Optional[datetime] = None
    ) -> ClubSubscription:
        """결제사 콜백 처리 (재전송되어도 같은 결과)"""
        now = now or event.occurred_at or datetime.now(timezone.utc)
        subscription, _, _ = await self._refresh(club_id, now)
        logger.info(f"결제 이벤트: {event.event_type.value} ({short_id(club_id)})")

        if event.event_type == BillingEventType.SUBSCRIPTION_CANCELED:
            return await self.cancel_subscription(club_id, now, actor="billing")

        if event.event_type == BillingEventType.PAYMENT_FAILED:
            # 상태는 바꾸지 않음: 체험/유예 타임라인이 그대로 진행
            await self.audit.record(
                AuditAction.PAYMENT_FAILED, subscription, subscription, "billing",
                metadata={"external_id": event.external_id}, at=now
            )
            return subscription

        # 결제 성공
        if subscription.status in (SubscriptionStatus.TRIALING, SubscriptionStatus.GRACE):
            activated = await self.activation.activate_subscription(
                club_id, event.plan_cycle, now, actor="billing"
            )
            if event.current_period_end and event.current_period_end != activated.current_period_end:
                return await self._renew_period(
                    activated, event.current_period_end, now, activated.current_period_start
                )
            return activated

        if subscription.status == SubscriptionStatus.ACTIVE:
            period_end = event.current_period_end
            if period_end and (subscription.current_period_end is None
                               or period_end > subscription.current_period_end):
                return await self._renew_period(subscription, period_end, now)
            return subscription

        raise InvalidTransition(
            f"종료된 구독에는 결제를 반영할 수 없습니다 (현재: {subscription.status.value})", club_id
        )

    # =============================================
    # 스윕 / 삭제
    # =============================================

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """종료되지 않은 모든 클럽 평가 (클럽별 독립, 병렬)"""
        now = now or datetime.now(timezone.utc)
        report = SweepReport(started_at=now)
        club_ids = await self.repository.list_open_club_ids()
        semaphore = asyncio.Semaphore(max(1, self.config.sweep_concurrency))

        async def _evaluate(club_id: str) -> Optional[EvaluationResult]:
            async with semaphore:
                try:
                    return await self.evaluate_club(club_id, now)
                except LifecycleError as e:
                    logger.warning(f"스윕 평가 실패 ({short_id(club_id)}): {e.message}")
                    report.errors.append({"club_id": club_id, "code": e.code, "detail": e.message})
                except Exception as e:
                    logger.exception(f"스윕 평가 오류 ({short_id(club_id)}): {e}")
                    report.errors.append({"club_id": club_id, "code": "unexpected", "detail": str(e)})
                return None

        results = await asyncio.gather(*[_evaluate(club_id) for club_id in club_ids])

        for result in results:
            if result is None:
                continue
            report.processed += 1
            report.advanced += int(result.advanced)
            report.committed += int(result.committed_plan_change)
            report.extended += int(result.extension_applied is not None)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"스윕 완료: {report.processed}개 처리, 전이 {report.advanced}, "
            f"연장 {report.extended}, 주기 확정 {report.committed}, 오류 {len(report.errors)}"
        )
        return report

    async def delete_club(self, club_id: str, actor: str = "system") -> None:
        """클럽 삭제 시 구독 레코드 제거 (감사 로그는 유지)"""
        subscription = await self._load(club_id)
        # 감사 기록 실패 시 레코드는 그대로 남는다
        await self.audit.record(AuditAction.SUBSCRIPTION_DELETED, subscription, None, actor)
        await self.repository.delete_subscription(club_id)
        logger.info(f"구독 삭제: {short_id(club_id)}")
