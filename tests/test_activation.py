"""
Activation Scheduler Tests - 활성화 / 결제 주기 변경 테스트
"""
import pytest
from datetime import datetime, timedelta, timezone

from app.subscription.activation import in_paid_cycle, next_renewal_at
from app.subscription.audit import AuditAction
from app.subscription.exceptions import InvalidTransition
from app.subscription.models import PlanCycle, SubscriptionStatus

from conftest import make_subscription


def active_monthly(club_id, now, renewal_in_days=10):
    """월간 결제 중, renewal_in_days일 후 갱신"""
    return make_subscription(
        club_id, now - timedelta(days=40),
        status=SubscriptionStatus.ACTIVE,
        plan_cycle=PlanCycle.MONTHLY,
        activated_at=now - timedelta(days=20),
        current_period_start=now - timedelta(days=20),
        current_period_end=now + timedelta(days=renewal_in_days),
    )


class TestNextRenewal:
    """갱신 시점 계산"""

    def test_monthly(self):
        start = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert next_renewal_at(start, PlanCycle.MONTHLY) == datetime(2025, 4, 10, 9, 0, tzinfo=timezone.utc)

    def test_monthly_end_of_month(self):
        """1월 31일 → 2월 말일"""
        start = datetime(2025, 1, 31, tzinfo=timezone.utc)
        assert next_renewal_at(start, PlanCycle.MONTHLY) == datetime(2025, 2, 28, tzinfo=timezone.utc)

    def test_monthly_december(self):
        """12월 → 다음 해 1월"""
        start = datetime(2025, 12, 15, tzinfo=timezone.utc)
        assert next_renewal_at(start, PlanCycle.MONTHLY) == datetime(2026, 1, 15, tzinfo=timezone.utc)

    def test_annual_leap_day(self):
        """2월 29일 → 다음 해 2월 28일"""
        start = datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert next_renewal_at(start, PlanCycle.ANNUAL) == datetime(2025, 2, 28, tzinfo=timezone.utc)


class TestScheduleActivation:
    """결제 주기 변경 요청"""

    @pytest.mark.asyncio
    async def test_first_activation_immediate(self, orchestrator, repository, club_id, now):
        """결제 주기 없음 - 즉시 적용"""
        await repository.insert_subscription(make_subscription(club_id, now))

        updated = await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        assert updated.plan_cycle == PlanCycle.ANNUAL
        assert updated.pending_plan_cycle is None

    @pytest.mark.asyncio
    async def test_mid_cycle_change_deferred(self, orchestrator, repository, club_id, now):
        """월간 결제 중 연간 요청 - 갱신 시점으로 예약"""
        sub = await repository.insert_subscription(active_monthly(club_id, now))

        updated = await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        assert updated.plan_cycle == PlanCycle.MONTHLY
        assert updated.pending_plan_cycle == PlanCycle.ANNUAL
        assert updated.pending_plan_effective_at == sub.current_period_end

        entries = await repository.list_audit(club_id)
        assert entries[0].action == AuditAction.PLAN_CHANGE_SCHEDULED.value

    @pytest.mark.asyncio
    async def test_repeat_request_is_noop(self, orchestrator, repository, club_id, now):
        """같은 예약 재요청 - 변경 없음"""
        await repository.insert_subscription(active_monthly(club_id, now))
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        entries = await repository.list_audit(club_id)
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_same_cycle_withdraws_pending(self, orchestrator, repository, club_id, now):
        """현재 주기 재요청 - 예약 철회"""
        await repository.insert_subscription(active_monthly(club_id, now))
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        updated = await orchestrator.activation.schedule_activation(club_id, PlanCycle.MONTHLY, now)

        assert updated.pending_plan_cycle is None
        assert updated.pending_plan_effective_at is None
        assert updated.plan_cycle == PlanCycle.MONTHLY

    @pytest.mark.asyncio
    async def test_terminal_rejected(self, orchestrator, repository, club_id, now):
        """만료 구독 - InvalidTransition"""
        await repository.insert_subscription(
            make_subscription(club_id, now, status=SubscriptionStatus.EXPIRED)
        )
        with pytest.raises(InvalidTransition):
            await orchestrator.activation.schedule_activation(club_id, PlanCycle.MONTHLY, now)


class TestCommitPendingChange:
    """예약 변경 확정"""

    @pytest.mark.asyncio
    async def test_not_before_boundary(self, orchestrator, repository, club_id, now):
        """갱신 시점 전 - 확정 안 됨"""
        await repository.insert_subscription(active_monthly(club_id, now))
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        sub, committed = await orchestrator.activation.commit_pending_change(club_id, now + timedelta(days=9))

        assert committed is False
        assert sub.plan_cycle == PlanCycle.MONTHLY

    @pytest.mark.asyncio
    async def test_commit_after_boundary(self, orchestrator, repository, club_id, now):
        """갱신 시점 후 - 새 주기 시작"""
        original = await repository.insert_subscription(active_monthly(club_id, now))
        boundary = original.current_period_end
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        sub, committed = await orchestrator.activation.commit_pending_change(club_id, boundary + timedelta(hours=1))

        assert committed is True
        assert sub.plan_cycle == PlanCycle.ANNUAL
        assert sub.pending_plan_cycle is None
        assert sub.current_period_start == boundary
        assert sub.current_period_end == next_renewal_at(boundary, PlanCycle.ANNUAL)

    @pytest.mark.asyncio
    async def test_commit_idempotent(self, orchestrator, repository, club_id, now):
        """두 번째 확정 - 변경 없음"""
        original = await repository.insert_subscription(active_monthly(club_id, now))
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)
        later = original.current_period_end + timedelta(days=1)

        await orchestrator.activation.commit_pending_change(club_id, later)
        sub, committed = await orchestrator.activation.commit_pending_change(club_id, later)

        assert committed is False
        assert sub.plan_cycle == PlanCycle.ANNUAL


class TestActivateSubscription:
    """즉시 활성화"""

    @pytest.mark.asyncio
    async def test_activate_from_trial(self, orchestrator, repository, club_id, now):
        """체험 → 활성"""
        await repository.insert_subscription(make_subscription(club_id, now))

        sub = await orchestrator.activation.activate_subscription(club_id, PlanCycle.MONTHLY, now)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.activated_at == now
        assert sub.current_period_end == next_renewal_at(now, PlanCycle.MONTHLY)
        assert in_paid_cycle(sub, now)

    @pytest.mark.asyncio
    async def test_activate_uses_scheduled_cycle(self, orchestrator, repository, club_id, now):
        """미리 선택한 주기로 활성화"""
        await repository.insert_subscription(make_subscription(club_id, now))
        await orchestrator.activation.schedule_activation(club_id, PlanCycle.ANNUAL, now)

        sub = await orchestrator.activation.activate_subscription(club_id, now=now)

        assert sub.plan_cycle == PlanCycle.ANNUAL

    @pytest.mark.asyncio
    async def test_activate_from_grace(self, orchestrator, repository, club_id, now):
        """유예 → 활성"""
        await repository.insert_subscription(
            make_subscription(club_id, now, status=SubscriptionStatus.GRACE)
        )
        sub = await orchestrator.activation.activate_subscription(club_id, now=now)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.plan_cycle == PlanCycle.MONTHLY

    @pytest.mark.asyncio
    async def test_already_active(self, orchestrator, repository, club_id, now):
        """이미 활성 - 그대로 반환"""
        original = await repository.insert_subscription(active_monthly(club_id, now))
        sub = await orchestrator.activation.activate_subscription(club_id, PlanCycle.ANNUAL, now)
        assert sub.plan_cycle == original.plan_cycle
        assert await repository.list_audit(club_id) == []

    @pytest.mark.asyncio
    async def test_expired_rejected(self, orchestrator, repository, club_id, now):
        """만료 - InvalidTransition"""
        await repository.insert_subscription(
            make_subscription(club_id, now, status=SubscriptionStatus.EXPIRED)
        )
        with pytest.raises(InvalidTransition):
            await orchestrator.activation.activate_subscription(club_id, now=now)
