"""
체험 연장 관리

- 자동 연장: 높은 참여도 → 즉시 +15일
- 제안 연장: 중간 참여도 → 관리자가 수락하면 +15일
- 수동 연장: 운영 관리자가 임의 일수 부여

자동/제안 연장은 클럽당 한 번. 중복 방지는 조회 후 판단이 아니라
저장소의 조건부 업데이트(extension_kind IS NULL 등)로 보장한다.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Type

from loguru import logger

from .audit import AuditAction, AuditRecorder
from .config import LifecycleConfig, ProposalLapsePolicy, lifecycle_config
from .exceptions import (
    AlreadyExtended,
    InvalidTransition,
    LifecycleError,
    NoProposalPending,
    NotFound,
    PersistenceError,
)
from .models import (
    ClubSubscription,
    EligibilityDecision,
    ExtensionKind,
    ExtensionMode,
    SubscriptionStatus,
)
from .repository import SubscriptionRepository, short_id

# 연장으로 체험 기간을 늘릴 수 있는 상태
EXTENDABLE_STATUSES = {SubscriptionStatus.TRIALING, SubscriptionStatus.GRACE}


class ExtensionManager:
    """체험 연장 관리자"""

    def __init__(
        self,
        repository: SubscriptionRepository,
        audit: AuditRecorder,
        config: Optional[LifecycleConfig] = None
    ):
        self.repository = repository
        self.audit = audit
        self.config = config or lifecycle_config

    async def _load(self, club_id: str) -> ClubSubscription:
        subscription = await self.repository.get_subscription(club_id)
        if subscription is None:
            raise NotFound("구독 정보를 찾을 수 없습니다", club_id)
        return subscription

    async def _conflict(self, club_id: str, error: Type[LifecycleError], message: str) -> LifecycleError:
        """조건부 업데이트 실패 시 원인 판별"""
        current = await self.repository.get_subscription(club_id)
        if current is None:
            return NotFound("구독 정보를 찾을 수 없습니다", club_id)
        if error is AlreadyExtended and current.has_extension:
            return AlreadyExtended(message, club_id)
        if error is NoProposalPending and not current.proposal_pending:
            return NoProposalPending(message, club_id)
        logger.warning(f"동시 변경 감지 ({short_id(club_id)})")
        return PersistenceError("다른 요청과 충돌했습니다. 다시 시도해주세요", club_id)

    def _extend_trial(self, subscription: ClubSubscription, days: int, now: datetime) -> Dict[str, Any]:
        """체험 종료일 연장 변경분 (유예 중 연장되면 체험 상태로 복귀)"""
        new_end = subscription.trial_ends_at + timedelta(days=days)
        changes: Dict[str, Any] = {"trial_ends_at": new_end}
        if subscription.status == SubscriptionStatus.GRACE and now < new_end:
            changes["status"] = SubscriptionStatus.TRIALING
            changes["status_changed_at"] = now
        return changes

    async def apply_decision(
        self,
        club_id: str,
        decision: EligibilityDecision,
        now: Optional[datetime] = None
    ) -> Optional[ClubSubscription]:
        """자격 평가 결과 적용"""
        if decision.mode == ExtensionMode.AUTO:
            return await self.grant_auto_extension(club_id, decision.reason, now)
        if decision.mode == ExtensionMode.PROPOSED:
            return await self.propose_extension(club_id, now)
        return None

    async def grant_auto_extension(
        self,
        club_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """자동 연장 부여"""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)

        if subscription.has_extension:
            raise AlreadyExtended("이미 연장이 적용된 클럽입니다", club_id)
        if subscription.status != SubscriptionStatus.TRIALING:
            raise InvalidTransition(
                f"체험 중인 클럽만 자동 연장할 수 있습니다 (현재: {subscription.status.value})", club_id
            )

        changes = self._extend_trial(subscription, self.config.extension_days, now)
        changes.update({
            "extension_kind": ExtensionKind.AUTO,
            "extension_granted_at": now,
            "auto_extension_reason": reason,
            "extension_proposed": False,
        })
        updated = await self.audit.apply(
            AuditAction.EXTENSION_AUTO_GRANTED,
            subscription,
            expected={
                "extension_kind": None,
                "extension_proposed": False,
                "status": SubscriptionStatus.TRIALING,
                "trial_ends_at": subscription.trial_ends_at,
            },
            changes=changes,
            actor=actor,
            metadata={"days": self.config.extension_days, "reason": reason},
            at=now,
            notify=True
        )
        if updated is None:
            raise await self._conflict(club_id, AlreadyExtended, "이미 연장이 적용된 클럽입니다")

        logger.info(f"자동 연장 부여: {short_id(club_id)} (+{self.config.extension_days}일, {reason})")
        return updated

    async def propose_extension(
        self,
        club_id: str,
        now: Optional[datetime] = None,
        actor: str = "system"
    ) -> ClubSubscription:
        """연장 제안 (체험 종료일은 수락 전까지 그대로)"""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)

        if subscription.has_extension:
            raise AlreadyExtended("이미 연장이 제안되었거나 적용된 클럽입니다", club_id)
        if subscription.status != SubscriptionStatus.TRIALING:
            raise InvalidTransition(
                f"체험 중인 클럽에만 연장을 제안할 수 있습니다 (현재: {subscription.status.value})", club_id
            )

        updated = await self.audit.apply(
            AuditAction.EXTENSION_PROPOSED,
            subscription,
            expected={
                "extension_kind": None,
                "extension_proposed": False,
                "status": SubscriptionStatus.TRIALING,
            },
            changes={
                "extension_kind": ExtensionKind.PROPOSED,
                "extension_granted_at": now,
                "extension_proposed": True,
                "extension_proposed_days": self.config.extension_days,
                "extension_proposed_at": now,
            },
            actor=actor,
            metadata={"days": self.config.extension_days},
            at=now,
            notify=True
        )
        if updated is None:
            raise await self._conflict(club_id, AlreadyExtended, "이미 연장이 제안되었거나 적용된 클럽입니다")

        logger.info(f"연장 제안: {short_id(club_id)} (+{self.config.extension_days}일)")
        return updated

    def proposal_lapsed(self, subscription: ClubSubscription, now: datetime) -> bool:
        """설정된 정책상 제안이 소멸되었는지"""
        if self.config.proposal_lapse_policy == ProposalLapsePolicy.AT_TRIAL_END:
            return now >= subscription.trial_ends_at
        return False

    async def accept_proposed_extension(
        self,
        club_id: str,
        actor: str,
        now: Optional[datetime] = None
    ) -> ClubSubscription:
        """
        제안된 연장 수락

        중복 제출되어도 일수는 한 번만 더해진다. 나중 요청은
        extension_accepted_at이 이미 설정된 것을 보고 NoProposalPending.
        """
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)

        if not subscription.extension_proposed:
            raise NoProposalPending("수락할 연장 제안이 없습니다", club_id)
        if subscription.extension_accepted_at is not None:
            raise NoProposalPending("이미 수락된 연장입니다", club_id)
        if self.proposal_lapsed(subscription, now):
            raise NoProposalPending("체험 기간이 끝나 연장 제안이 소멸되었습니다", club_id)
        if subscription.status not in EXTENDABLE_STATUSES:
            raise InvalidTransition(
                f"현재 상태에서는 연장을 수락할 수 없습니다 (현재: {subscription.status.value})", club_id
            )

        days = subscription.extension_proposed_days or self.config.extension_days
        changes = self._extend_trial(subscription, days, now)
        changes["extension_accepted_at"] = now

        updated = await self.audit.apply(
            AuditAction.EXTENSION_ACCEPTED,
            subscription,
            expected={
                "extension_proposed": True,
                "extension_accepted_at": None,
                "status": subscription.status,
                "trial_ends_at": subscription.trial_ends_at,
            },
            changes=changes,
            actor=actor,
            metadata={"days": days},
            at=now
        )
        if updated is None:
            raise await self._conflict(club_id, NoProposalPending, "이미 수락된 연장입니다")

        logger.info(f"연장 제안 수락: {short_id(club_id)} (+{days}일, {actor})")
        return updated

    async def grant_manual_extension(
        self,
        club_id: str,
        days: int,
        actor: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ClubSubscription:
        """관리자 수동 연장 (자동/제안 1회 제한과 무관)"""
        if not 1 <= days <= self.config.manual_extension_max_days:
            raise ValueError(f"연장 일수는 1~{self.config.manual_extension_max_days}일이어야 합니다")

        now = now or datetime.now(timezone.utc)
        subscription = await self._load(club_id)

        if subscription.status not in EXTENDABLE_STATUSES:
            raise InvalidTransition(
                f"현재 상태에서는 체험을 연장할 수 없습니다 (현재: {subscription.status.value})", club_id
            )

        changes = self._extend_trial(subscription, days, now)
        changes.update({
            "manual_extension_days": days,
            "manual_extension_at": now,
            "manual_extension_by": actor,
            "manual_extension_notes": notes,
        })
        updated = await self.audit.apply(
            AuditAction.EXTENSION_MANUAL_GRANTED,
            subscription,
            expected={
                "status": subscription.status,
                "trial_ends_at": subscription.trial_ends_at,
            },
            changes=changes,
            actor=actor,
            metadata={"days": days, "notes": notes},
            at=now
        )
        if updated is None:
            raise await self._conflict(club_id, PersistenceError, "다른 요청과 충돌했습니다")

        logger.info(f"수동 연장 부여: {short_id(club_id)} (+{days}일, {actor})")
        return updated
