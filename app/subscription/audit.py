"""
구독 변경 감사 로그 및 알림

모든 변경(연장, 수락, 결제 주기, 상태 전이)은 누가/언제/이전 값/새 값을
append-only 로그에 남긴다. 일회성 진단 스크립트로 이력을 재구성할 필요가 없도록.

알림 구독자(이메일, 인앱 알림 등 외부 협력자)는 subscribe()로 등록한다.
구독자 오류는 삼키지 않고 호출자에게 전파된다.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .exceptions import LifecycleError, PersistenceError
from .models import AuditEntry, ClubSubscription
from .repository import SubscriptionRepository, short_id, to_db


class AuditAction(str, Enum):
    """감사 로그 액션"""
    TRIAL_STARTED = "trial.started"
    STATUS_ADVANCED = "status.advanced"
    EXTENSION_AUTO_GRANTED = "extension.auto_granted"
    EXTENSION_PROPOSED = "extension.proposed"
    EXTENSION_ACCEPTED = "extension.accepted"
    EXTENSION_MANUAL_GRANTED = "extension.manual_granted"
    PLAN_CHANGED = "plan.changed"
    PLAN_CHANGE_SCHEDULED = "plan.change_scheduled"
    PLAN_CHANGE_WITHDRAWN = "plan.change_withdrawn"
    PLAN_CHANGE_COMMITTED = "plan.change_committed"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_RENEWED = "subscription.renewed"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    PAYMENT_FAILED = "billing.payment_failed"
    SUBSCRIPTION_DELETED = "subscription.deleted"


def diff_fields(
    before: Optional[ClubSubscription],
    after: Optional[ClubSubscription]
) -> Dict[str, Dict[str, Any]]:
    """변경된 필드만 {"previous": {...}, "new": {...}}로 추출"""
    old = before.model_dump() if before else {}
    new = after.model_dump() if after else {}
    previous: Dict[str, Any] = {}
    current: Dict[str, Any] = {}
    for field in sorted(set(old) | set(new)):
        if field == "updated_at":
            continue
        if to_db(old.get(field)) != to_db(new.get(field)):
            previous[field] = to_db(old.get(field))
            current[field] = to_db(new.get(field))
    return {"previous": previous, "new": current}


class AuditRecorder:
    """감사 로그 기록 및 알림 발행"""

    def __init__(self, repository: SubscriptionRepository):
        self.repository = repository
        self.subscribers: Dict[AuditAction, List[Callable]] = defaultdict(list)

    async def record(
        self,
        action: AuditAction,
        before: Optional[ClubSubscription],
        after: Optional[ClubSubscription],
        actor: str = "system",
        metadata: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None
    ) -> AuditEntry:
        """변경 기록"""
        club_id = (after or before).club_id
        changes = diff_fields(before, after)
        entry = AuditEntry(
            club_id=club_id,
            action=action.value,
            actor=actor,
            previous=changes["previous"],
            new=changes["new"],
            metadata=metadata or {},
            created_at=at or datetime.now(timezone.utc),
        )
        await self.repository.append_audit(entry)
        logger.info(f"📝 {action.value} - {short_id(club_id)} by {actor}")
        return entry

    async def apply(
        self,
        action: AuditAction,
        before: ClubSubscription,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
        actor: str = "system",
        metadata: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
        notify: bool = False
    ) -> Optional[ClubSubscription]:
        """
        조건부 업데이트 + 감사 기록 + 알림

        감사 기록이나 알림이 실패하면 업데이트를 되돌리고 예외를 전파한다.

        Returns:
            갱신된 레코드, 조건 불일치면 None
        """
        at = at or datetime.now(timezone.utc)
        changes = {**changes, "updated_at": at}

        updated = await self.repository.compare_and_set(before.club_id, expected, changes)
        if updated is None:
            return None

        recorded = False
        try:
            await self.record(action, before, updated, actor, metadata, at)
            recorded = True
            if notify:
                await self.notify(action, updated)
        except Exception as e:
            logger.error(f"{action.value} 후처리 실패, 변경 취소 ({short_id(before.club_id)}): {e}")
            await self._revert(before, updated, changes, action, recorded, at)
            if isinstance(e, LifecycleError):
                raise
            raise PersistenceError("변경 사항을 완료하지 못했습니다", before.club_id) from e

        return updated

    async def _revert(
        self,
        before: ClubSubscription,
        updated: ClubSubscription,
        changes: Dict[str, Any],
        action: AuditAction,
        recorded: bool,
        at: datetime
    ) -> None:
        """적용된 변경을 이전 값으로 되돌림 (그 사이 다른 변경이 있으면 건드리지 않음)"""
        guard = {field: getattr(updated, field) for field in changes}
        rollback = {field: getattr(before, field) for field in changes}
        try:
            reverted = await self.repository.compare_and_set(before.club_id, guard, rollback)
        except PersistenceError:
            reverted = None

        if reverted is None:
            logger.error(f"변경 취소 실패 ({short_id(before.club_id)}): {action.value}")
            return

        if recorded:
            try:
                await self.record(action, updated, reverted, metadata={"reverted": True}, at=at)
            except PersistenceError:
                logger.error(f"취소 감사 로그 저장 실패 ({short_id(before.club_id)})")

    def subscribe(self, action: AuditAction, callback: Callable) -> None:
        """알림 구독"""
        self.subscribers[action].append(callback)
        logger.debug(f"✅ Subscribed to {action.value}")

    def unsubscribe(self, action: AuditAction, callback: Callable) -> None:
        """알림 구독 해제"""
        if callback in self.subscribers[action]:
            self.subscribers[action].remove(callback)

    async def notify(self, action: AuditAction, subscription: ClubSubscription) -> None:
        """구독자에게 알림 (동기/비동기 콜백 모두 지원)"""
        for callback in self.subscribers.get(action, []):
            if asyncio.iscoroutinefunction(callback):
                await callback(subscription)
            else:
                callback(subscription)
