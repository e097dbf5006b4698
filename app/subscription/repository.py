"""
구독 저장소

클럽 구독 레코드는 상호 배제의 단위다. 모든 변경은 조건부 업데이트
(compare_and_set) 한 번으로 수행되며, 조건이 맞지 않으면 아무것도 바꾸지 않는다.

- SupabaseSubscriptionRepository: 운영용 (PostgREST 필터로 조건부 업데이트)
- InMemorySubscriptionRepository: 테스트/로컬 테스트 모드용
"""
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger

from .exceptions import PersistenceError
from .models import (
    AuditEntry,
    ClubSubscription,
    EngagementEventType,
    EngagementMetrics,
    SubscriptionStatus,
)

SUBSCRIPTIONS_TABLE = "club_subscriptions"
METRICS_TABLE = "club_engagement_metrics"
AUDIT_TABLE = "subscription_audit_log"

# 참여도 이벤트 → 카운터 컬럼
METRIC_FIELDS = {
    EngagementEventType.PLAYER_CREATED: "players_invited_count",
    EngagementEventType.MATCH_LOGGED: "matches_logged_count",
    EngagementEventType.DASHBOARD_LOGIN: "dashboard_login_count",
    EngagementEventType.INVITATION_SENT: "invitations_sent_count",
}

# 스윕 대상 (종료 상태 제외)
OPEN_STATUSES = [
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.GRACE,
    SubscriptionStatus.ACTIVE,
]


def short_id(club_id: str) -> str:
    """로그용 클럽 ID 축약"""
    return club_id[:8] + "…" if len(club_id) > 8 else club_id


def to_db(value: Any) -> Any:
    """Python 값 → DB 저장 값"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _filter_value(value: Any) -> str:
    """PostgREST 필터 값"""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(to_db(value))


def _same(stored: Any, expected: Any) -> bool:
    return to_db(stored) == to_db(expected)


class SubscriptionRepository:
    """저장소 인터페이스"""

    async def get_subscription(self, club_id: str) -> Optional[ClubSubscription]:
        raise NotImplementedError

    async def insert_subscription(self, subscription: ClubSubscription) -> ClubSubscription:
        raise NotImplementedError

    async def compare_and_set(
        self,
        club_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any]
    ) -> Optional[ClubSubscription]:
        """
        expected의 모든 필드가 현재 값과 같을 때만 changes를 적용

        expected 값이 None이면 "IS NULL" 조건.

        Returns:
            갱신된 레코드, 조건 불일치(또는 레코드 없음)면 None
        """
        raise NotImplementedError

    async def delete_subscription(self, club_id: str) -> bool:
        raise NotImplementedError

    async def list_open_club_ids(self) -> List[str]:
        raise NotImplementedError

    async def get_metrics(self, club_id: str) -> EngagementMetrics:
        raise NotImplementedError

    async def increment_metric(
        self,
        club_id: str,
        event_type: EngagementEventType,
        count: int,
        occurred_at: datetime
    ) -> EngagementMetrics:
        raise NotImplementedError

    async def append_audit(self, entry: AuditEntry) -> None:
        raise NotImplementedError

    async def list_audit(self, club_id: str, limit: int = 50) -> List[AuditEntry]:
        raise NotImplementedError


class SupabaseSubscriptionRepository(SubscriptionRepository):
    """Supabase 저장소"""

    def __init__(self, client=None):
        if client is None:
            from database.supabase_client import get_supabase_client
            client = get_supabase_client()
        self.client = client

    # ==================== 구독 ====================

    async def get_subscription(self, club_id: str) -> Optional[ClubSubscription]:
        try:
            result = self.client.table(SUBSCRIPTIONS_TABLE).select("*").eq(
                "club_id", club_id
            ).limit(1).execute()
        except Exception as e:
            logger.error(f"구독 조회 오류 ({short_id(club_id)}): {e}")
            raise PersistenceError("구독 정보를 불러오지 못했습니다", club_id) from e

        if not result.data:
            return None
        return ClubSubscription.model_validate(result.data[0])

    async def insert_subscription(self, subscription: ClubSubscription) -> ClubSubscription:
        data = subscription.model_dump(mode="json")
        try:
            result = self.client.table(SUBSCRIPTIONS_TABLE).insert(data).execute()
        except Exception as e:
            logger.error(f"구독 생성 오류 ({short_id(subscription.club_id)}): {e}")
            raise PersistenceError("구독을 생성하지 못했습니다", subscription.club_id) from e

        if result.data:
            return ClubSubscription.model_validate(result.data[0])
        return subscription

    async def compare_and_set(
        self,
        club_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any]
    ) -> Optional[ClubSubscription]:
        payload = {field: to_db(value) for field, value in changes.items()}

        query = self.client.table(SUBSCRIPTIONS_TABLE).update(payload).eq("club_id", club_id)
        for field, value in expected.items():
            if value is None:
                query = query.is_(field, "null")
            else:
                query = query.eq(field, _filter_value(value))

        try:
            result = query.execute()
        except Exception as e:
            logger.error(f"구독 업데이트 오류 ({short_id(club_id)}): {e}")
            raise PersistenceError("구독 정보를 저장하지 못했습니다", club_id) from e

        if not result.data:
            return None
        return ClubSubscription.model_validate(result.data[0])

    async def delete_subscription(self, club_id: str) -> bool:
        try:
            result = self.client.table(SUBSCRIPTIONS_TABLE).delete().eq("club_id", club_id).execute()
            self.client.table(METRICS_TABLE).delete().eq("club_id", club_id).execute()
        except Exception as e:
            logger.error(f"구독 삭제 오류 ({short_id(club_id)}): {e}")
            raise PersistenceError("구독을 삭제하지 못했습니다", club_id) from e
        return len(result.data or []) > 0

    async def list_open_club_ids(self) -> List[str]:
        try:
            result = self.client.table(SUBSCRIPTIONS_TABLE).select("club_id").in_(
                "status", [s.value for s in OPEN_STATUSES]
            ).execute()
        except Exception as e:
            logger.error(f"스윕 대상 조회 오류: {e}")
            raise PersistenceError("스윕 대상을 조회하지 못했습니다") from e
        return [row["club_id"] for row in (result.data or [])]

    # ==================== 참여도 ====================

    async def get_metrics(self, club_id: str) -> EngagementMetrics:
        try:
            result = self.client.table(METRICS_TABLE).select("*").eq(
                "club_id", club_id
            ).limit(1).execute()
        except Exception as e:
            logger.error(f"참여도 조회 오류 ({short_id(club_id)}): {e}")
            raise PersistenceError("참여도 정보를 불러오지 못했습니다", club_id) from e

        if not result.data:
            return EngagementMetrics(club_id=club_id)
        return EngagementMetrics.model_validate(result.data[0])

    async def increment_metric(
        self,
        club_id: str,
        event_type: EngagementEventType,
        count: int,
        occurred_at: datetime
    ) -> EngagementMetrics:
        # 동시 증가가 유실되지 않도록 DB 함수에서 원자적으로 증가
        try:
            result = self.client.rpc("increment_club_engagement_metric", {
                "p_club_id": club_id,
                "p_field": METRIC_FIELDS[event_type],
                "p_amount": count,
                "p_occurred_at": occurred_at.isoformat(),
            }).execute()
        except Exception as e:
            logger.error(f"참여도 업데이트 오류 ({short_id(club_id)}): {e}")
            raise PersistenceError("참여도 정보를 저장하지 못했습니다", club_id) from e

        rows = result.data
        if isinstance(rows, list):
            rows = rows[0] if rows else None
        if rows:
            return EngagementMetrics.model_validate(rows)
        return await self.get_metrics(club_id)

    # ==================== 감사 로그 ====================

    async def append_audit(self, entry: AuditEntry) -> None:
        try:
            self.client.table(AUDIT_TABLE).insert(entry.model_dump(mode="json")).execute()
        except Exception as e:
            logger.error(f"감사 로그 저장 오류 ({short_id(entry.club_id)}): {e}")
            raise PersistenceError("감사 로그를 저장하지 못했습니다", entry.club_id) from e

    async def list_audit(self, club_id: str, limit: int = 50) -> List[AuditEntry]:
        try:
            result = self.client.table(AUDIT_TABLE).select("*").eq(
                "club_id", club_id
            ).order("created_at", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error(f"감사 로그 조회 오류 ({short_id(club_id)}): {e}")
            raise PersistenceError("감사 로그를 불러오지 못했습니다", club_id) from e
        return [AuditEntry.model_validate(row) for row in (result.data or [])]


class InMemorySubscriptionRepository(SubscriptionRepository):
    """메모리 저장소 (락으로 조건부 업데이트의 원자성 보장)"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, ClubSubscription] = {}
        self._metrics: Dict[str, EngagementMetrics] = {}
        self._audit: List[AuditEntry] = []

    async def get_subscription(self, club_id: str) -> Optional[ClubSubscription]:
        with self._lock:
            record = self._subscriptions.get(club_id)
            return record.model_copy() if record else None

    async def insert_subscription(self, subscription: ClubSubscription) -> ClubSubscription:
        with self._lock:
            if subscription.club_id in self._subscriptions:
                raise PersistenceError("이미 구독이 존재합니다", subscription.club_id)
            self._subscriptions[subscription.club_id] = subscription.model_copy()
            return subscription.model_copy()

    async def compare_and_set(
        self,
        club_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any]
    ) -> Optional[ClubSubscription]:
        with self._lock:
            record = self._subscriptions.get(club_id)
            if record is None:
                return None
            for field, value in expected.items():
                if not _same(getattr(record, field), value):
                    return None
            updated = record.model_copy(update=changes)
            self._subscriptions[club_id] = updated
            return updated.model_copy()

    async def delete_subscription(self, club_id: str) -> bool:
        with self._lock:
            self._metrics.pop(club_id, None)
            return self._subscriptions.pop(club_id, None) is not None

    async def list_open_club_ids(self) -> List[str]:
        with self._lock:
            return [
                club_id for club_id, record in self._subscriptions.items()
                if record.status in OPEN_STATUSES
            ]

    async def get_metrics(self, club_id: str) -> EngagementMetrics:
        with self._lock:
            metrics = self._metrics.get(club_id)
            return metrics.model_copy() if metrics else EngagementMetrics(club_id=club_id)

    async def increment_metric(
        self,
        club_id: str,
        event_type: EngagementEventType,
        count: int,
        occurred_at: datetime
    ) -> EngagementMetrics:
        field = METRIC_FIELDS[event_type]
        with self._lock:
            metrics = self._metrics.get(club_id) or EngagementMetrics(club_id=club_id)
            updated = metrics.model_copy(update={
                field: getattr(metrics, field) + count,
                "last_activity_at": occurred_at,
            })
            self._metrics[club_id] = updated
            return updated.model_copy()

    async def set_metrics(self, metrics: EngagementMetrics) -> None:
        """스냅샷 직접 설정 (테스트/마이그레이션용)"""
        with self._lock:
            self._metrics[metrics.club_id] = metrics.model_copy()

    async def append_audit(self, entry: AuditEntry) -> None:
        with self._lock:
            self._audit.append(entry.model_copy())

    async def list_audit(self, club_id: str, limit: int = 50) -> List[AuditEntry]:
        with self._lock:
            entries = [e for e in self._audit if e.club_id == club_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]
