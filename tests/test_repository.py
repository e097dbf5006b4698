"""
Repository Tests - Supabase 저장소 테스트 (클라이언트 모킹)
"""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from app.subscription.exceptions import PersistenceError
from app.subscription.models import (
    AuditEntry,
    EngagementEventType,
    SubscriptionStatus,
)
from app.subscription.repository import (
    AUDIT_TABLE,
    METRICS_TABLE,
    SUBSCRIPTIONS_TABLE,
    SupabaseSubscriptionRepository,
    short_id,
    to_db,
)

from conftest import make_subscription


def mock_client(data=None):
    """체이닝 가능한 Supabase 클라이언트 모킹"""
    query = MagicMock()
    for method in ["select", "eq", "is_", "in_", "limit", "order", "update", "insert", "delete"]:
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=data if data is not None else [])

    client = MagicMock()
    client.table.return_value = query
    client.rpc.return_value = query
    return client, query


class TestHelpers:
    """보조 함수"""

    def test_short_id(self):
        assert short_id("7f3c9a12-5b4e-4d2a") == "7f3c9a12…"
        assert short_id("club") == "club"

    def test_to_db(self, now):
        assert to_db(SubscriptionStatus.GRACE) == "grace"
        assert to_db(now) == now.isoformat()
        assert to_db(None) is None


class TestSubscriptionQueries:
    """구독 조회/변경"""

    @pytest.mark.asyncio
    async def test_get_missing(self, club_id):
        """행 없음 - None"""
        client, query = mock_client([])
        repo = SupabaseSubscriptionRepository(client)

        assert await repo.get_subscription(club_id) is None
        client.table.assert_called_with(SUBSCRIPTIONS_TABLE)
        query.eq.assert_called_with("club_id", club_id)

    @pytest.mark.asyncio
    async def test_get_row(self, club_id, now):
        """행 → 모델"""
        row = make_subscription(club_id, now).model_dump(mode="json")
        row["id"] = 1
        client, _ = mock_client([row])
        repo = SupabaseSubscriptionRepository(client)

        sub = await repo.get_subscription(club_id)

        assert sub.status == SubscriptionStatus.TRIALING
        assert sub.trial_ends_at == now + timedelta(days=14)

    @pytest.mark.asyncio
    async def test_compare_and_set_filters(self, club_id, now):
        """조건부 업데이트 - NULL은 is_, 나머지는 eq"""
        row = make_subscription(club_id, now).model_dump(mode="json")
        client, query = mock_client([row])
        repo = SupabaseSubscriptionRepository(client)
        new_end = now + timedelta(days=29)

        result = await repo.compare_and_set(
            club_id,
            expected={
                "extension_kind": None,
                "extension_proposed": False,
                "status": SubscriptionStatus.TRIALING,
            },
            changes={"trial_ends_at": new_end}
        )

        assert result is not None
        query.update.assert_called_once_with({"trial_ends_at": new_end.isoformat()})
        query.is_.assert_called_once_with("extension_kind", "null")
        query.eq.assert_any_call("club_id", club_id)
        query.eq.assert_any_call("extension_proposed", "false")
        query.eq.assert_any_call("status", "trialing")

    @pytest.mark.asyncio
    async def test_compare_and_set_miss(self, club_id):
        """조건 불일치 (갱신된 행 없음) - None"""
        client, _ = mock_client([])
        repo = SupabaseSubscriptionRepository(client)

        result = await repo.compare_and_set(club_id, {"status": "trialing"}, {"status": "grace"})

        assert result is None

    @pytest.mark.asyncio
    async def test_error_wrapped(self, club_id):
        """클라이언트 오류 - PersistenceError"""
        client, query = mock_client()
        query.execute.side_effect = Exception("connection reset")
        repo = SupabaseSubscriptionRepository(client)

        with pytest.raises(PersistenceError):
            await repo.get_subscription(club_id)

    @pytest.mark.asyncio
    async def test_list_open(self):
        """스윕 대상 - 종료 상태 제외"""
        client, query = mock_client([{"club_id": "a"}, {"club_id": "b"}])
        repo = SupabaseSubscriptionRepository(client)

        assert await repo.list_open_club_ids() == ["a", "b"]
        query.in_.assert_called_once_with("status", ["trialing", "grace", "active"])

    @pytest.mark.asyncio
    async def test_delete_subscription_first(self, club_id):
        """구독 행을 먼저 삭제한 뒤 참여도 삭제"""
        client, query = mock_client([{"club_id": club_id}])
        repo = SupabaseSubscriptionRepository(client)

        assert await repo.delete_subscription(club_id) is True
        assert [c.args[0] for c in client.table.call_args_list] == [SUBSCRIPTIONS_TABLE, METRICS_TABLE]

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_metrics(self, club_id):
        """구독 삭제 실패 - 참여도는 건드리지 않음"""
        client, query = mock_client()
        query.execute.side_effect = Exception("connection reset")
        repo = SupabaseSubscriptionRepository(client)

        with pytest.raises(PersistenceError):
            await repo.delete_subscription(club_id)
        assert [c.args[0] for c in client.table.call_args_list] == [SUBSCRIPTIONS_TABLE]


class TestMetricsAndAudit:
    """참여도 / 감사 로그"""

    @pytest.mark.asyncio
    async def test_increment_uses_rpc(self, club_id, now):
        """원자적 증가 RPC"""
        client, _ = mock_client([{"club_id": club_id, "matches_logged_count": 3}])
        repo = SupabaseSubscriptionRepository(client)

        metrics = await repo.increment_metric(club_id, EngagementEventType.MATCH_LOGGED, 2, now)

        client.rpc.assert_called_once_with("increment_club_engagement_metric", {
            "p_club_id": club_id,
            "p_field": "matches_logged_count",
            "p_amount": 2,
            "p_occurred_at": now.isoformat(),
        })
        assert metrics.matches_logged_count == 3

    @pytest.mark.asyncio
    async def test_missing_metrics_default(self, club_id):
        """참여도 행 없음 - 0으로 시작"""
        client, _ = mock_client([])
        repo = SupabaseSubscriptionRepository(client)

        metrics = await repo.get_metrics(club_id)

        client.table.assert_called_with(METRICS_TABLE)
        assert metrics.players_invited_count == 0

    @pytest.mark.asyncio
    async def test_append_audit(self, club_id, now):
        """감사 로그 insert"""
        client, query = mock_client([])
        repo = SupabaseSubscriptionRepository(client)
        entry = AuditEntry(club_id=club_id, action="trial.started", created_at=now)

        await repo.append_audit(entry)

        client.table.assert_called_with(AUDIT_TABLE)
        inserted = query.insert.call_args[0][0]
        assert inserted["action"] == "trial.started"
        assert inserted["created_at"] == entry.model_dump(mode="json")["created_at"]

    @pytest.mark.asyncio
    async def test_append_audit_failure(self, club_id, now):
        """감사 로그 저장 실패 - PersistenceError"""
        client, query = mock_client()
        query.execute.side_effect = Exception("timeout")
        repo = SupabaseSubscriptionRepository(client)

        with pytest.raises(PersistenceError):
            await repo.append_audit(AuditEntry(club_id=club_id, action="x", created_at=now))
