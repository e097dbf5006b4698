"""
Subscription Router

클럽 구독 라이프사이클 API
- 구독 조회 / 체험 시작
- 참여도 이벤트 / 연장 자격 / 연장 부여·수락
- 활성화 / 결제 주기 변경 / 결제 콜백
- 감사 로그 / 스윕
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .dependencies import (
    ClubMemberContext,
    get_orchestrator,
    http_error,
    require_admin,
    require_club_admin,
    require_club_member,
    require_platform_admin,
    verify_cron_secret,
)
from .exceptions import LifecycleError
from .lifecycle import LifecycleOrchestrator
from .models import (
    ActivateRequest,
    AuditEntry,
    BillingEvent,
    ClubSubscription,
    EligibilityDecision,
    EngagementEvent,
    EngagementMetrics,
    ManualExtensionRequest,
    ScheduleActivationRequest,
    StartTrialRequest,
    SubscriptionView,
    SweepReport,
)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


# =============================================
# Cron / 본인 클럽 (고정 경로 먼저)
# =============================================

@router.post("/cron/sweep", response_model=SweepReport, dependencies=[Depends(verify_cron_secret)])
async def run_sweep(orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """모든 미종료 클럽 평가 (외부 cron 호출)"""
    try:
        return await orchestrator.sweep()
    except LifecycleError as e:
        raise http_error(e)


@router.post("/me/extensions/accept", response_model=ClubSubscription)
async def accept_extension(
    member: ClubMemberContext = Depends(require_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """
    연장 제안 수락

    호출자의 소속 클럽에 대해 처리합니다. 중복 제출되어도 일수는 한 번만 더해집니다.
    """
    try:
        return await orchestrator.accept_proposed_extension(member.club_id, actor=member.member_id)
    except LifecycleError as e:
        raise http_error(e)


# =============================================
# 조회
# =============================================

@router.get("/{club_id}", response_model=SubscriptionView)
async def get_subscription(
    club_id: str,
    member: ClubMemberContext = Depends(require_club_member),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """구독 상태 조회 (시간 경과에 따른 상태 전이 반영)"""
    try:
        return await orchestrator.get_club_subscription(club_id)
    except LifecycleError as e:
        raise http_error(e)


@router.get("/{club_id}/eligibility", response_model=EligibilityDecision)
async def get_eligibility(
    club_id: str,
    member: ClubMemberContext = Depends(require_club_member),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """연장 자격 확인 (상태 변경 없음)"""
    try:
        return await orchestrator.check_auto_extension_eligibility(club_id)
    except LifecycleError as e:
        raise http_error(e)


@router.get("/{club_id}/audit", response_model=List[AuditEntry])
async def get_audit(
    club_id: str,
    limit: int = Query(50, ge=1, le=500),
    member: ClubMemberContext = Depends(require_club_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """구독 변경 이력 (최신순)"""
    try:
        return await orchestrator.list_audit(club_id, limit)
    except LifecycleError as e:
        raise http_error(e)


# =============================================
# 체험 / 참여도 / 연장
# =============================================

@router.post("/{club_id}/trial", response_model=ClubSubscription, status_code=status.HTTP_201_CREATED)
async def start_trial(
    club_id: str,
    request: StartTrialRequest,
    member: ClubMemberContext = Depends(require_club_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """체험 시작 (이미 있으면 기존 구독 반환)"""
    try:
        return await orchestrator.start_trial(club_id, request.offer_type, actor=member.member_id)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{club_id}/engagement", response_model=EngagementMetrics)
async def record_engagement(
    club_id: str,
    event: EngagementEvent,
    member: ClubMemberContext = Depends(require_club_member),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """참여도 이벤트 기록 (자동 연장 확인 포함)"""
    try:
        return await orchestrator.update_engagement_metrics(club_id, event)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{club_id}/extensions/auto", response_model=ClubSubscription)
async def grant_auto_extension(
    club_id: str,
    member: ClubMemberContext = Depends(require_club_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """자동 연장 부여 (클럽당 1회)"""
    try:
        return await orchestrator.grant_auto_extension(club_id, actor=member.member_id)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{club_id}/extensions/manual", response_model=ClubSubscription)
async def grant_manual_extension(
    club_id: str,
    request: ManualExtensionRequest,
    member: ClubMemberContext = Depends(require_platform_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """운영 관리자 수동 연장"""
    try:
        return await orchestrator.grant_manual_extension(
            club_id, request.days, actor=member.member_id, notes=request.notes
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except LifecycleError as e:
        raise http_error(e)


# =============================================
# 활성화 / 결제
# =============================================

@router.post("/{club_id}/activate", response_model=ClubSubscription)
async def activate(
    club_id: str,
    request: ActivateRequest,
    member: ClubMemberContext = Depends(require_club_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """유료 구독 즉시 활성화"""
    try:
        return await orchestrator.activate_subscription(club_id, request.plan_cycle, actor=member.member_id)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{club_id}/schedule", response_model=ClubSubscription)
async def schedule(
    club_id: str,
    request: ScheduleActivationRequest,
    member: ClubMemberContext = Depends(require_club_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """
    결제 주기 변경

    결제 중인 주기가 있으면 다음 갱신 시점에 적용됩니다.
    """
    try:
        return await orchestrator.schedule_activation(club_id, request.plan_cycle, actor=member.member_id)
    except LifecycleError as e:
        raise http_error(e)


@router.post(
    "/{club_id}/billing-events",
    response_model=ClubSubscription,
    dependencies=[Depends(verify_cron_secret)]
)
async def billing_event(
    club_id: str,
    event: BillingEvent,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """결제사 콜백 (서명 검증된 이벤트 전달)"""
    try:
        return await orchestrator.handle_billing_event(club_id, event)
    except LifecycleError as e:
        raise http_error(e)


@router.delete("/{club_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    club_id: str,
    member: ClubMemberContext = Depends(require_platform_admin),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
):
    """클럽 삭제에 따른 구독 레코드 제거"""
    try:
        await orchestrator.delete_club(club_id, actor=member.member_id)
    except LifecycleError as e:
        raise http_error(e)
