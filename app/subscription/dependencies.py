"""
Subscription Dependencies

인증, 권한 체크, 오케스트레이터 주입
"""

import secrets
from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from loguru import logger

from .config import lifecycle_config, scheduler_config
from .exceptions import LifecycleError, Unauthorized
from .lifecycle import LifecycleOrchestrator
from .repository import InMemorySubscriptionRepository, SupabaseSubscriptionRepository


class ClubRole(str, Enum):
    """클럽 내 역할"""
    owner = "owner"
    head_coach = "head_coach"
    coach = "coach"
    staff = "staff"
    member = "member"


# 테스트 모드 기본 회원 (LIFECYCLE_TEST_MODE=1)
TEST_MEMBER_CONFIG = {
    "member_id": "00000000-0000-0000-0000-000000000001",
    "club_id": "00000000-0000-0000-0000-00000000c1b0",
    "full_name": "테스트 관리자",
    "club_role": ClubRole.owner,
    "is_platform_admin": False,
}


def http_error(error: LifecycleError) -> HTTPException:
    """도메인 오류 → HTTP 응답 ({"code", "detail"})"""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


class ClubMemberContext:
    """호출자 컨텍스트"""

    def __init__(
        self,
        member_id: str,
        club_id: Optional[str],
        club_role: ClubRole,
        full_name: str,
        is_platform_admin: bool = False
    ):
        self.member_id = member_id
        self.club_id = club_id
        self.club_role = club_role
        self.full_name = full_name
        self.is_platform_admin = is_platform_admin

    def is_admin(self) -> bool:
        """클럽 관리자 (owner/head_coach)"""
        return self.club_role in [ClubRole.owner, ClubRole.head_coach]

    def belongs_to(self, club_id: str) -> bool:
        return self.is_platform_admin or self.club_id == club_id


async def get_current_club_member(request: Request) -> ClubMemberContext:
    """
    현재 로그인한 회원 조회

    Supabase Auth 토큰 → members 테이블에서 소속 클럽과 역할 확인.
    테스트 모드에서는 고정 관리자로 로그인.
    """
    if lifecycle_config.test_mode:
        return ClubMemberContext(**TEST_MEMBER_CONFIG)

    from database.supabase_client import get_supabase_client

    # 1. 인증 토큰 확인
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="인증이 필요합니다"
        )

    token = auth_header.split(" ")[1]

    try:
        # 2. Supabase에서 사용자 정보 조회
        supabase = get_supabase_client()
        user_response = supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="유효하지 않은 토큰입니다"
            )

        # 3. members 테이블에서 소속 클럽 조회
        member_response = supabase.table("members").select(
            "id, club_id, club_role, full_name, is_platform_admin"
        ).eq("supabase_auth_id", user_response.user.id).single().execute()

        member = member_response.data
        if not member:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="클럽 회원 등록이 필요합니다"
            )

        return ClubMemberContext(
            member_id=member["id"],
            club_id=member.get("club_id"),
            club_role=ClubRole(member.get("club_role") or ClubRole.member.value),
            full_name=member.get("full_name") or "",
            is_platform_admin=bool(member.get("is_platform_admin"))
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"인증 오류: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"인증 오류: {str(e)}"
        )


def require_club_member(
    club_id: str,
    member: ClubMemberContext = Depends(get_current_club_member)
) -> ClubMemberContext:
    """경로의 클럽 소속 필요"""
    if not member.belongs_to(club_id):
        raise http_error(Unauthorized("해당 클럽 소속이 아닙니다", club_id))
    return member


def require_club_admin(
    club_id: str,
    member: ClubMemberContext = Depends(get_current_club_member)
) -> ClubMemberContext:
    """경로 클럽의 관리자 권한 필요 (owner/head_coach)"""
    if member.is_platform_admin:
        return member
    if member.club_id != club_id or not member.is_admin():
        raise http_error(Unauthorized("클럽 관리자 권한이 필요합니다", club_id))
    return member


def require_admin(member: ClubMemberContext = Depends(get_current_club_member)) -> ClubMemberContext:
    """자기 클럽 관리자 권한 필요"""
    if not member.club_id:
        raise http_error(Unauthorized("소속 클럽이 없습니다"))
    if not member.is_admin():
        raise http_error(Unauthorized("클럽 관리자 권한이 필요합니다", member.club_id))
    return member


def require_platform_admin(member: ClubMemberContext = Depends(get_current_club_member)) -> ClubMemberContext:
    """운영 관리자 권한 필요"""
    if not member.is_platform_admin:
        raise http_error(Unauthorized("운영 관리자 권한이 필요합니다"))
    return member


async def verify_cron_secret(request: Request) -> None:
    """외부 cron / 결제 콜백 호출 검증 (Authorization: Bearer CRON_SECRET)"""
    expected = scheduler_config.cron_secret
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRON_SECRET이 설정되지 않았습니다"
        )

    auth_header = request.headers.get("Authorization", "")
    token = auth_header[len("Bearer "):] if auth_header.startswith("Bearer ") else ""
    if not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="유효하지 않은 cron 토큰입니다"
        )


_orchestrator: Optional[LifecycleOrchestrator] = None


def get_orchestrator() -> LifecycleOrchestrator:
    """오케스트레이터 싱글톤 (테스트 모드는 메모리 저장소)"""
    global _orchestrator

    if _orchestrator is None:
        if lifecycle_config.test_mode:
            repository = InMemorySubscriptionRepository()
            logger.info("테스트 모드: 메모리 저장소 사용")
        else:
            repository = SupabaseSubscriptionRepository()
        _orchestrator = LifecycleOrchestrator(repository, lifecycle_config)

    return _orchestrator
