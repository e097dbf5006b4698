"""
구독 라이프사이클 예외

라우터는 status_code/code를 그대로 응답에 사용한다.
"""
from typing import Optional


class LifecycleError(Exception):
    """라이프사이클 오류 기본 클래스"""

    code = "lifecycle_error"
    status_code = 400

    def __init__(self, message: str, club_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.club_id = club_id

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class NotFound(LifecycleError):
    """클럽/구독 레코드 없음"""
    code = "not_found"
    status_code = 404


class AlreadyExtended(LifecycleError):
    """이미 연장(자동 또는 제안)이 존재함"""
    code = "already_extended"
    status_code = 409


class NoProposalPending(LifecycleError):
    """수락할 제안이 없음 (미제안, 이미 수락, 소멸)"""
    code = "no_proposal_pending"
    status_code = 409


class InvalidTransition(LifecycleError):
    """현재 상태에서 허용되지 않는 변경"""
    code = "invalid_transition"
    status_code = 409


class PersistenceError(LifecycleError):
    """저장소 오류 (재시도 가능)"""
    code = "persistence_error"
    status_code = 503
    retryable = True


class Unauthorized(LifecycleError):
    """호출자가 대상 클럽 소속이 아님"""
    code = "unauthorized"
    status_code = 403
