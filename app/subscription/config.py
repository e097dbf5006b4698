"""
구독 라이프사이클 설정
"""
from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field
from dotenv import load_dotenv

load_dotenv()


class ProposalLapsePolicy(str, Enum):
    """제안된 연장의 만료 정책"""
    NEVER = "never"                # 수락 전까지 계속 유효
    AT_TRIAL_END = "at_trial_end"  # 체험 종료 시점에 소멸


class SupabaseConfig(BaseSettings):
    """Supabase 설정"""

    supabase_url: str = Field(default="", description="Supabase Project URL")
    supabase_key: str = Field(default="", description="Supabase service role key")

    class Config:
        env_prefix = ""
        case_sensitive = False


class SchedulerConfig(BaseSettings):
    """스윕 스케줄러 설정"""

    sweep_enabled: bool = Field(default=True, description="주기적 스윕 활성화")
    sweep_interval_minutes: int = Field(default=60, description="스윕 간격 (분)")
    cron_secret: str = Field(default="", description="외부 cron 호출용 Bearer 토큰")

    class Config:
        env_prefix = ""
        case_sensitive = False


class LifecycleConfig(BaseSettings):
    """체험/연장/유예 기간 및 자격 기준"""

    # 체험 기간
    trial_days: int = Field(default=14, description="기본 체험 기간 (일)")
    founder_trial_days: int = Field(default=90, description="founder 오퍼 체험 기간 (일)")

    # 연장
    extension_days: int = Field(default=15, description="자동/제안 연장 일수")
    manual_extension_max_days: int = Field(default=365, description="관리자 수동 연장 최대 일수")
    proposal_lapse_policy: ProposalLapsePolicy = ProposalLapsePolicy.NEVER

    # 유예 기간
    grace_hours: int = Field(default=48, description="체험 종료 후 유예 시간")

    # 자동 연장 기준 (둘 중 하나 충족)
    auto_min_players: int = 10
    auto_min_matches: int = 20

    # 제안 연장 기준 (신호 중 min_signals개 이상)
    proposal_day: int = Field(default=12, description="체험 시작 후 제안 가능 일차")
    proposal_min_signals: int = 2
    proposal_min_players: int = 4
    proposal_min_matches: int = 10
    proposal_min_logins: int = 3
    proposal_min_invitations: int = 1

    # 선수가 한 명도 없으면 어떤 연장도 불가
    min_players_for_extension: int = 1

    # 스윕
    sweep_concurrency: int = Field(default=10, description="스윕 동시 처리 클럽 수")

    # 테스트 모드 (메모리 저장소 사용)
    test_mode: bool = False

    class Config:
        env_prefix = "LIFECYCLE_"
        case_sensitive = False


# 전역 설정 인스턴스
supabase_config = SupabaseConfig()
scheduler_config = SchedulerConfig()
lifecycle_config = LifecycleConfig()
