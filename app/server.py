"""
Club Subscription Lifecycle - FastAPI 웹 서버

데이터 소스: Supabase (LIFECYCLE_TEST_MODE=1이면 메모리 저장소)
"""
from typing import Optional

from fastapi import FastAPI
from loguru import logger
from dotenv import load_dotenv

from app.subscription import subscription_router
from app.subscription.config import lifecycle_config, scheduler_config
from app.subscription.dependencies import get_orchestrator
from scheduler.scheduler import LifecycleScheduler

# 환경변수 로드
load_dotenv()

# FastAPI 앱
app = FastAPI(
    title="Club Subscription Lifecycle",
    description="클럽 SaaS 체험/연장/유예/결제 주기 관리",
    version="1.0.0"
)

# 구독 라이프사이클 라우터 등록
app.include_router(subscription_router, prefix="/api")

_scheduler: Optional[LifecycleScheduler] = None


# ==================== API Endpoints ====================

@app.on_event("startup")
async def startup_event():
    """서버 시작 시 스윕 스케줄러 시작"""
    global _scheduler

    if scheduler_config.sweep_enabled and not lifecycle_config.test_mode:
        _scheduler = LifecycleScheduler(get_orchestrator())
        _scheduler.start()
    logger.info("✅ 서버 시작 완료")


@app.on_event("shutdown")
async def shutdown_event():
    """서버 종료 시 정리"""
    if _scheduler:
        _scheduler.stop()
    logger.info("서버 종료됨")


@app.get("/health")
async def health():
    """헬스 체크"""
    return {"status": "ok"}


@app.get("/api/status")
async def api_status():
    """스케줄러 상태 API"""
    return {
        "test_mode": lifecycle_config.test_mode,
        "scheduler": _scheduler.get_status() if _scheduler else None,
    }


# ==================== 서버 실행 ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
