"""
클럽 구독 라이프사이클 스윕 실행기
"""
import asyncio
import sys
from loguru import logger

from app.subscription.dependencies import get_orchestrator
from scheduler.scheduler import LifecycleScheduler


# 로깅 설정
logger.remove()
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level="INFO"
)
logger.add(
    "logs/lifecycle_{time:YYYY-MM-DD}.log",
    rotation="1 day",
    retention="30 days",
    level="DEBUG"
)


async def main():
    """메인 함수"""
    import argparse

    parser = argparse.ArgumentParser(description="클럽 구독 라이프사이클 스윕")
    parser.add_argument(
        "--mode",
        choices=["sweep", "evaluate", "scheduler"],
        default="sweep",
        help="실행 모드"
    )
    parser.add_argument(
        "--club",
        help="평가할 클럽 ID (evaluate 모드)"
    )

    args = parser.parse_args()

    orchestrator = get_orchestrator()

    if args.mode == "sweep":
        # 단일 스윕
        report = await orchestrator.sweep()
        if report.errors:
            for error in report.errors:
                logger.warning(f"  {error['club_id']}: {error['code']} - {error['detail']}")
            sys.exit(1)

    elif args.mode == "evaluate":
        # 단일 클럽 평가
        if not args.club:
            parser.error("--club이 필요합니다")
        result = await orchestrator.evaluate_club(args.club)
        print(result.model_dump_json(indent=2))

    elif args.mode == "scheduler":
        # 스케줄러 모드
        scheduler = LifecycleScheduler(orchestrator)
        scheduler.start()

        logger.info("스케줄러 모드로 실행 중... (Ctrl+C로 종료)")

        try:
            # 무한 대기
            while True:
                await asyncio.sleep(60)
                status = scheduler.get_status()
                logger.debug(f"스케줄러 상태: {status}")
        except KeyboardInterrupt:
            scheduler.stop()
            logger.info("스케줄러 종료됨")


if __name__ == "__main__":
    asyncio.run(main())
