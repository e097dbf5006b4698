"""
Supabase 마이그레이션 실행 스크립트
"""
import sys
from pathlib import Path
from loguru import logger

from app.subscription.repository import SUBSCRIPTIONS_TABLE
from database.supabase_client import get_supabase_client

MIGRATION_FILE = Path(__file__).parent / "migrations" / "001_club_subscriptions.sql"


def table_exists(client, table: str) -> bool:
    """테이블 존재 확인"""
    try:
        client.table(table).select("club_id").limit(1).execute()
        return True
    except Exception as e:
        if "does not exist" in str(e) or "relation" in str(e).lower():
            return False
        raise


def run_migration() -> bool:
    """
    마이그레이션 SQL 확인

    Supabase Python 클라이언트는 DDL 실행을 지원하지 않으므로
    테이블이 없으면 Dashboard SQL Editor에서 실행할 SQL을 출력한다.
    """
    if not MIGRATION_FILE.exists():
        logger.error(f"마이그레이션 파일을 찾을 수 없습니다: {MIGRATION_FILE}")
        return False

    client = get_supabase_client()
    logger.info("구독 테이블 마이그레이션 확인...")

    if table_exists(client, SUBSCRIPTIONS_TABLE):
        logger.info(f"✅ {SUBSCRIPTIONS_TABLE} 테이블이 이미 존재합니다")
        return True

    logger.info(f"{SUBSCRIPTIONS_TABLE} 테이블이 없습니다. 생성이 필요합니다.")
    logger.info("=" * 60)
    logger.info("Supabase Dashboard → SQL Editor에서 아래 SQL을 실행해주세요:")
    logger.info("=" * 60)
    print("\n" + MIGRATION_FILE.read_text(encoding="utf-8") + "\n")
    return True


if __name__ == "__main__":
    logger.remove()
    logger.add(sys.stdout, format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}")
    run_migration()
