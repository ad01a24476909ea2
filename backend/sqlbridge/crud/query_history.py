"""
쿼리 히스토리 CRUD
- 저장은 진단용 부수 기록: 실패해도 로그만 남기고 호출자에게 전파하지 않음
"""
import logging
from typing import Callable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.models.query_history import QueryHistory
from sqlbridge.schemas.query import QueryHistoryCreate

logger = logging.getLogger(__name__)


async def save_query_history(session_factory: Callable[[], AsyncSession], entry: QueryHistoryCreate) -> None:
    """자체 세션으로 히스토리 한 건을 추가합니다. 예외를 밖으로 던지지 않음."""
    try:
        async with session_factory() as db:
            db.add(QueryHistory(**entry.model_dump()))
            await db.commit()
        logger.debug(f"[History] saved: user={entry.user_id}, conn={entry.connection_id}, success={entry.success}")
    except Exception as e:
        logger.error(f"[History] could not save query history: {e}")


async def list_query_history(
    db: AsyncSession, user_id: int, limit: int = 10, offset: int = 0
) -> List[QueryHistory]:
    result = await db.execute(
        select(QueryHistory)
        .where(QueryHistory.user_id == user_id)
        .order_by(QueryHistory.created_at.desc(), QueryHistory.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def get_query_history(db: AsyncSession, history_id: int, user_id: int) -> Optional[QueryHistory]:
    result = await db.execute(
        select(QueryHistory)
        .where(QueryHistory.id == history_id, QueryHistory.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def delete_query_history(db: AsyncSession, history_id: int, user_id: int) -> bool:
    result = await db.execute(
        delete(QueryHistory)
        .where(QueryHistory.id == history_id, QueryHistory.user_id == user_id)
    )
    await db.commit()
    return result.rowcount > 0
