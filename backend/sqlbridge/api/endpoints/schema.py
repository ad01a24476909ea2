"""
스키마 조회 API
- 정규화된 스키마 (엔진과 무관한 같은 모양)
- 테이블 샘플 데이터, 테이블 통계
"""
import logging
import re

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.api.deps import get_current_user, load_connection_config
from sqlbridge.core.config import settings
from sqlbridge.core.errors import ExecutionError
from sqlbridge.db.session import get_db
from sqlbridge.models.user import User
from sqlbridge.services.gateway import EngineType, get_database_gateway

logger = logging.getLogger(__name__)
router = APIRouter()

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_QUOTE_CHARS = {
    EngineType.POSTGRES: '"',
    EngineType.MYSQL: "`",
    EngineType.SQLITE: '"',
}


def sample_query(engine_type: str, table_name: str, limit: int) -> str:
    """검증된 테이블 이름으로 샘플 조회 SQL 생성"""
    if not TABLE_NAME_PATTERN.match(table_name):
        raise ValueError(f"Invalid table name: {table_name}")
    quote = _QUOTE_CHARS[EngineType.parse(engine_type)]
    return f"SELECT * FROM {quote}{table_name}{quote} LIMIT {int(limit)}"


@router.get("/{connection_id}")
async def get_schema(
    connection_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    연결된 DB의 스키마 조회
    - 조회에 실패해도 오류 대신 비어있는 스키마와 error 필드를 반환
    """
    config = await load_connection_config(db, connection_id, current_user)
    schema = await get_database_gateway().get_schema(config)
    if schema.get("error"):
        logger.warning(f"스키마 조회 실패: connection_id={connection_id}")

    return {
        "connection": {"id": config.id, "name": config.name, "type": config.type},
        "schema": schema,
    }


@router.get("/{connection_id}/tables/{table_name}/sample")
async def get_table_sample(
    connection_id: int,
    table_name: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not TABLE_NAME_PATTERN.match(table_name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="잘못된 테이블 이름입니다.")

    config = await load_connection_config(db, connection_id, current_user)
    sql = sample_query(config.type, table_name, settings.SAMPLE_ROWS_LIMIT)
    result = await get_database_gateway().execute_query(config, sql)
    if not result.success:
        raise ExecutionError(f"샘플 데이터 조회 실패: {result.error}")

    return {"table": table_name, "sample": result}


@router.get("/{connection_id}/statistics")
async def get_statistics(
    connection_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    config = await load_connection_config(db, connection_id, current_user)
    result = await get_database_gateway().get_statistics(config)
    if not result.success:
        raise ExecutionError(f"통계 조회 실패: {result.error}")

    return {"statistics": result.data}
