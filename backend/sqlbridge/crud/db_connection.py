"""
DB 연결 CRUD (자격 증명 저장소)
- 모든 조회/수정/삭제는 (id, user_id) 조건으로만 수행
- 비밀 필드는 각각 따로 암호화/복호화
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.core.encryption import encrypt_value, decrypt_value
from sqlbridge.core.errors import NoFieldsToUpdateError, NotFoundOrUnauthorizedError
from sqlbridge.models.db_connection import DbConnection
from sqlbridge.schemas.db_connection import (
    ConnectionConfig,
    DBConnectionCreate,
    DBConnectionUpdate,
)

logger = logging.getLogger(__name__)

# 요청 필드명 → 암호문 컬럼명
SECRET_COLUMNS = {
    "password": "password_encrypted",
    "ssl_ca_cert": "ssl_ca_cert",
    "ssl_client_cert": "ssl_client_cert",
    "ssl_client_key": "ssl_client_key",
}

PLAIN_COLUMNS = (
    "name", "host", "port", "database", "username", "file_path",
    "ssl_enabled", "ssl_mode", "ssl_reject_unauthorized",
)


def _encrypt_optional(value: Optional[str]) -> Optional[str]:
    return encrypt_value(value) if value else None


def _decrypt_optional(value: Optional[str]) -> Optional[str]:
    return decrypt_value(value) if value else None


async def list_connections(db: AsyncSession, user_id: int) -> List[DbConnection]:
    """사용자의 DB 연결 목록 (최신순). 응답 스키마에서 비밀 필드는 제외됨."""
    result = await db.execute(
        select(DbConnection)
        .where(DbConnection.user_id == user_id)
        .order_by(DbConnection.created_at.desc(), DbConnection.id.desc())
    )
    return list(result.scalars().all())


async def get_connection(db: AsyncSession, connection_id: int, user_id: int) -> Optional[DbConnection]:
    result = await db.execute(
        select(DbConnection)
        .where(DbConnection.id == connection_id, DbConnection.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_decrypted_connection(
    db: AsyncSession, connection_id: int, user_id: int
) -> Optional[ConnectionConfig]:
    """
    복호화된 연결 정보를 반환합니다.
    다른 사용자의 연결이면 존재하지 않는 것과 똑같이 None.

    Raises:
        DecryptionError: 저장된 비밀값을 현재 키로 복호화할 수 없는 경우
    """
    conn = await get_connection(db, connection_id, user_id)
    if not conn:
        return None

    return ConnectionConfig(
        id=conn.id,
        user_id=conn.user_id,
        name=conn.name,
        type=conn.type,
        host=conn.host,
        port=conn.port,
        database=conn.database,
        username=conn.username,
        password=_decrypt_optional(conn.password_encrypted),
        file_path=conn.file_path,
        ssl_enabled=conn.ssl_enabled,
        ssl_mode=conn.ssl_mode,
        ssl_reject_unauthorized=conn.ssl_reject_unauthorized,
        ssl_ca_cert=_decrypt_optional(conn.ssl_ca_cert),
        ssl_client_cert=_decrypt_optional(conn.ssl_client_cert),
        ssl_client_key=_decrypt_optional(conn.ssl_client_key),
        created_at=conn.created_at,
        updated_at=conn.updated_at,
    )


async def save_connection(db: AsyncSession, user_id: int, data: DBConnectionCreate) -> DbConnection:
    """연결을 저장합니다. 값이 있는 비밀 필드만 암호화해서 저장."""
    conn = DbConnection(
        user_id=user_id,
        name=data.name,
        type=data.type,
        host=data.host,
        port=data.port,
        database=data.database,
        username=data.username,
        password_encrypted=_encrypt_optional(data.password),
        file_path=data.file_path,
        ssl_enabled=data.ssl_enabled,
        ssl_mode=data.ssl_mode,
        ssl_reject_unauthorized=data.ssl_reject_unauthorized,
        ssl_ca_cert=_encrypt_optional(data.ssl_ca_cert),
        ssl_client_cert=_encrypt_optional(data.ssl_client_cert),
        ssl_client_key=_encrypt_optional(data.ssl_client_key),
    )
    db.add(conn)
    await db.commit()
    await db.refresh(conn)
    logger.info(f"DB connection created: id={conn.id} ({conn.type})")
    return conn


def build_update_values(updates: DBConnectionUpdate) -> dict:
    """요청에 포함된 필드만 컬럼 값으로 변환 (비밀 필드는 암호화, null이면 삭제)"""
    values = {}
    for field, value in updates.present_fields().items():
        if field in SECRET_COLUMNS:
            values[SECRET_COLUMNS[field]] = _encrypt_optional(value)
        elif field in PLAIN_COLUMNS:
            values[field] = value
    return values


async def update_connection(
    db: AsyncSession, connection_id: int, user_id: int, updates: DBConnectionUpdate
) -> DbConnection:
    """
    부분 업데이트.
    소유권은 UPDATE 실행 후 영향받은 행 수로 확인합니다 (사전 조회 없이).

    Raises:
        NoFieldsToUpdateError: 변경할 필드가 없음
        NotFoundOrUnauthorizedError: (id, user_id)에 해당하는 행이 없음
    """
    values = build_update_values(updates)
    if not values:
        raise NoFieldsToUpdateError("변경할 항목이 없습니다.")

    values["updated_at"] = func.now()
    result = await db.execute(
        update(DbConnection)
        .where(DbConnection.id == connection_id, DbConnection.user_id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundOrUnauthorizedError("Connection not found or unauthorized")
    await db.commit()

    conn = await get_connection(db, connection_id, user_id)
    if conn is None:
        # 커밋 직후 다른 요청이 삭제한 경우
        raise NotFoundOrUnauthorizedError("Connection not found or unauthorized")
    await db.refresh(conn)
    logger.info(f"DB connection updated: id={connection_id}, fields={sorted(updates.model_fields_set)}")
    return conn


async def delete_connection(db: AsyncSession, connection_id: int, user_id: int) -> bool:
    """삭제된 행이 있으면 True, 없으면 False (오류 아님)"""
    result = await db.execute(
        delete(DbConnection)
        .where(DbConnection.id == connection_id, DbConnection.user_id == user_id)
    )
    await db.commit()
    deleted = result.rowcount > 0
    if deleted:
        logger.info(f"DB connection deleted: id={connection_id}")
    return deleted
