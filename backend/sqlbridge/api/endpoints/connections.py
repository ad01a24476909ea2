"""
DB 연결 관리 API
- 저장 전 항상 연결 테스트
- 응답에는 비밀 필드(비밀번호, 인증서, 키)를 포함하지 않음
- 없는 연결과 다른 사용자의 연결은 같은 404
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.api.audit_route import AuditedRoute, audited
from sqlbridge.api.deps import CONNECTION_NOT_FOUND, get_current_user, load_connection_config
from sqlbridge.core.errors import ConnectionTestFailedError, NotFoundOrUnauthorizedError
from sqlbridge.crud import db_connection as crud_connection
from sqlbridge.db.session import get_db
from sqlbridge.models.user import User
from sqlbridge.schemas.db_connection import (
    NETWORK_FIELDS,
    ConnectionConfig,
    DBConnectionCreate,
    DBConnectionListResponse,
    DBConnectionResponse,
    DBConnectionUpdate,
)
from sqlbridge.services.gateway import ConnectionTestResult, EngineType, get_database_gateway

logger = logging.getLogger(__name__)
router = APIRouter(route_class=AuditedRoute)


def _connection_id_from_path(request, body):
    return request.path_params.get("connection_id")


def _raise_test_failed(result: ConnectionTestResult):
    raise ConnectionTestFailedError(f"연결 테스트 실패: {result.error}")


def check_family_fields(engine_type: str, updates: DBConnectionUpdate) -> None:
    """저장된 엔진 종류에 맞지 않는 필드 변경 거부"""
    engine = EngineType.parse(engine_type)

    if engine.is_file_based:
        invalid = sorted(updates.model_fields_set & set(NETWORK_FIELDS))
    else:
        invalid = sorted(updates.model_fields_set & {"file_path"})
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{engine.value} 연결에는 {', '.join(invalid)}을(를) 지정할 수 없습니다.",
        )


@router.get("/", response_model=DBConnectionListResponse)
async def list_connections(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    connections = await crud_connection.list_connections(db, current_user.id)
    return {"connections": connections}


@router.post("/", response_model=DBConnectionResponse, status_code=status.HTTP_201_CREATED)
@audited(
    "create_connection", "connection",
    get_target_id=lambda request, body: body["id"] if body else None,
    get_details=lambda request, body: {"name": body["name"], "type": body["type"]} if body else None,
)
async def create_connection(
    data: DBConnectionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    DB 연결 등록
    - 연결 테스트가 실패하면 저장하지 않음 (400, 드라이버 오류 메시지 포함)
    """
    config = ConnectionConfig(**data.model_dump())
    result = await get_database_gateway().test_connection(config)
    if not result.success:
        logger.warning(f"연결 등록 거부 ({data.type}): {result.error_code}")
        _raise_test_failed(result)

    return await crud_connection.save_connection(db, current_user.id, data)


@router.post("/test", response_model=ConnectionTestResult)
async def test_draft_connection(
    data: DBConnectionCreate,
    current_user: User = Depends(get_current_user),
):
    """저장하지 않은 연결 정보로 테스트"""
    return await get_database_gateway().test_connection(ConnectionConfig(**data.model_dump()))


@router.get("/{connection_id}", response_model=DBConnectionResponse)
async def get_connection(
    connection_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conn = await crud_connection.get_connection(db, connection_id, current_user.id)
    if conn is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CONNECTION_NOT_FOUND)
    return conn


@router.put("/{connection_id}", response_model=DBConnectionResponse)
@audited(
    "update_connection", "connection",
    get_target_id=_connection_id_from_path,
    get_details=lambda request, body: {"name": body["name"]} if body else None,
)
async def update_connection(
    connection_id: int,
    updates: DBConnectionUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    DB 연결 부분 수정
    - 이름 외의 필드가 바뀌면 병합된 설정으로 다시 테스트한 뒤 저장
    """
    if updates.touches_connection():
        existing = await load_connection_config(db, connection_id, current_user)
        check_family_fields(existing.type, updates)
        result = await get_database_gateway().test_connection(existing.merged_with(updates))
        if not result.success:
            _raise_test_failed(result)

    try:
        return await crud_connection.update_connection(db, connection_id, current_user.id, updates)
    except NotFoundOrUnauthorizedError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CONNECTION_NOT_FOUND)


@router.delete("/{connection_id}")
@audited("delete_connection", "connection", get_target_id=_connection_id_from_path)
async def delete_connection(
    connection_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await crud_connection.delete_connection(db, connection_id, current_user.id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CONNECTION_NOT_FOUND)
    return {"message": "연결이 삭제되었습니다."}


@router.post("/{connection_id}/test", response_model=ConnectionTestResult)
async def test_saved_connection(
    connection_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    config = await load_connection_config(db, connection_id, current_user)
    return await get_database_gateway().test_connection(config)
