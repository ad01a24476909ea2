"""
감사 로그 조회 API (관리자 전용)
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.api.deps import get_current_admin
from sqlbridge.core.config import settings
from sqlbridge.db.session import get_db
from sqlbridge.models.user import User
from sqlbridge.schemas.audit import AuditLogListResponse
from sqlbridge.services.audit_service import get_audit_recorder

router = APIRouter()


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    limit: int = Query(default=settings.AUDIT_PAGE_SIZE, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    logs = await get_audit_recorder().list_logs(db, limit=limit, offset=offset)
    return {"logs": logs}


@router.get("/logs/user/{user_id}", response_model=AuditLogListResponse)
async def list_user_audit_logs(
    user_id: int,
    limit: int = Query(default=settings.AUDIT_PAGE_SIZE, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """특정 사용자의 감사 로그 (삭제된 사용자도 조회 가능)"""
    logs = await get_audit_recorder().list_logs_for_user(db, user_id, limit=limit, offset=offset)
    return {"logs": logs}
