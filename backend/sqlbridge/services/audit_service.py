"""
감사 로그 서비스
- 보안 관련 동작을 audit_logs에 추가 (INSERT 전용)
- 기록 실패는 로그로만 남기고 호출자의 요청을 실패시키지 않음
- 응답을 기다리게 하지 않도록 백그라운드 태스크로 기록
"""
import logging
from functools import lru_cache
from typing import Any, Callable, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.models.audit_log import AuditLog
from sqlbridge.models.user import User
from sqlbridge.services.background import fire_and_forget

logger = logging.getLogger(__name__)

FAILED_PREFIX = "FAILED_"


def failed_action(action: str) -> str:
    return f"{FAILED_PREFIX}{action}"


class AuditRecorder:
    """감사 로그 기록기 (싱글톤)"""

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], AsyncSession]:
        if self._session_factory is None:
            from sqlbridge.db.session import AsyncSessionLocal
            self._session_factory = AsyncSessionLocal
        return self._session_factory

    async def record(
        self,
        user_id: Optional[int],
        action: str,
        target_type: Optional[str],
        target_id: Any = None,
        details: Any = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """감사 로그 한 건 추가. 어떤 경우에도 예외를 던지지 않음."""
        try:
            entry = AuditLog(
                user_id=user_id,
                action=action,
                target_type=target_type,
                target_id=None if target_id is None else str(target_id),
                details=None if details is None else jsonable_encoder(details),
                ip_address=ip_address,
            )
            async with self.session_factory() as db:
                db.add(entry)
                await db.commit()
            logger.info(f"[Audit] {action} target={target_type}/{target_id} user={user_id}")
        except Exception as e:
            logger.error(f"[Audit] error creating audit log ({action}): {e}")

    def record_in_background(
        self,
        user_id: Optional[int],
        action: str,
        target_type: Optional[str],
        target_id: Any = None,
        details: Any = None,
        ip_address: Optional[str] = None,
    ):
        """응답 경로를 막지 않고 기록 (fire-and-forget)"""
        return fire_and_forget(
            self.record(user_id, action, target_type, target_id, details, ip_address),
            name=f"audit:{action}",
        )

    async def list_logs(
        self,
        db: AsyncSession,
        limit: int = 20,
        offset: int = 0,
        user_id: Optional[int] = None,
    ) -> List[dict]:
        """감사 로그 조회 (최신순). 사용자가 삭제되었어도 로그는 그대로 조회됨."""
        stmt = (
            select(AuditLog, User.email)
            .outerjoin(User, AuditLog.user_id == User.id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if user_id is not None:
            stmt = stmt.where(AuditLog.user_id == user_id)
        result = await db.execute(stmt)
        return [
            {
                "id": log.id,
                "user_id": log.user_id,
                "user_email": email,
                "action": log.action,
                "target_type": log.target_type,
                "target_id": log.target_id,
                "details": log.details,
                "ip_address": log.ip_address,
                "created_at": log.created_at,
            }
            for log, email in result.all()
        ]

    async def list_logs_for_user(
        self, db: AsyncSession, user_id: int, limit: int = 20, offset: int = 0
    ) -> List[dict]:
        return await self.list_logs(db, limit=limit, offset=offset, user_id=user_id)


@lru_cache()
def get_audit_recorder() -> AuditRecorder:
    """싱글톤 AuditRecorder 인스턴스 반환"""
    return AuditRecorder()
