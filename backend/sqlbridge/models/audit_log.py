from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from sqlbridge.db.base import Base


class AuditLog(Base):
    """
    INSERT 전용 감사 로그.
    user_id에 FK/cascade를 두지 않아 사용자가 삭제되어도 기록이 남는다.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)  # 인증 이전 동작(register 등)은 NULL 가능
    action = Column(String(128), nullable=False, index=True)  # create_connection, FAILED_login, ...
    target_type = Column(String(64), nullable=True)  # user | connection | query
    target_id = Column(String(128), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
