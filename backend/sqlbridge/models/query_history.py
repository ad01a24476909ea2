"""
쿼리 히스토리 모델
- 자연어 → SQL 변환/실행 시도마다 한 행 (성공/실패 모두)
- 생성 후 수정하지 않음
"""
from sqlalchemy import (
    Column, Integer, Float, String, Text, Boolean, DateTime, ForeignKey, JSON
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlbridge.db.base import Base


class QueryHistory(Base):
    __tablename__ = "query_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    connection_id = Column(Integer, nullable=True)
    question = Column(Text, nullable=False)
    generated_sql = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    execution_time = Column(Float, nullable=True)  # ms
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="query_history")
