"""
DB 커넥션 모델 (사용자가 등록한 외부 DB)
- 비밀번호와 TLS 인증서/키는 Fernet 암호문으로만 저장
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlbridge.db.base import Base


class DbConnection(Base):
    __tablename__ = "db_connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    type = Column(String(20), nullable=False)  # postgres | mysql | sqlite

    # 네트워크 DB 전용 (postgres, mysql)
    host = Column(String(255), nullable=True)
    port = Column(Integer, nullable=True)
    database = Column(String(255), nullable=True)
    username = Column(String(255), nullable=True)
    password_encrypted = Column(Text, nullable=True)

    # 파일 DB 전용 (sqlite)
    file_path = Column(String(1024), nullable=True)

    # TLS 설정 (인증서/키는 암호문)
    ssl_enabled = Column(Boolean, nullable=False, default=False)
    ssl_mode = Column(String(20), nullable=False, default="prefer")
    ssl_reject_unauthorized = Column(Boolean, nullable=False, default=True)
    ssl_ca_cert = Column(Text, nullable=True)
    ssl_client_cert = Column(Text, nullable=True)
    ssl_client_key = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="db_connections")
