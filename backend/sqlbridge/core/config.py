"""
애플리케이션 설정
환경변수를 통해 설정을 관리합니다.
"""
import logging
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # ============================================================
    # 기본 설정
    # ============================================================
    PROJECT_NAME: str = "SQL Bridge Backend"
    API_V1_STR: str = "/api/v1"

    # 환경 설정
    DEBUG: bool = False
    ENVIRONMENT: str = Field(
        default="development",
        description="development, staging, production"
    )

    # ============================================================
    # CORS 설정
    # ============================================================
    CORS_ORIGINS: str = Field(
        default="http://localhost:5173,http://localhost:3000",
        description="쉼표로 구분된 허용 Origin 목록"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS Origin 리스트 반환"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # ============================================================
    # 인증 설정
    # ============================================================
    SECRET_KEY: str = Field(
        ...,
        min_length=32,
        description="JWT 서명용 비밀키 (최소 32자)"
    )
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, ge=1, le=1440)

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == "CHANGE_THIS_TO_A_SUPER_SECRET_KEY":
            raise ValueError("SECRET_KEY를 변경해주세요. 기본값은 보안에 취약합니다.")
        if len(v) < 32:
            raise ValueError("SECRET_KEY는 최소 32자 이상이어야 합니다.")
        return v

    # ============================================================
    # 자격 증명 암호화 설정
    # ============================================================
    ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        min_length=32,
        description="DB 비밀번호/TLS 인증서 암호화 키 (미설정 시 SECRET_KEY 사용)"
    )

    @property
    def encryption_secret(self) -> str:
        """Fernet 키 파생에 사용할 비밀값"""
        return self.ENCRYPTION_KEY or self.SECRET_KEY

    # ============================================================
    # 데이터베이스 설정 (메타데이터 저장소)
    # ============================================================
    DATABASE_URL: str = Field(
        ...,
        description="메타데이터 DB 연결 URL (postgresql+asyncpg://...)"
    )

    # ============================================================
    # 게이트웨이 설정 (사용자 등록 DB 접속)
    # ============================================================
    GATEWAY_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=10, ge=1, le=120,
        description="네트워크 DB 접속 타임아웃 (초)"
    )
    GATEWAY_QUERY_TIMEOUT_SECONDS: int = Field(
        default=30, ge=1, le=600,
        description="쿼리/스키마 조회 전체 타임아웃 (초)"
    )
    SAMPLE_ROWS_LIMIT: int = Field(default=10, ge=1, le=1000, description="샘플 데이터 행 수")

    # ============================================================
    # 조회 페이지 설정
    # ============================================================
    HISTORY_PAGE_SIZE: int = Field(default=10, ge=1, le=200, description="쿼리 히스토리 기본 조회 개수")
    AUDIT_PAGE_SIZE: int = Field(default=20, ge=1, le=500, description="감사 로그 기본 조회 개수")

    # ============================================================
    # LLM 설정 (자연어 → SQL)
    # ============================================================
    OLLAMA_BASE_URL: str = Field(
        default="http://localhost:11434",
        description="Ollama 서버 URL"
    )
    LLM_MODEL: str = Field(
        default="llama3.1",
        description="SQL 생성용 LLM 모델명"
    )
    LLM_TEMPERATURE: float = Field(default=0.0, ge=0.0, le=2.0)
    LLM_TIMEOUT_SECONDS: int = Field(default=90, ge=5, le=600)

    # ============================================================
    # 로깅 설정
    # ============================================================
    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def validate_production_settings(self) -> List[str]:
        """
        프로덕션 환경 설정 검증
        Returns:
            경고 메시지 리스트
        """
        warnings = []

        if self.ENVIRONMENT == "production":
            if self.DEBUG:
                warnings.append("프로덕션 환경에서 DEBUG=True는 권장되지 않습니다.")

            if "localhost" in self.CORS_ORIGINS:
                warnings.append("프로덕션 환경에서 localhost CORS는 권장되지 않습니다.")

            if not self.ENCRYPTION_KEY:
                warnings.append("ENCRYPTION_KEY가 설정되지 않아 SECRET_KEY로 자격 증명을 암호화합니다.")

            if "localhost" in self.DATABASE_URL:
                warnings.append("프로덕션 환경에서 localhost DB는 권장되지 않습니다.")

        return warnings


# 설정 인스턴스 생성
settings = Settings()

# 프로덕션 환경 경고 출력
_warnings = settings.validate_production_settings()
for warning in _warnings:
    logger.warning(f"[CONFIG] {warning}")
