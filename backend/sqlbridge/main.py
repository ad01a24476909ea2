"""
SQL Bridge Backend - FastAPI 애플리케이션
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from sqlbridge.core.config import settings
from sqlbridge.core.errors import SQLBridgeError
from sqlbridge.api.api import api_router
from sqlbridge.db.session import engine
from sqlbridge.db.base import Base
from sqlbridge.services.background import drain_background_tasks

# 모든 모델 import (create_all에 필요)
import sqlbridge.models.user  # noqa: F401
import sqlbridge.models.db_connection  # noqa: F401
import sqlbridge.models.query_history  # noqa: F401
import sqlbridge.models.audit_log  # noqa: F401

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """애플리케이션 라이프사이클 관리"""
    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})")

    # Startup
    # DB 테이블 자동 생성 (개발 환경)
    if settings.ENVIRONMENT == "development":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (development mode)")

    yield

    # Shutdown
    logger.info("Shutting down...")

    # 남은 감사 로그/히스토리 기록 대기
    await drain_background_tasks()

    # DB 연결 해제
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="SQL Bridge Backend API",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan
)

# CORS 설정 - 환경변수에서 읽어옴
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.exception_handler(SQLBridgeError)
async def sqlbridge_error_handler(request: Request, exc: SQLBridgeError):
    """도메인 예외 → 예외별 상태 코드"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 실패: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.get("/")
def read_root():
    """루트 엔드포인트"""
    return {
        "message": "Welcome to SQL Bridge API Server",
        "version": "1.0.0",
        "docs": "/docs" if settings.DEBUG else "disabled"
    }


@app.get("/health")
async def health_check():
    """헬스 체크 엔드포인트"""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health/{service}")
async def health_check_service(service: str):
    """개별 서비스 연결 테스트"""
    if service == "database":
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "connected", "service": "database", "detail": "메타데이터 DB 연결 성공"}
        except Exception as e:
            return {"status": "disconnected", "service": "database", "detail": f"메타데이터 DB 연결 실패: {e}"}

    elif service == "ollama":
        try:
            import httpx
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(f"{settings.OLLAMA_BASE_URL}/api/tags")
                if resp.status_code == 200:
                    models_list = resp.json().get("models", [])
                    names = [m.get("name", "") for m in models_list[:5]]
                    return {"status": "connected", "service": "ollama", "detail": f"Ollama 연결 성공 (모델: {', '.join(names)})"}
            return {"status": "disconnected", "service": "ollama", "detail": "Ollama 응답 오류"}
        except Exception as e:
            return {"status": "disconnected", "service": "ollama", "detail": f"Ollama 연결 실패: {e}"}

    return {"status": "error", "service": service, "detail": f"알 수 없는 서비스: {service}"}
