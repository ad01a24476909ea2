"""
DB 게이트웨이 패키지
- EngineType: 지원 엔진 (postgres | mysql | sqlite)
- BaseEngineAdapter: 엔진 어댑터 인터페이스
- DatabaseGateway: 비동기 파사드 (엔진 선택, 타임아웃, 오류를 결과로 변환)
"""
import asyncio
import logging
from functools import lru_cache, partial
from typing import Dict, Optional, Type

from sqlbridge.core.config import settings
from sqlbridge.core.errors import GatewayErrorCode, UnsupportedEngineError
from sqlbridge.services.gateway.base import (
    BaseEngineAdapter,
    ConnectionTestResult,
    EngineType,
    NormalizedSchema,
    QueryResult,
    degraded_schema,
)
from sqlbridge.services.gateway.mysql import MySQLAdapter
from sqlbridge.services.gateway.postgres import PostgresAdapter
from sqlbridge.services.gateway.sqlite import SQLiteAdapter

logger = logging.getLogger(__name__)

ADAPTERS: Dict[EngineType, Type[BaseEngineAdapter]] = {
    EngineType.POSTGRES: PostgresAdapter,
    EngineType.MYSQL: MySQLAdapter,
    EngineType.SQLITE: SQLiteAdapter,
}


def get_engine_adapter(
    engine_type,
    connect_timeout: Optional[int] = None,
    query_timeout: Optional[float] = None,
) -> BaseEngineAdapter:
    """엔진 태그로 어댑터 생성. 목록 밖의 태그는 UnsupportedEngineError."""
    engine = EngineType.parse(engine_type)
    timeout = connect_timeout or settings.GATEWAY_CONNECT_TIMEOUT_SECONDS
    return ADAPTERS[engine](connect_timeout=timeout, query_timeout=query_timeout)


class DatabaseGateway:
    """
    test / execute / introspect 를 하나의 계약으로 제공합니다.
    동기 드라이버 호출은 기본 executor에서 실행합니다.
    문장 실행 시간은 엔진 쪽에서 제한하고 (중단 시 롤백), 전체 대기 시간은
    query_timeout + connect_timeout 으로 한 번 더 제한합니다.
    어떤 작업도 예외를 밖으로 던지지 않고 결과 객체로 돌려줍니다.
    """

    def __init__(self, connect_timeout: Optional[int] = None, query_timeout: Optional[float] = None):
        self.connect_timeout = connect_timeout or settings.GATEWAY_CONNECT_TIMEOUT_SECONDS
        self.query_timeout = query_timeout or settings.GATEWAY_QUERY_TIMEOUT_SECONDS

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, partial(func, *args)),
            timeout=self.query_timeout + self.connect_timeout,
        )

    def _adapter(self, config) -> BaseEngineAdapter:
        return get_engine_adapter(config.type, self.connect_timeout, self.query_timeout)

    def _timeout_message(self) -> str:
        return f"Operation timed out after {self.query_timeout}s"

    async def test_connection(self, config) -> ConnectionTestResult:
        try:
            adapter = self._adapter(config)
        except UnsupportedEngineError as e:
            return ConnectionTestResult(success=False, error=str(e), error_code=GatewayErrorCode.UNSUPPORTED_ENGINE)

        try:
            result = await self._run(adapter.test_connection, config)
        except asyncio.TimeoutError:
            logger.warning(f"[Gateway] test timeout ({config.type})")
            return ConnectionTestResult(
                success=False, error=self._timeout_message(), error_code=GatewayErrorCode.TIMEOUT
            )
        except Exception as e:
            logger.error(f"[Gateway] unexpected test error ({config.type}): {type(e).__name__}")
            return ConnectionTestResult(success=False, error=str(e), error_code=GatewayErrorCode.CONNECTION_FAILED)

        logger.info(f"[Gateway] test {config.type}: success={result.success}")
        return result

    async def execute_query(self, config, sql: str) -> QueryResult:
        try:
            adapter = self._adapter(config)
        except UnsupportedEngineError as e:
            return QueryResult(success=False, error=str(e), error_code=GatewayErrorCode.UNSUPPORTED_ENGINE)

        try:
            result = await self._run(adapter.execute_query, config, sql)
        except asyncio.TimeoutError:
            logger.warning(f"[Gateway] query timeout ({config.type})")
            return QueryResult(success=False, error=self._timeout_message(), error_code=GatewayErrorCode.TIMEOUT)
        except Exception as e:
            logger.error(f"[Gateway] unexpected execution error ({config.type}): {type(e).__name__}")
            return QueryResult(success=False, error=str(e), error_code=GatewayErrorCode.EXECUTION_ERROR)

        logger.info(f"[Gateway] execute {config.type}: success={result.success}, rows={result.row_count}")
        return result

    async def get_schema(self, config) -> NormalizedSchema:
        try:
            adapter = self._adapter(config)
        except UnsupportedEngineError as e:
            return degraded_schema(str(config.type), str(e))

        try:
            return await self._run(adapter.get_schema, config)
        except asyncio.TimeoutError:
            logger.warning(f"[Gateway] schema timeout ({config.type})")
            return degraded_schema(adapter.engine_type.value, self._timeout_message())
        except Exception as e:
            logger.error(f"[Gateway] unexpected schema error ({config.type}): {type(e).__name__}")
            return degraded_schema(adapter.engine_type.value, str(e))

    async def get_statistics(self, config) -> QueryResult:
        """엔진별 카탈로그에서 사용자 테이블 목록 조회"""
        try:
            adapter = self._adapter(config)
        except UnsupportedEngineError as e:
            return QueryResult(success=False, error=str(e), error_code=GatewayErrorCode.UNSUPPORTED_ENGINE)
        return await self.execute_query(config, adapter.statistics_query())


@lru_cache()
def get_database_gateway() -> DatabaseGateway:
    """싱글톤 DatabaseGateway 인스턴스 반환"""
    return DatabaseGateway()


__all__ = [
    "ADAPTERS",
    "BaseEngineAdapter",
    "ConnectionTestResult",
    "DatabaseGateway",
    "EngineType",
    "NormalizedSchema",
    "QueryResult",
    "get_database_gateway",
    "get_engine_adapter",
]
