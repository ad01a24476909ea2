"""
BaseEngineAdapter: DB 엔진 추상 인터페이스
- 작업 하나마다 엔진을 만들고, 연결하고, 반드시 해제 (풀 없음)
- 결과는 예외 대신 결과 객체로 반환 (호출 측이 엔진 종류와 무관하게 분기)
"""
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, TypedDict

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from sqlbridge.core.errors import GatewayErrorCode, UnsupportedEngineError

if TYPE_CHECKING:
    from sqlbridge.schemas.db_connection import ConnectionConfig

logger = logging.getLogger(__name__)


class EngineType(str, Enum):
    """지원하는 엔진 종류 (닫힌 집합)"""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    @classmethod
    def parse(cls, value: Any) -> "EngineType":
        """문자열 태그를 엔진 종류로 변환. 목록에 없으면 UnsupportedEngineError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedEngineError(value) from None

    @property
    def is_file_based(self) -> bool:
        return self is EngineType.SQLITE


# ============================================================
# 결과 타입
# ============================================================

class ConnectionTestResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_code: Optional[GatewayErrorCode] = None


class QueryResult(BaseModel):
    success: bool
    data: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    row_count: int = 0
    error: Optional[str] = None
    error_code: Optional[GatewayErrorCode] = None


class NormalizedColumn(TypedDict):
    name: str
    type: Optional[str]
    nullable: bool
    default: Optional[str]
    constraint: Optional[str]  # PRIMARY KEY | UNIQUE | FOREIGN KEY | ...
    key: Optional[str]         # PRI | UNI | MUL
    primary_key: bool


class NormalizedSchema(TypedDict, total=False):
    database_type: str
    database_name: Optional[str]
    tables: Dict[str, Dict[str, List[NormalizedColumn]]]
    error: str


def degraded_schema(database_type: str, error: str) -> NormalizedSchema:
    """실패 시에도 구조가 유효한 빈 스키마"""
    return {"database_type": database_type, "error": error, "tables": {}}


_CONSTRAINT_TO_KEY = {"PRIMARY KEY": "PRI", "UNIQUE": "UNI", "FOREIGN KEY": "MUL"}
_KEY_TO_CONSTRAINT = {"PRI": "PRIMARY KEY", "UNI": "UNIQUE"}


def make_column(
    name: str,
    col_type: Optional[str],
    nullable: bool,
    default: Any,
    constraint: Optional[str] = None,
    key: Optional[str] = None,
    primary_key: bool = False,
) -> NormalizedColumn:
    """엔진별 컬럼 정보를 하나의 형태로 맞춤 (세 가지 플래그 슬롯을 모두 채움)"""
    if primary_key or constraint == "PRIMARY KEY" or key == "PRI":
        primary_key = True
        constraint, key = "PRIMARY KEY", "PRI"
    else:
        constraint = constraint or _KEY_TO_CONSTRAINT.get(key)
        key = key or _CONSTRAINT_TO_KEY.get(constraint)
    return {
        "name": name,
        "type": col_type,
        "nullable": nullable,
        "default": None if default is None else str(default),
        "constraint": constraint,
        "key": key,
        "primary_key": primary_key,
    }


# ============================================================
# 오류 분류
# ============================================================

_REFUSED_PATTERNS = re.compile(
    r"connection refused|can't connect|could not connect|errno 111|"
    r"no route to host|name or service not known|could not translate host name|"
    r"unknown mysql server host|nodename nor servname",
    re.IGNORECASE,
)
_AUTH_PATTERNS = re.compile(
    r"password authentication failed|access denied|authentication failed|"
    r"no password supplied|role .* does not exist|pg_hba\.conf",
    re.IGNORECASE,
)
_TIMEOUT_PATTERNS = re.compile(r"timeout expired|timed out|timeout", re.IGNORECASE)
# 실행 중 시간 제한으로 중단된 문장 (postgres statement_timeout, sqlite interrupt, pymysql read_timeout)
_STATEMENT_TIMEOUT_PATTERNS = re.compile(
    r"canceling statement due to statement timeout|^interrupted$|timed out|"
    r"lost connection to mysql server during query",
    re.IGNORECASE,
)


def native_message(exc: BaseException) -> str:
    """드라이버 원본 메시지 (SQLAlchemy 래핑 제거)"""
    orig = getattr(exc, "orig", None)
    if isinstance(exc, DBAPIError) and orig is not None:
        return str(orig).strip()
    return str(exc).strip()


def classify_connect_error(exc: BaseException) -> GatewayErrorCode:
    """접속 단계 예외를 오류 코드로 분류"""
    message = native_message(exc)
    if isinstance(exc, TimeoutError) or _TIMEOUT_PATTERNS.search(message):
        return GatewayErrorCode.TIMEOUT
    if _AUTH_PATTERNS.search(message):
        return GatewayErrorCode.AUTHENTICATION_FAILED
    if isinstance(exc, ConnectionRefusedError) or _REFUSED_PATTERNS.search(message):
        return GatewayErrorCode.CONNECTION_REFUSED
    return GatewayErrorCode.CONNECTION_FAILED


def classify_execution_error(exc: BaseException) -> GatewayErrorCode:
    """실행 단계 예외 분류. 시간 제한으로 중단된 경우만 timeout."""
    if _STATEMENT_TIMEOUT_PATTERNS.search(native_message(exc)):
        return GatewayErrorCode.TIMEOUT
    return GatewayErrorCode.EXECUTION_ERROR


def unique_columns(keys) -> List[str]:
    """
    결과 컬럼 이름을 행 딕셔너리 키로 쓸 수 있게 중복 제거
    (SELECT a.id, b.id → ["id", "id_2"])
    """
    seen = set()
    columns = []
    for key in keys:
        name = str(key)
        candidate, n = name, 1
        while candidate in seen:
            n += 1
            candidate = f"{name}_{n}"
        seen.add(candidate)
        columns.append(candidate)
    return columns


# ============================================================
# 어댑터
# ============================================================

class BaseEngineAdapter(ABC):
    """모든 엔진 어댑터가 따르는 표준 인터페이스"""

    engine_type: EngineType
    ping_sql = "SELECT 1"

    def __init__(self, connect_timeout: int = 10, query_timeout: Optional[float] = None):
        self.connect_timeout = connect_timeout
        # 문장 하나의 실행 시간 제한. 엔진 쪽에서 중단시켜 롤백되도록 함 (None이면 제한 없음)
        self.query_timeout = query_timeout

    # ---------- 엔진별 구현 ----------

    @abstractmethod
    def _build_engine(self, config: "ConnectionConfig", tls_files: Dict[str, str]) -> Engine:
        """단일 작업용 SQLAlchemy 엔진 생성 (NullPool)"""
        ...

    @abstractmethod
    def _introspect(self, conn, config: "ConnectionConfig") -> NormalizedSchema:
        """열린 연결에서 스키마를 읽어 정규화된 형태로 반환"""
        ...

    @abstractmethod
    def statistics_query(self) -> str:
        """사용자 테이블 목록 조회 SQL"""
        ...

    @contextmanager
    def _statement_deadline(self, conn) -> Iterator[None]:
        """
        실행 중인 문장의 시간 제한.
        네트워크 엔진은 접속 옵션(connect_args)으로 서버/드라이버가 처리하므로 기본은 아무것도 하지 않음.
        """
        yield

    # ---------- 자원 관리 ----------

    @contextmanager
    def _engine_scope(self, config: "ConnectionConfig") -> Iterator[Engine]:
        """엔진 생성 → 사용 → dispose. TLS 임시 파일도 함께 정리."""
        tls_files: Dict[str, str] = {}
        engine = None
        try:
            if config.ssl_enabled:
                self._write_tls_files(config, tls_files)
            engine = self._build_engine(config, tls_files)
            yield engine
        finally:
            if engine is not None:
                engine.dispose()
            for path in tls_files.values():
                try:
                    os.remove(path)
                except OSError:
                    logger.warning("[Gateway] failed to remove TLS temp file")

    @staticmethod
    def _write_tls_files(config: "ConnectionConfig", files: Dict[str, str]) -> None:
        """드라이버가 파일 경로만 받으므로 PEM을 임시 파일로 기록"""
        for key in ("ssl_ca_cert", "ssl_client_cert", "ssl_client_key"):
            pem = getattr(config, key)
            if not pem:
                continue
            fd, path = tempfile.mkstemp(prefix="sqlbridge-", suffix=".pem")
            files[key] = path
            with os.fdopen(fd, "w") as fh:
                fh.write(pem)
            os.chmod(path, 0o600)

    # ---------- 공개 작업 ----------

    def test_connection(self, config: "ConnectionConfig") -> ConnectionTestResult:
        """가장 가벼운 왕복 확인. 예외를 던지지 않음."""
        try:
            with self._engine_scope(config) as engine:
                with engine.connect() as conn:
                    conn.execute(text(self.ping_sql))
            return ConnectionTestResult(success=True)
        except Exception as e:
            code = classify_connect_error(e)
            logger.info(f"[Gateway] {self.engine_type.value} test failed: {code.value}")
            return ConnectionTestResult(success=False, error=native_message(e), error_code=code)

    def execute_query(self, config: "ConnectionConfig", sql: str) -> QueryResult:
        """
        SQL을 그대로 실행. 트랜잭션 안에서 실행하고 실패 시 롤백. 재시도 없음.
        - 바인드 파라미터 해석 없이 드라이버에 그대로 전달 (':name', '%' 포함 문자열도 원문 유지)
        - 시간 제한에 걸리면 엔진이 문장을 중단하고 롤백한 뒤 timeout 결과
        """
        try:
            with self._engine_scope(config) as engine:
                try:
                    conn = engine.connect()
                except Exception as e:
                    return QueryResult(
                        success=False, error=native_message(e), error_code=classify_connect_error(e)
                    )
                with conn:
                    try:
                        with conn.begin(), self._statement_deadline(conn):
                            result = conn.exec_driver_sql(sql, execution_options={"no_parameters": True})
                            columns, data, row_count = self._collect(result)
                    except Exception as e:
                        code = classify_execution_error(e)
                        logger.info(f"[Gateway] {self.engine_type.value} execution error: {code.value}")
                        return QueryResult(success=False, error=native_message(e), error_code=code)
            return QueryResult(success=True, data=data, columns=columns, row_count=row_count)
        except Exception as e:
            return QueryResult(
                success=False, error=native_message(e), error_code=classify_connect_error(e)
            )

    @staticmethod
    def _collect(result):
        """컬럼은 엔진이 돌려준 순서 그대로, 값은 JSON 저장 가능한 형태로"""
        if not result.returns_rows:
            return [], [], max(result.rowcount or 0, 0)
        columns = unique_columns(result.keys())
        rows = [dict(zip(columns, row)) for row in result.fetchall()]
        data = jsonable_encoder(rows, custom_encoder={bytes: lambda b: b.hex()})
        return columns, data, len(data)

    def get_schema(self, config: "ConnectionConfig") -> NormalizedSchema:
        """정규화된 스키마. 실패 시 빈 tables와 error를 담아 반환."""
        try:
            with self._engine_scope(config) as engine:
                with engine.connect() as conn:
                    return self._introspect(conn, config)
        except Exception as e:
            logger.error(f"[Gateway] {self.engine_type.value} schema extraction error: {native_message(e)}")
            return degraded_schema(self.engine_type.value, native_message(e))
