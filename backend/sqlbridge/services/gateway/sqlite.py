"""
SQLiteAdapter: 로컬 파일 DB (테이블별 PRAGMA 기반 스키마 조회)
"""
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from sqlbridge.services.gateway.base import (
    BaseEngineAdapter,
    EngineType,
    NormalizedSchema,
    make_column,
)

logger = logging.getLogger(__name__)

_TABLES_SQL = "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"

_STATISTICS_SQL = """
    SELECT
      name AS table_name,
      sql AS table_definition
    FROM sqlite_master
    WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
    ORDER BY name
"""


# 진행 핸들러 호출 간격 (VM 명령 수)
_PROGRESS_STEPS = 1000


def file_uri(file_path: str) -> str:
    """읽기/쓰기 모드 URI. 파일이 없으면 새로 만들지 않고 오류가 난다."""
    return Path(file_path).expanduser().resolve().as_uri() + "?mode=rw"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteAdapter(BaseEngineAdapter):
    engine_type = EngineType.SQLITE
    # SELECT 1은 파일을 읽지 않으므로 헤더를 실제로 읽는 PRAGMA로 확인
    ping_sql = "PRAGMA schema_version"

    def _build_engine(self, config, tls_files: Dict[str, str]) -> Engine:
        if not config.file_path:
            raise ValueError("SQLite file_path is not set")
        uri = file_uri(config.file_path)
        return create_engine(
            "sqlite://",
            poolclass=NullPool,
            creator=lambda: sqlite3.connect(uri, uri=True, check_same_thread=False),
        )

    @contextmanager
    def _statement_deadline(self, conn) -> Iterator[None]:
        """진행 핸들러로 제한 시간이 지나면 문장을 interrupt (sqlite3가 롤백)"""
        if not self.query_timeout:
            yield
            return
        raw = conn.connection.dbapi_connection
        deadline = time.monotonic() + self.query_timeout
        raw.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
        try:
            yield
        finally:
            raw.set_progress_handler(None, 0)

    def _introspect(self, conn, config) -> NormalizedSchema:
        schema: NormalizedSchema = {"database_type": self.engine_type.value, "tables": {}}
        table_names = [row[0] for row in conn.execute(text(_TABLES_SQL))]
        for table_name in table_names:
            pragma = conn.execute(text(f"PRAGMA table_info({quote_identifier(table_name)})")).mappings().all()
            schema["tables"][table_name] = {"columns": normalize_pragma_rows(pragma)}
        return schema

    def statistics_query(self) -> str:
        return _STATISTICS_SQL


def normalize_pragma_rows(rows) -> list:
    """PRAGMA table_info → 컬럼 목록 (pk 값이 0보다 크면 기본키, 복합키 포함)"""
    return [
        make_column(
            name=row["name"],
            col_type=row["type"],
            nullable=row["notnull"] == 0,
            default=row["dflt_value"],
            primary_key=row["pk"] > 0,
        )
        for row in rows
    ]
