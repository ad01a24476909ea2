"""
MySQLAdapter: 네트워크 DB (INFORMATION_SCHEMA.COLUMNS 기반 스키마 조회)
"""
import logging
import math
from typing import Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import NullPool

from sqlbridge.services.gateway.base import (
    BaseEngineAdapter,
    EngineType,
    NormalizedSchema,
    make_column,
)

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
    SELECT
      TABLE_NAME,
      COLUMN_NAME,
      DATA_TYPE,
      IS_NULLABLE,
      COLUMN_DEFAULT,
      COLUMN_KEY
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = :schema
    ORDER BY TABLE_NAME, ORDINAL_POSITION
"""

_STATISTICS_SQL = """
    SELECT
      TABLE_SCHEMA AS schema_name,
      TABLE_NAME AS table_name,
      TABLE_ROWS AS approximate_rows
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA NOT IN ('mysql', 'information_schema', 'performance_schema', 'sys')
    ORDER BY TABLE_SCHEMA, TABLE_NAME
"""


class MySQLAdapter(BaseEngineAdapter):
    engine_type = EngineType.MYSQL

    def connect_args(self, config, tls_files: Dict[str, str]) -> dict:
        args = {"connect_timeout": self.connect_timeout}
        if self.query_timeout:
            # 응답이 늦으면 드라이버가 연결을 끊고, 커밋되지 않은 트랜잭션은 서버에서 롤백됨
            args["read_timeout"] = args["write_timeout"] = max(1, math.ceil(self.query_timeout))
        if not config.ssl_enabled or config.ssl_mode == "disable":
            args["ssl_disabled"] = True
            return args
        verify = bool(config.ssl_reject_unauthorized)
        ssl = {
            "verify_mode": verify,
            "check_hostname": verify and config.ssl_mode == "verify-full",
        }
        if "ssl_ca_cert" in tls_files:
            ssl["ca"] = tls_files["ssl_ca_cert"]
        if "ssl_client_cert" in tls_files:
            ssl["cert"] = tls_files["ssl_client_cert"]
        if "ssl_client_key" in tls_files:
            ssl["key"] = tls_files["ssl_client_key"]
        args["ssl"] = ssl
        return args

    def _build_engine(self, config, tls_files: Dict[str, str]) -> Engine:
        url = URL.create(
            "mysql+pymysql",
            username=config.username,
            password=config.password or None,
            host=config.host,
            port=config.port,
            database=config.database,
        )
        return create_engine(url, poolclass=NullPool, connect_args=self.connect_args(config, tls_files))

    def _introspect(self, conn, config) -> NormalizedSchema:
        rows = conn.execute(text(_SCHEMA_SQL), {"schema": config.database}).mappings().all()
        return {
            "database_type": self.engine_type.value,
            "database_name": config.database,
            "tables": normalize_mysql_rows(rows),
        }

    def statistics_query(self) -> str:
        return _STATISTICS_SQL


def normalize_mysql_rows(rows) -> dict:
    """INFORMATION_SCHEMA 결과 → {table: {columns: [...]}} (COLUMN_KEY 기준)"""
    tables: dict = {}
    for row in rows:
        table = tables.setdefault(row["TABLE_NAME"], {"columns": []})
        table["columns"].append(make_column(
            name=row["COLUMN_NAME"],
            col_type=row["DATA_TYPE"],
            nullable=row["IS_NULLABLE"] == "YES",
            default=row["COLUMN_DEFAULT"],
            key=row["COLUMN_KEY"] or None,
        ))
    return tables
