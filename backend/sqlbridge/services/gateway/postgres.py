"""
PostgresAdapter: 네트워크 DB (카탈로그 조인 기반 스키마 조회)
"""
import logging
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
      t.table_name,
      c.column_name,
      c.data_type,
      c.is_nullable,
      c.column_default,
      tc.constraint_type
    FROM information_schema.tables t
    LEFT JOIN information_schema.columns c
      ON t.table_name = c.table_name AND t.table_schema = c.table_schema
    LEFT JOIN information_schema.key_column_usage kcu
      ON c.table_name = kcu.table_name
     AND c.column_name = kcu.column_name
     AND c.table_schema = kcu.table_schema
    LEFT JOIN information_schema.table_constraints tc
      ON kcu.constraint_name = tc.constraint_name
     AND kcu.table_schema = tc.table_schema
    WHERE t.table_schema = 'public'
      AND t.table_type = 'BASE TABLE'
    ORDER BY t.table_name, c.ordinal_position
"""

_STATISTICS_SQL = """
    SELECT
      schemaname AS schema_name,
      tablename AS table_name,
      tableowner AS table_owner
    FROM pg_tables
    WHERE schemaname NOT IN ('pg_catalog', 'information_schema')
    ORDER BY schemaname, tablename
"""


def resolve_sslmode(config) -> str:
    """libpq sslmode 결정. 인증서 검증을 끈 경우 verify-* 는 require로 낮춤."""
    if not config.ssl_enabled:
        return "disable"
    mode = config.ssl_mode or "prefer"
    if not config.ssl_reject_unauthorized and mode in ("verify-ca", "verify-full"):
        return "require"
    return mode


class PostgresAdapter(BaseEngineAdapter):
    engine_type = EngineType.POSTGRES

    def connect_args(self, config, tls_files: Dict[str, str]) -> dict:
        args = {
            "connect_timeout": self.connect_timeout,
            "sslmode": resolve_sslmode(config),
        }
        if "ssl_ca_cert" in tls_files:
            args["sslrootcert"] = tls_files["ssl_ca_cert"]
        if "ssl_client_cert" in tls_files:
            args["sslcert"] = tls_files["ssl_client_cert"]
        if "ssl_client_key" in tls_files:
            args["sslkey"] = tls_files["ssl_client_key"]
        if self.query_timeout:
            # 서버가 문장을 취소하고 트랜잭션을 중단시킴
            args["options"] = f"-c statement_timeout={int(self.query_timeout * 1000)}"
        return args

    def _build_engine(self, config, tls_files: Dict[str, str]) -> Engine:
        url = URL.create(
            "postgresql+psycopg2",
            username=config.username,
            password=config.password or None,
            host=config.host,
            port=config.port,
            database=config.database,
        )
        return create_engine(url, poolclass=NullPool, connect_args=self.connect_args(config, tls_files))

    def _introspect(self, conn, config) -> NormalizedSchema:
        rows = conn.execute(text(_SCHEMA_SQL)).mappings().all()
        return {
            "database_type": self.engine_type.value,
            "database_name": config.database,
            "tables": normalize_postgres_rows(rows),
        }

    def statistics_query(self) -> str:
        return _STATISTICS_SQL


def normalize_postgres_rows(rows) -> dict:
    """
    카탈로그 조인 결과 → {table: {columns: [...]}}
    한 컬럼에 제약이 여러 개면 조인 결과가 중복되므로 합쳐서 하나로 만든다.
    """
    tables: dict = {}
    index: dict = {}
    for row in rows:
        table = tables.setdefault(row["table_name"], {"columns": []})
        if row["column_name"] is None:
            continue
        key = (row["table_name"], row["column_name"])
        constraint = row["constraint_type"]
        existing = index.get(key)
        if existing is None:
            column = make_column(
                name=row["column_name"],
                col_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
                constraint=constraint,
            )
            index[key] = column
            table["columns"].append(column)
        elif constraint and not existing["primary_key"] and (
            constraint == "PRIMARY KEY" or existing["constraint"] is None
        ):
            existing.update(make_column(
                name=existing["name"],
                col_type=existing["type"],
                nullable=existing["nullable"],
                default=existing["default"],
                constraint=constraint,
            ))
    return tables
