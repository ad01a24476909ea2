"""
DB 게이트웨이 테스트
- 엔진 선택, 연결 테스트, 쿼리 실행, 스키마 정규화
- SQLite는 실제 파일, postgres/mysql은 엔진 생성을 대체하거나 순수 함수로 검증
"""
import os
import sqlite3
import time
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from sqlbridge.core.errors import GatewayErrorCode, UnsupportedEngineError
from sqlbridge.schemas.db_connection import ConnectionConfig
from sqlbridge.services.gateway import DatabaseGateway, EngineType, get_engine_adapter
from sqlbridge.services.gateway.base import (
    classify_connect_error,
    classify_execution_error,
    make_column,
    unique_columns,
)
from sqlbridge.services.gateway.mysql import MySQLAdapter, normalize_mysql_rows
from sqlbridge.services.gateway.postgres import PostgresAdapter, normalize_postgres_rows, resolve_sslmode
from sqlbridge.services.gateway.sqlite import SQLiteAdapter, normalize_pragma_rows


def _sqlite_config(path) -> ConnectionConfig:
    return ConnectionConfig(type="sqlite", file_path=str(path))


def _in_memory_engine(self, config, tls_files):
    return create_engine("sqlite://", poolclass=NullPool)


class TestEngineType:
    """엔진 태그 파싱"""

    def test_parse_known_tags(self):
        """지원 태그 (대소문자/공백 무시)"""
        assert EngineType.parse("postgres") is EngineType.POSTGRES
        assert EngineType.parse(" MySQL ") is EngineType.MYSQL
        assert EngineType.parse("sqlite") is EngineType.SQLITE

    def test_parse_unknown_tag(self):
        """지원하지 않는 태그는 UnsupportedEngineError"""
        with pytest.raises(UnsupportedEngineError) as exc_info:
            EngineType.parse("oracle")
        assert "Unsupported database type: oracle" in str(exc_info.value)

    def test_only_sqlite_is_file_based(self):
        assert EngineType.SQLITE.is_file_based
        assert not EngineType.POSTGRES.is_file_based
        assert not EngineType.MYSQL.is_file_based

    def test_get_engine_adapter(self):
        """태그별 어댑터 선택"""
        assert isinstance(get_engine_adapter("postgres"), PostgresAdapter)
        assert isinstance(get_engine_adapter("mysql"), MySQLAdapter)
        assert isinstance(get_engine_adapter("sqlite"), SQLiteAdapter)
        with pytest.raises(UnsupportedEngineError):
            get_engine_adapter("mssql")


class TestSQLiteGateway:
    """SQLite 파일 대상 게이트웨이"""

    @pytest.mark.asyncio
    async def test_connection_success(self, sample_sqlite_db):
        result = await DatabaseGateway().test_connection(_sqlite_config(sample_sqlite_db))
        assert result.success is True
        assert result.error is None

    @pytest.mark.asyncio
    async def test_missing_file_is_not_created(self, tmp_path):
        """없는 파일은 실패하고 새로 만들어지지 않음"""
        missing = tmp_path / "missing.db"
        result = await DatabaseGateway().test_connection(_sqlite_config(missing))

        assert result.success is False
        assert result.error
        assert result.error_code == GatewayErrorCode.CONNECTION_FAILED
        assert not missing.exists()

    @pytest.mark.asyncio
    async def test_select_preserves_column_order(self, sample_sqlite_db):
        """결과 컬럼은 SELECT 목록 순서 그대로"""
        result = await DatabaseGateway().execute_query(
            _sqlite_config(sample_sqlite_db),
            "SELECT name, id, email FROM customers ORDER BY id",
        )
        assert result.success is True
        assert result.columns == ["name", "id", "email"]
        assert result.row_count == 3
        assert result.data[0] == {"name": "Kim", "id": 1, "email": "kim@example.com"}
        assert result.data[2]["email"] is None

    @pytest.mark.asyncio
    async def test_dml_is_committed(self, sample_sqlite_db):
        """행을 반환하지 않는 문장은 영향받은 행 수를 반환하고 커밋됨"""
        gateway = DatabaseGateway()
        config = _sqlite_config(sample_sqlite_db)

        update = await gateway.execute_query(config, "UPDATE customers SET tier = 'gold' WHERE id IN (1, 2)")
        assert update.success is True
        assert update.row_count == 2
        assert update.data == []

        check = await gateway.execute_query(config, "SELECT COUNT(*) AS n FROM customers WHERE tier = 'gold'")
        assert check.data == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_execution_error(self, sample_sqlite_db):
        """문법 오류는 예외 대신 실패 결과 (드라이버 메시지 포함)"""
        result = await DatabaseGateway().execute_query(
            _sqlite_config(sample_sqlite_db), "SELEC * FROM customers"
        )
        assert result.success is False
        assert result.error_code == GatewayErrorCode.EXECUTION_ERROR
        assert "syntax error" in result.error

    @pytest.mark.asyncio
    async def test_bytes_values_are_hex_encoded(self, sample_sqlite_db):
        result = await DatabaseGateway().execute_query(
            _sqlite_config(sample_sqlite_db), "SELECT X'CAFE' AS blob_value"
        )
        assert result.success is True
        assert result.data == [{"blob_value": "cafe"}]

    @pytest.mark.asyncio
    async def test_schema(self, sample_sqlite_db):
        """PRAGMA 기반 정규화된 스키마"""
        schema = await DatabaseGateway().get_schema(_sqlite_config(sample_sqlite_db))

        assert schema["database_type"] == "sqlite"
        assert "error" not in schema
        assert set(schema["tables"]) == {"customers", "orders"}

        columns = {c["name"]: c for c in schema["tables"]["customers"]["columns"]}
        assert [c["name"] for c in schema["tables"]["customers"]["columns"]] == ["id", "name", "email", "tier"]
        assert columns["id"]["primary_key"] is True
        assert columns["id"]["constraint"] == "PRIMARY KEY"
        assert columns["id"]["key"] == "PRI"
        assert columns["name"]["nullable"] is False
        assert columns["name"]["primary_key"] is False
        assert columns["tier"]["default"] == "'basic'"

    @pytest.mark.asyncio
    async def test_schema_degrades_on_failure(self, tmp_path):
        """스키마 조회 실패 시 빈 tables + error"""
        schema = await DatabaseGateway().get_schema(_sqlite_config(tmp_path / "nope.db"))
        assert schema["tables"] == {}
        assert schema["database_type"] == "sqlite"
        assert schema["error"]

    @pytest.mark.asyncio
    async def test_statistics(self, sample_sqlite_db):
        result = await DatabaseGateway().get_statistics(_sqlite_config(sample_sqlite_db))
        assert result.success is True
        assert [row["table_name"] for row in result.data] == ["customers", "orders"]

    @pytest.mark.asyncio
    async def test_unsupported_engine(self):
        """목록 밖의 엔진은 unsupported_engine 결과"""
        gateway = DatabaseGateway()
        config = ConnectionConfig(type="oracle", host="db", database="x", username="u")

        test_result = await gateway.test_connection(config)
        assert test_result.success is False
        assert test_result.error_code == GatewayErrorCode.UNSUPPORTED_ENGINE
        assert "Unsupported database type" in test_result.error

        query_result = await gateway.execute_query(config, "SELECT 1")
        assert query_result.error_code == GatewayErrorCode.UNSUPPORTED_ENGINE

        schema = await gateway.get_schema(config)
        assert schema["tables"] == {}
        assert "Unsupported database type" in schema["error"]

    @pytest.mark.asyncio
    async def test_timeout(self, sample_sqlite_db):
        """어댑터가 응답하지 않아도 전체 대기 시간 (query + connect) 이 지나면 timeout 결과"""
        def slow_test(self, config):
            time.sleep(0.5)

        gateway = DatabaseGateway(connect_timeout=0.05, query_timeout=0.05)
        with patch.object(SQLiteAdapter, "test_connection", slow_test):
            result = await gateway.test_connection(_sqlite_config(sample_sqlite_db))

        assert result.success is False
        assert result.error_code == GatewayErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_long_running_write_is_interrupted_and_rolled_back(self, sample_sqlite_db):
        """시간 제한을 넘긴 문장은 엔진 쪽에서 중단되고 아무것도 커밋되지 않음"""
        conn = sqlite3.connect(sample_sqlite_db)
        conn.execute("CREATE TABLE numbers (x INTEGER)")
        conn.commit()
        conn.close()

        gateway = DatabaseGateway(query_timeout=0.05)
        result = await gateway.execute_query(
            _sqlite_config(sample_sqlite_db),
            "INSERT INTO numbers WITH RECURSIVE c(x) AS "
            "(SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 50000000) SELECT x FROM c",
        )

        assert result.success is False
        assert result.error_code == GatewayErrorCode.TIMEOUT

        conn = sqlite3.connect(sample_sqlite_db)
        try:
            assert conn.execute("SELECT COUNT(*) FROM numbers").fetchone()[0] == 0
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_sql_text_is_sent_verbatim(self, sample_sqlite_db):
        """콜론/퍼센트가 들어간 문자열 리터럴은 바인드 파라미터로 해석되지 않음"""
        result = await DatabaseGateway().execute_query(
            _sqlite_config(sample_sqlite_db),
            "SELECT ':admin' AS v, '100%' AS pct, name FROM customers WHERE name LIKE 'K%'",
        )
        assert result.success is True, result.error
        assert result.data == [{"v": ":admin", "pct": "100%", "name": "Kim"}]

    @pytest.mark.asyncio
    async def test_duplicate_column_names_are_kept(self, sample_sqlite_db):
        """같은 이름의 컬럼이 여럿이면 뒤의 컬럼에 번호를 붙여 값이 사라지지 않음"""
        result = await DatabaseGateway().execute_query(
            _sqlite_config(sample_sqlite_db),
            "SELECT c.id, o.id, o.amount FROM customers c JOIN orders o ON o.customer_id = c.id "
            "WHERE c.id = 2",
        )
        assert result.success is True
        assert result.columns == ["id", "id_2", "amount"]
        assert result.data == [{"id": 2, "id_2": 3, "amount": 7.25}]

    @pytest.mark.asyncio
    async def test_non_database_file_fails_connection_test(self, tmp_path):
        """SQLite 파일이 아니면 연결 테스트 실패"""
        not_a_db = tmp_path / "notes.txt"
        not_a_db.write_text("this is not a sqlite database, just some plain text notes\n" * 20)

        result = await DatabaseGateway().test_connection(_sqlite_config(not_a_db))

        assert result.success is False
        assert "not a database" in result.error


class TestNetworkAdapters:
    """postgres / mysql 어댑터"""

    def test_postgres_select_one(self):
        """엔진 생성만 대체하면 같은 SELECT 1 경로를 탐"""
        config = ConnectionConfig(type="postgres", host="db", port=5432, database="app", username="u")
        with patch.object(PostgresAdapter, "_build_engine", _in_memory_engine):
            assert PostgresAdapter().test_connection(config).success is True

    def test_mysql_execute(self):
        config = ConnectionConfig(type="mysql", host="db", port=3306, database="app", username="u")
        with patch.object(MySQLAdapter, "_build_engine", _in_memory_engine):
            result = MySQLAdapter().execute_query(config, "SELECT 1 AS one, 2 AS two")
        assert result.success is True
        assert result.columns == ["one", "two"]
        assert result.data == [{"one": 1, "two": 2}]

    @pytest.mark.parametrize(
        "adapter_cls,config",
        [
            (PostgresAdapter, ConnectionConfig(type="postgres", host="db", database="app", username="u")),
            (MySQLAdapter, ConnectionConfig(type="mysql", host="db", database="app", username="u")),
            (SQLiteAdapter, ConnectionConfig(type="sqlite", file_path="/tmp/unused.db")),
        ],
    )
    def test_select_one_on_every_engine(self, adapter_cls, config):
        """어떤 엔진이든 SELECT 1 결과 모양은 같음"""
        with patch.object(adapter_cls, "_build_engine", _in_memory_engine):
            result = adapter_cls().execute_query(config, "SELECT 1")
        assert result.success is True
        assert result.row_count == 1
        assert len(result.columns) == 1

    def test_postgres_connection_refused(self):
        """닫힌 포트는 connection_refused"""
        config = ConnectionConfig(
            type="postgres", host="127.0.0.1", port=1, database="app", username="u", password="p"
        )
        result = PostgresAdapter(connect_timeout=2).test_connection(config)
        assert result.success is False
        assert result.error_code == GatewayErrorCode.CONNECTION_REFUSED

    def test_mysql_connection_refused(self):
        config = ConnectionConfig(
            type="mysql", host="127.0.0.1", port=1, database="app", username="u", password="p"
        )
        result = MySQLAdapter(connect_timeout=2).test_connection(config)
        assert result.success is False
        assert result.error_code == GatewayErrorCode.CONNECTION_REFUSED

    def test_postgres_connect_args(self):
        adapter = PostgresAdapter(connect_timeout=7)
        config = ConnectionConfig(
            type="postgres", host="db", database="app", username="u",
            ssl_enabled=True, ssl_mode="verify-full",
        )
        args = adapter.connect_args(config, {"ssl_ca_cert": "/tmp/ca.pem", "ssl_client_key": "/tmp/key.pem"})
        assert args == {
            "connect_timeout": 7,
            "sslmode": "verify-full",
            "sslrootcert": "/tmp/ca.pem",
            "sslkey": "/tmp/key.pem",
        }

    def test_postgres_statement_timeout(self):
        """문장 시간 제한은 서버 옵션으로 전달 (밀리초)"""
        adapter = PostgresAdapter(connect_timeout=7, query_timeout=2.5)
        config = ConnectionConfig(type="postgres", host="db", database="app", username="u")
        assert adapter.connect_args(config, {})["options"] == "-c statement_timeout=2500"
        assert "options" not in PostgresAdapter(connect_timeout=7).connect_args(config, {})

    def test_resolve_sslmode(self):
        base = dict(type="postgres", host="db", database="app", username="u")
        assert resolve_sslmode(ConnectionConfig(**base)) == "disable"
        assert resolve_sslmode(ConnectionConfig(**base, ssl_enabled=True, ssl_mode="require")) == "require"
        assert resolve_sslmode(ConnectionConfig(
            **base, ssl_enabled=True, ssl_mode="verify-ca", ssl_reject_unauthorized=False
        )) == "require"

    def test_mysql_connect_args(self):
        adapter = MySQLAdapter(connect_timeout=5)
        base = dict(type="mysql", host="db", database="app", username="u")

        assert adapter.connect_args(ConnectionConfig(**base), {}) == {"connect_timeout": 5, "ssl_disabled": True}

        args = adapter.connect_args(
            ConnectionConfig(**base, ssl_enabled=True, ssl_mode="verify-full"),
            {"ssl_ca_cert": "/tmp/ca.pem"},
        )
        assert args["ssl"] == {"verify_mode": True, "check_hostname": True, "ca": "/tmp/ca.pem"}

        args = adapter.connect_args(
            ConnectionConfig(**base, ssl_enabled=True, ssl_reject_unauthorized=False), {}
        )
        assert args["ssl"] == {"verify_mode": False, "check_hostname": False}

    def test_mysql_statement_timeout(self):
        adapter = MySQLAdapter(connect_timeout=5, query_timeout=2.5)
        args = adapter.connect_args(ConnectionConfig(type="mysql", host="db", database="app", username="u"), {})
        assert args["read_timeout"] == 3
        assert args["write_timeout"] == 3

    def test_gateway_passes_query_timeout_to_adapter(self):
        adapter = DatabaseGateway(connect_timeout=4, query_timeout=9)._adapter(
            ConnectionConfig(type="postgres", host="db", database="app", username="u")
        )
        assert adapter.connect_timeout == 4
        assert adapter.query_timeout == 9

    def test_tls_files_removed_after_operation(self):
        """PEM 임시 파일은 작업이 끝나면 삭제됨"""
        seen = {}

        def capture(self, config, tls_files):
            seen.update(tls_files)
            for path in tls_files.values():
                assert os.path.exists(path)
            return create_engine("sqlite://", poolclass=NullPool)

        config = ConnectionConfig(
            type="postgres", host="db", database="app", username="u",
            ssl_enabled=True, ssl_ca_cert="-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----\n",
        )
        with patch.object(PostgresAdapter, "_build_engine", capture):
            assert PostgresAdapter().test_connection(config).success is True

        assert set(seen) == {"ssl_ca_cert"}
        assert not os.path.exists(seen["ssl_ca_cert"])


class TestSchemaNormalization:
    """엔진별 카탈로그 결과 → 같은 컬럼 모양"""

    def test_make_column_fills_all_flag_slots(self):
        pk = make_column("id", "integer", False, None, constraint="PRIMARY KEY")
        assert (pk["constraint"], pk["key"], pk["primary_key"]) == ("PRIMARY KEY", "PRI", True)

        unique = make_column("email", "varchar", True, None, key="UNI")
        assert (unique["constraint"], unique["key"], unique["primary_key"]) == ("UNIQUE", "UNI", False)

        plain = make_column("note", "text", True, 0)
        assert (plain["constraint"], plain["key"], plain["primary_key"]) == (None, None, False)
        assert plain["default"] == "0"

    def test_postgres_rows_merge_duplicate_constraints(self):
        """같은 컬럼에 제약이 여러 개면 하나로 합치고 PRIMARY KEY 우선"""
        rows = [
            {"table_name": "users", "column_name": "id", "data_type": "integer", "is_nullable": "NO",
             "column_default": "nextval('users_id_seq'::regclass)", "constraint_type": "FOREIGN KEY"},
            {"table_name": "users", "column_name": "id", "data_type": "integer", "is_nullable": "NO",
             "column_default": "nextval('users_id_seq'::regclass)", "constraint_type": "PRIMARY KEY"},
            {"table_name": "users", "column_name": "email", "data_type": "text", "is_nullable": "YES",
             "column_default": None, "constraint_type": "UNIQUE"},
            {"table_name": "empty", "column_name": None, "data_type": None, "is_nullable": None,
             "column_default": None, "constraint_type": None},
        ]
        tables = normalize_postgres_rows(rows)

        assert tables["empty"] == {"columns": []}
        columns = tables["users"]["columns"]
        assert [c["name"] for c in columns] == ["id", "email"]
        assert columns[0]["primary_key"] is True
        assert columns[0]["key"] == "PRI"
        assert columns[1]["constraint"] == "UNIQUE"
        assert columns[1]["nullable"] is True

    def test_mysql_rows(self):
        rows = [
            {"TABLE_NAME": "orders", "COLUMN_NAME": "id", "DATA_TYPE": "int", "IS_NULLABLE": "NO",
             "COLUMN_DEFAULT": None, "COLUMN_KEY": "PRI"},
            {"TABLE_NAME": "orders", "COLUMN_NAME": "customer_id", "DATA_TYPE": "int", "IS_NULLABLE": "NO",
             "COLUMN_DEFAULT": None, "COLUMN_KEY": "MUL"},
            {"TABLE_NAME": "orders", "COLUMN_NAME": "memo", "DATA_TYPE": "varchar", "IS_NULLABLE": "YES",
             "COLUMN_DEFAULT": None, "COLUMN_KEY": ""},
        ]
        columns = normalize_mysql_rows(rows)["orders"]["columns"]
        assert columns[0]["primary_key"] is True
        assert columns[0]["constraint"] == "PRIMARY KEY"
        assert columns[1]["key"] == "MUL"
        assert columns[1]["primary_key"] is False
        assert columns[2]["key"] is None

    def test_pragma_composite_primary_key(self):
        """복합 기본키는 pk 순번이 1 이상인 모든 컬럼"""
        rows = [
            {"name": "order_id", "type": "INTEGER", "notnull": 1, "dflt_value": None, "pk": 1},
            {"name": "line_no", "type": "INTEGER", "notnull": 1, "dflt_value": None, "pk": 2},
            {"name": "sku", "type": "TEXT", "notnull": 0, "dflt_value": None, "pk": 0},
        ]
        columns = normalize_pragma_rows(rows)
        assert [c["primary_key"] for c in columns] == [True, True, False]
        assert columns[2]["nullable"] is True


class TestErrorClassification:
    """접속 오류 분류"""

    @pytest.mark.parametrize("message,expected", [
        ("connection to server failed: Connection refused", GatewayErrorCode.CONNECTION_REFUSED),
        ("(2003, \"Can't connect to MySQL server on 'db'\")", GatewayErrorCode.CONNECTION_REFUSED),
        ("password authentication failed for user \"u\"", GatewayErrorCode.AUTHENTICATION_FAILED),
        ("(1045, \"Access denied for user 'u'@'host'\")", GatewayErrorCode.AUTHENTICATION_FAILED),
        ("timeout expired", GatewayErrorCode.TIMEOUT),
        ("unable to open database file", GatewayErrorCode.CONNECTION_FAILED),
    ])
    def test_classify(self, message, expected):
        assert classify_connect_error(Exception(message)) == expected

    @pytest.mark.parametrize("message,expected", [
        ("canceling statement due to statement timeout", GatewayErrorCode.TIMEOUT),
        ("interrupted", GatewayErrorCode.TIMEOUT),
        ("(2013, 'Lost connection to MySQL server during query (timed out)')", GatewayErrorCode.TIMEOUT),
        ("no such table: missing", GatewayErrorCode.EXECUTION_ERROR),
    ])
    def test_classify_execution(self, message, expected):
        assert classify_execution_error(Exception(message)) == expected

    def test_unique_columns(self):
        assert unique_columns(["id", "name", "id", "id", "id_2"]) == ["id", "name", "id_2", "id_3", "id_2_2"]
