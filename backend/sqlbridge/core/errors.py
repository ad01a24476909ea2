"""
도메인 예외 및 게이트웨이 오류 코드
- 각 예외는 HTTP 상태 코드를 가지며 main.py의 핸들러가 응답으로 변환합니다.
- 게이트웨이 작업은 예외 대신 오류 코드를 담은 결과 객체를 반환합니다.
"""
from enum import Enum


class SQLBridgeError(Exception):
    """모든 도메인 예외의 기반 클래스"""

    status_code: int = 500


class NotFoundError(SQLBridgeError):
    """리소스를 찾을 수 없음 (소유자 범위 내)"""

    status_code = 404


class NotFoundOrUnauthorizedError(NotFoundError):
    """존재하지 않거나 요청 사용자의 소유가 아님 (두 경우를 구분하지 않음)"""


class NoFieldsToUpdateError(SQLBridgeError):
    """업데이트할 필드가 없음"""

    status_code = 400


class ConnectionTestFailedError(SQLBridgeError):
    """대상 DB에 접속할 수 없거나 자격 증명이 거부됨"""

    status_code = 400


class ExecutionError(SQLBridgeError):
    """제출된 SQL이 대상 DB에서 실패함 (드라이버 메시지 그대로 보존)"""

    status_code = 400


class DecryptionError(SQLBridgeError):
    """암호문이 손상되었거나 다른 키로 암호화됨"""


class UnsupportedEngineError(SQLBridgeError, ValueError):
    """지원하지 않는 DB 엔진 종류 (요청 검증 단계에서는 ValueError로 취급)"""

    status_code = 400

    def __init__(self, engine_type):
        self.engine_type = engine_type
        super().__init__(f"Unsupported database type: {engine_type}")


class GatewayErrorCode(str, Enum):
    """게이트웨이 결과에 담기는 오류 분류 (엔진 종류와 무관하게 동일)"""

    CONNECTION_REFUSED = "connection_refused"
    AUTHENTICATION_FAILED = "authentication_failed"
    TIMEOUT = "timeout"
    UNSUPPORTED_ENGINE = "unsupported_engine"
    EXECUTION_ERROR = "execution_error"
    CONNECTION_FAILED = "connection_failed"
