"""DB 연결 관련 스키마"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from sqlbridge.services.gateway.base import EngineType

SslMode = Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]

DEFAULT_PORTS = {EngineType.POSTGRES: 5432, EngineType.MYSQL: 3306}
NETWORK_FIELDS = ("host", "port", "database", "username")


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


class DBConnectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="연결 이름")
    type: str = Field(..., description="DB 종류 (postgres | mysql | sqlite)")
    host: Optional[str] = Field(default=None, max_length=255)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = Field(default=None, max_length=255, description="데이터베이스명")
    username: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)
    file_path: Optional[str] = Field(default=None, max_length=1024, description="SQLite 파일 경로")

    ssl_enabled: bool = False
    ssl_mode: SslMode = "prefer"
    ssl_reject_unauthorized: bool = True
    ssl_ca_cert: Optional[str] = None
    ssl_client_cert: Optional[str] = None
    ssl_client_key: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("연결 이름을 입력해주세요.")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return EngineType.parse(v).value

    @field_validator("host", "database", "username", "file_path", mode="before")
    @classmethod
    def blank_strings_are_absent(cls, v):
        return _blank_to_none(v)

    @model_validator(mode="after")
    def check_engine_fields(self):
        """네트워크 DB는 host/database/username, 파일 DB는 file_path만 사용"""
        engine = EngineType(self.type)
        if engine.is_file_based:
            if not self.file_path:
                raise ValueError("SQLite 연결에는 file_path가 필요합니다.")
            provided = [f for f in NETWORK_FIELDS if getattr(self, f) is not None]
            if provided:
                raise ValueError(f"SQLite 연결에는 {', '.join(provided)}을(를) 지정할 수 없습니다.")
        else:
            missing = [f for f in ("host", "database", "username") if not getattr(self, f)]
            if missing:
                raise ValueError(f"{engine.value} 연결에 필요한 값이 없습니다: {', '.join(missing)}")
            if self.file_path is not None:
                raise ValueError(f"{engine.value} 연결에는 file_path를 지정할 수 없습니다.")
            if self.port is None:
                self.port = DEFAULT_PORTS[engine]
        return self


class DBConnectionUpdate(BaseModel):
    """
    부분 업데이트. 요청에 포함된 필드만 변경합니다 (model_fields_set 기준).
    비밀 필드(password, ssl_*_cert, ssl_client_key)에 null을 보내면 저장된 값을 지웁니다.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    host: Optional[str] = Field(default=None, min_length=1, max_length=255)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = Field(default=None, min_length=1, max_length=255)
    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)
    file_path: Optional[str] = Field(default=None, min_length=1, max_length=1024)

    ssl_enabled: Optional[bool] = None
    ssl_mode: Optional[SslMode] = None
    ssl_reject_unauthorized: Optional[bool] = None
    ssl_ca_cert: Optional[str] = None
    ssl_client_cert: Optional[str] = None
    ssl_client_key: Optional[str] = None

    @field_validator(
        "name", "host", "port", "database", "username", "file_path",
        "ssl_enabled", "ssl_mode", "ssl_reject_unauthorized",
    )
    @classmethod
    def reject_explicit_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name}은(는) null로 변경할 수 없습니다.")
        return v

    def present_fields(self) -> dict:
        """요청에 실제로 포함된 필드만 반환"""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def touches_connection(self) -> bool:
        """접속 정보가 바뀌어 재테스트가 필요한지 여부"""
        return bool(self.model_fields_set - {"name"})


class DBConnectionResponse(BaseModel):
    """비밀 필드를 전혀 포함하지 않는 응답 (암호문도 제외)"""
    id: int
    user_id: int
    name: str
    type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    file_path: Optional[str] = None
    ssl_enabled: bool = False
    ssl_mode: Optional[str] = None
    ssl_reject_unauthorized: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DBConnectionListResponse(BaseModel):
    connections: List[DBConnectionResponse]


class ConnectionConfig(BaseModel):
    """
    게이트웨이에 넘기는 복호화된 연결 정보 (메모리 내에서만 존재).
    비밀 필드는 repr에 노출하지 않습니다.
    """
    id: Optional[int] = None
    user_id: Optional[int] = None
    name: str = ""
    type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    file_path: Optional[str] = None

    ssl_enabled: bool = False
    ssl_mode: str = "prefer"
    ssl_reject_unauthorized: bool = True
    ssl_ca_cert: Optional[str] = Field(default=None, repr=False)
    ssl_client_cert: Optional[str] = Field(default=None, repr=False)
    ssl_client_key: Optional[str] = Field(default=None, repr=False)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def merged_with(self, updates: DBConnectionUpdate) -> "ConnectionConfig":
        """업데이트 적용 후의 설정 (재테스트용, 저장하지 않음)"""
        return self.model_copy(update=updates.present_fields())
