"""쿼리 실행/히스토리 관련 스키마"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from sqlbridge.services.gateway.base import QueryResult


class QuestionRequest(BaseModel):
    connection_id: int = Field(..., ge=1)
    question: str = Field(..., min_length=1, max_length=4000, description="자연어 질문")

    @field_validator("question")
    @classmethod
    def strip_question(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("질문을 입력해주세요.")
        return v


class QueryRequest(QuestionRequest):
    auto_execute: bool = Field(default=True, description="생성된 SQL을 바로 실행할지 여부")


class ExecuteRequest(BaseModel):
    connection_id: int = Field(..., ge=1)
    sql: str = Field(..., min_length=1, max_length=100_000, description="그대로 실행할 SQL")


class QueryResponse(BaseModel):
    success: bool
    question: str
    generated_sql: str
    result: Optional[QueryResult] = None
    auto_executed: bool
    explanation: Optional[str] = None


class ChartSpec(BaseModel):
    """차트 추천 (컬럼 → 축/라벨 매핑)"""
    type: str
    title: str = ""
    mapping: Dict[str, str] = Field(default_factory=dict)


class AnalyzeResponse(BaseModel):
    success: bool
    question: str
    generated_sql: str
    result: QueryResult
    summary: str
    chart: Optional[ChartSpec] = None


class ExecuteResponse(BaseModel):
    connection_id: int
    sql: str
    result: QueryResult
    execution_time: float


class QueryHistoryCreate(BaseModel):
    """히스토리 저장용 (내부)"""
    user_id: int
    connection_id: Optional[int] = None
    question: str
    generated_sql: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    execution_time: Optional[float] = None
    success: bool = False
    error_message: Optional[str] = None


class QueryHistoryResponse(BaseModel):
    id: int
    connection_id: Optional[int] = None
    question: str
    generated_sql: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    execution_time: Optional[float] = None
    success: bool
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueryHistoryListResponse(BaseModel):
    history: List[QueryHistoryResponse]
