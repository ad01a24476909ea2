"""
자연어 질의 API
- 질문 → 스키마 조회 → SQL 생성 → (선택) 실행 → 결과 설명
- /analyze: 실행 결과 요약 + 차트 추천
- 모든 시도는 성공/실패와 관계없이 쿼리 히스토리에 백그라운드로 기록
- 히스토리 조회/삭제, 결과 내보내기 (csv | xlsx | pdf)
"""
import asyncio
import logging
import time
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.api.audit_route import AuditedRoute, audited
from sqlbridge.api.deps import get_current_user, load_connection_config
from sqlbridge.core.config import settings
from sqlbridge.core.errors import ExecutionError, SQLBridgeError
from sqlbridge.crud import query_history as crud_history
from sqlbridge.db.session import AsyncSessionLocal, get_db
from sqlbridge.models.user import User
from sqlbridge.schemas.query import (
    AnalyzeResponse,
    ExecuteRequest,
    ExecuteResponse,
    QueryHistoryCreate,
    QueryHistoryListResponse,
    QueryHistoryResponse,
    QueryRequest,
    QueryResponse,
    QuestionRequest,
)
from sqlbridge.services.background import fire_and_forget
from sqlbridge.services.export_service import EXPORT_FORMATS, render_export
from sqlbridge.services.gateway import get_database_gateway
from sqlbridge.services.sql_generator import SQLGenerationError, get_sql_generator

logger = logging.getLogger(__name__)
router = APIRouter(route_class=AuditedRoute)

HISTORY_NOT_FOUND = "쿼리 히스토리를 찾을 수 없습니다."


def record_history(entry: QueryHistoryCreate) -> None:
    """히스토리 저장은 응답을 기다리게 하지 않음"""
    fire_and_forget(
        crud_history.save_query_history(AsyncSessionLocal, entry),
        name=f"history:{entry.user_id}",
    )


def _elapsed_ms(started: Optional[float]) -> Optional[float]:
    if started is None:
        return None
    return round((time.perf_counter() - started) * 1000, 3)


async def _generate(config, question: str) -> Tuple[dict, str]:
    """(스키마, 생성된 SQL). LLM 실패는 502."""
    schema = await get_database_gateway().get_schema(config)
    try:
        return schema, await get_sql_generator().generate_sql(question, schema, config.type)
    except SQLGenerationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/", response_model=QueryResponse)
async def ask_question(
    request_in: QueryRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    자연어 질문으로 SQL 생성 후 실행 (auto_execute=False면 생성만)
    """
    history = QueryHistoryCreate(
        user_id=current_user.id,
        connection_id=request_in.connection_id,
        question=request_in.question,
    )
    started = None

    try:
        config = await load_connection_config(db, request_in.connection_id, current_user)
        schema, history.generated_sql = await _generate(config, request_in.question)

        result = None
        explanation = None
        if request_in.auto_execute:
            started = time.perf_counter()
            result = await get_database_gateway().execute_query(config, history.generated_sql)
            history.execution_time = _elapsed_ms(started)
            history.result = result.model_dump(mode="json")
            if not result.success:
                raise ExecutionError(f"쿼리 실행 실패: {result.error}")
            history.success = True
            explanation = await get_sql_generator().explain_sql(
                request_in.question, history.generated_sql, schema, result
            )

        return QueryResponse(
            success=True,
            question=request_in.question,
            generated_sql=history.generated_sql,
            result=result,
            auto_executed=request_in.auto_execute,
            explanation=explanation,
        )
    except HTTPException as e:
        history.error_message = e.detail if isinstance(e.detail, str) else str(e.detail)
        raise
    except SQLBridgeError as e:
        history.error_message = str(e)
        raise
    except Exception as e:
        logger.error(f"질의 처리 실패: {type(e).__name__}: {e}")
        history.error_message = str(e)
        raise
    finally:
        if started is not None and history.execution_time is None:
            history.execution_time = _elapsed_ms(started)
        record_history(history)


@router.post("/sql-only", response_model=QueryResponse)
async def generate_sql_only(
    request_in: QuestionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """SQL 생성만 수행 (실행하지 않으므로 히스토리는 success=False)"""
    history = QueryHistoryCreate(
        user_id=current_user.id,
        connection_id=request_in.connection_id,
        question=request_in.question,
    )
    try:
        config = await load_connection_config(db, request_in.connection_id, current_user)
        _, history.generated_sql = await _generate(config, request_in.question)
        return QueryResponse(
            success=True,
            question=request_in.question,
            generated_sql=history.generated_sql,
            auto_executed=False,
        )
    except HTTPException as e:
        history.error_message = e.detail if isinstance(e.detail, str) else str(e.detail)
        raise
    except SQLBridgeError as e:
        history.error_message = str(e)
        raise
    finally:
        record_history(history)


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_question(
    request_in: QuestionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    질문 → SQL 생성 → 실행 → 요약과 차트 추천 (병렬)
    - 요약/차트 실패는 응답을 막지 않음 (기본 문장 / null)
    """
    history = QueryHistoryCreate(
        user_id=current_user.id,
        connection_id=request_in.connection_id,
        question=request_in.question,
    )
    started = None

    try:
        config = await load_connection_config(db, request_in.connection_id, current_user)
        _, history.generated_sql = await _generate(config, request_in.question)

        started = time.perf_counter()
        result = await get_database_gateway().execute_query(config, history.generated_sql)
        history.execution_time = _elapsed_ms(started)
        history.result = result.model_dump(mode="json")
        if not result.success:
            raise ExecutionError(f"쿼리 실행 실패: {result.error}")
        history.success = True

        generator = get_sql_generator()
        summary, chart = await asyncio.gather(
            generator.summarize_results(request_in.question, result),
            generator.generate_chart(request_in.question, result),
        )
        return AnalyzeResponse(
            success=True,
            question=request_in.question,
            generated_sql=history.generated_sql,
            result=result,
            summary=summary,
            chart=chart,
        )
    except HTTPException as e:
        history.error_message = e.detail if isinstance(e.detail, str) else str(e.detail)
        raise
    except SQLBridgeError as e:
        history.error_message = str(e)
        raise
    except Exception as e:
        logger.error(f"분석 처리 실패: {type(e).__name__}: {e}")
        history.error_message = str(e)
        raise
    finally:
        if started is not None and history.execution_time is None:
            history.execution_time = _elapsed_ms(started)
        record_history(history)


@router.post("/execute", response_model=ExecuteResponse)
@audited(
    "execute_query", "connection",
    get_target_id=lambda request, body: body["connection_id"] if body else None,
    get_details=lambda request, body: {"row_count": body["result"]["row_count"]} if body else None,
)
async def execute_sql(
    request_in: ExecuteRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """작성된 SQL을 그대로 실행 (검증하지 않음)"""
    config = await load_connection_config(db, request_in.connection_id, current_user)

    started = time.perf_counter()
    result = await get_database_gateway().execute_query(config, request_in.sql)
    execution_time = _elapsed_ms(started)
    if not result.success:
        raise ExecutionError(f"쿼리 실행 실패: {result.error}")

    return ExecuteResponse(
        connection_id=request_in.connection_id,
        sql=request_in.sql,
        result=result,
        execution_time=execution_time,
    )


@router.get("/history", response_model=QueryHistoryListResponse)
async def list_history(
    limit: int = Query(default=settings.HISTORY_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    history = await crud_history.list_query_history(db, current_user.id, limit=limit, offset=offset)
    return {"history": history}


@router.get("/history/{history_id}", response_model=QueryHistoryResponse)
async def get_history(
    history_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entry = await crud_history.get_query_history(db, history_id, current_user.id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=HISTORY_NOT_FOUND)
    return entry


@router.delete("/history/{history_id}")
async def delete_history(
    history_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await crud_history.delete_query_history(db, history_id, current_user.id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=HISTORY_NOT_FOUND)
    return {"message": "쿼리 히스토리가 삭제되었습니다."}


@router.get("/export/{history_id}/{export_format}")
async def export_result(
    history_id: int,
    export_format: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    저장된 쿼리 결과 내보내기
    - 결과가 없는 히스토리는 404
    """
    entry = await crud_history.get_query_history(db, history_id, current_user.id)
    if entry is None or not entry.result or entry.result.get("data") is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="내보낼 쿼리 결과가 없습니다.")

    fmt = export_format.lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"지원하지 않는 형식입니다: {export_format} (csv, xlsx, pdf 중 선택)",
        )

    media_type, extension = EXPORT_FORMATS[fmt]
    content = render_export(
        fmt,
        entry.result["data"],
        entry.result.get("columns") or [],
        title=entry.question,
        sheet_name=f"Query {history_id}",
    )
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="query_result_{history_id}.{extension}"'},
    )
