"""
자연어 → SQL 생성 서비스
- 정규화된 스키마와 엔진 종류를 프롬프트로 넘겨 LLM이 SQL을 작성
- 생성된 SQL은 검증하지 않음 (실행 여부는 호출자가 결정)
- 실행 결과 설명 / 요약 / 차트 추천 (실패해도 예외 없이 기본값)
"""
import asyncio
import json
import logging
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from tabulate import tabulate

from sqlbridge.core.config import settings

logger = logging.getLogger(__name__)

_DIALECT_NAMES = {
    "postgres": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite",
}

_SQL_PROMPT = ChatPromptTemplate.from_template(
    "You are a SQL expert. Given the {dialect} database schema below (JSON), write one SQL query "
    "that answers the user's question. Use only tables and columns that exist in the schema. "
    "Return ONLY the SQL query, no explanation.\n\n"
    "[Database Schema]\n{schema}\n\n"
    "[User Question]\n{question}\n\n"
    "SQL Query:"
)

_EXPLAIN_PROMPT = ChatPromptTemplate.from_template(
    "Explain the following SQL query and its result to a non-technical user.\n\n"
    "[User Question]\n{question}\n\n"
    "[SQL Query]\n{sql}\n\n"
    "[Database Schema]\n{schema}\n\n"
    "[Query Result] total rows: {row_count}\n{sample}\n\n"
    "Structure the answer as: 1) a direct answer to the question with the key findings "
    "(if there are no rows, say so and what it means), 2) the business context of the request, "
    "3) one short actionable insight. Answer in the same language as the user's question."
)

_SUMMARY_PROMPT = ChatPromptTemplate.from_template(
    "You are a data analyst. Summarize the query result below for a non-technical audience.\n\n"
    "[User Question]\n{question}\n\n"
    "[Query Result] total rows: {row_count}\n{sample}\n\n"
    "Start with a direct answer, then highlight key figures or trends. Keep it brief. "
    "Answer in the same language as the user's question.\n\n"
    "Summary:"
)

_CHART_PROMPT = ChatPromptTemplate.from_template(
    "Suggest the most appropriate chart for the query result below.\n\n"
    "[User Question]\n{question}\n\n"
    "[Columns]\n{columns}\n\n"
    "[Data Preview]\n{sample}\n\n"
    "Choose type from: bar, line, pie, scatter, table. Return ONLY a JSON object with "
    "\"type\", \"title\" and \"mapping\" (which columns map to x, y, label, value). "
    "Example: {{\"type\": \"bar\", \"title\": \"Sales by Product\", "
    "\"mapping\": {{\"x\": \"product_name\", \"y\": \"total_sales\"}}}}\n"
    "If no chart is suitable, return null.\n\n"
    "JSON:"
)

CHART_TYPES = ("bar", "line", "pie", "scatter", "table")
EXPLAIN_SAMPLE_ROWS = 5
CHART_SAMPLE_ROWS = 3
NO_DATA_SUMMARY = "요약할 데이터가 없습니다."
SUMMARY_FALLBACK = "결과 요약을 생성하지 못했습니다."


class SQLGenerationError(Exception):
    """LLM 호출 실패 또는 빈 응답"""


def clean_sql(raw: str) -> str:
    """마크다운 코드 펜스 제거"""
    sql = re.sub(r"```(?:sql)?\s*", "", raw, flags=re.IGNORECASE)
    return sql.strip().rstrip("`").strip()


def schema_for_prompt(schema: dict) -> str:
    """프롬프트용 스키마 문자열 (테이블/컬럼만)"""
    compact = {
        table: [
            f"{col['name']} {col.get('type') or ''}{' PK' if col.get('primary_key') else ''}".strip()
            for col in info.get("columns", [])
        ]
        for table, info in (schema.get("tables") or {}).items()
    }
    return json.dumps(compact, ensure_ascii=False)


def result_sample(data: List[Dict[str, Any]], columns: List[str], limit: int) -> str:
    """앞쪽 몇 행을 표로 (프롬프트용)"""
    rows = [[row.get(col) for col in columns] for row in data[:limit]]
    if not rows:
        return "(no rows)"
    return tabulate(rows, headers=columns, tablefmt="pipe")


def parse_chart(raw: str) -> Optional[Dict[str, Any]]:
    """
    LLM 응답에서 차트 설정 JSON 추출
    - type은 CHART_TYPES 중 하나, mapping은 객체여야 함. 아니면 None
    """
    match = re.search(r"\{.*\}", raw or "", flags=re.DOTALL)
    if not match:
        return None
    try:
        chart = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(chart, dict) or chart.get("type") not in CHART_TYPES:
        return None
    if not isinstance(chart.get("mapping"), dict):
        return None
    return {
        "type": chart["type"],
        "title": str(chart.get("title") or ""),
        "mapping": {str(k): str(v) for k, v in chart["mapping"].items()},
    }


class SQLGenerator:
    """SQL 생성기 (싱글톤)"""

    _instance: Optional["SQLGenerator"] = None
    _initialized: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if SQLGenerator._initialized:
            return
        SQLGenerator._initialized = True
        self._llm = None
        logger.info("SQLGenerator initialized (singleton)")

    def _get_llm(self):
        if self._llm is None:
            from langchain_ollama import ChatOllama
            self._llm = ChatOllama(
                model=settings.LLM_MODEL,
                base_url=settings.OLLAMA_BASE_URL,
                temperature=settings.LLM_TEMPERATURE,
            )
        return self._llm

    async def _ainvoke(self, prompt: ChatPromptTemplate, inputs: dict, llm_instance: Any = None) -> str:
        """prompt | llm | StrOutputParser, LLM_TIMEOUT_SECONDS 안에 응답이 없으면 asyncio.TimeoutError"""
        llm = llm_instance if llm_instance is not None else self._get_llm()
        chain = prompt | llm | StrOutputParser()
        return await asyncio.wait_for(chain.ainvoke(inputs), timeout=settings.LLM_TIMEOUT_SECONDS)

    async def generate_sql(
        self,
        question: str,
        schema: dict,
        engine_type: str,
        llm_instance: Any = None,
    ) -> str:
        """
        (질문, 정규화된 스키마, 엔진 종류) → SQL 문자열

        Raises:
            SQLGenerationError: 타임아웃, LLM 오류, 빈 응답
        """
        try:
            raw_sql = await self._ainvoke(_SQL_PROMPT, {
                "dialect": _DIALECT_NAMES.get(engine_type, engine_type),
                "schema": schema_for_prompt(schema),
                "question": question,
            }, llm_instance)
        except asyncio.TimeoutError as e:
            logger.error(f"[SQLGen] LLM timeout ({settings.LLM_TIMEOUT_SECONDS}s)")
            raise SQLGenerationError(f"SQL 생성 타임아웃 ({settings.LLM_TIMEOUT_SECONDS}초)") from e
        except Exception as e:
            logger.error(f"[SQLGen] SQL generation failed: {type(e).__name__}: {e}")
            raise SQLGenerationError(f"SQL 생성 실패: {e}") from e

        sql = clean_sql(raw_sql)
        if not sql:
            raise SQLGenerationError("LLM이 빈 SQL을 반환했습니다.")
        logger.info(f"[SQLGen] SQL generated: {sql[:100]}")
        return sql

    async def explain_sql(
        self,
        question: str,
        sql: str,
        schema: dict,
        result: Any,
        llm_instance: Any = None,
    ) -> str:
        """실행 결과를 포함한 SQL 설명. 실패하면 SQL을 담은 기본 문장."""
        try:
            explanation = await self._ainvoke(_EXPLAIN_PROMPT, {
                "question": question,
                "sql": sql,
                "schema": schema_for_prompt(schema),
                "row_count": result.row_count,
                "sample": result_sample(result.data, result.columns, EXPLAIN_SAMPLE_ROWS),
            }, llm_instance)
        except Exception as e:
            logger.warning(f"[SQLGen] explanation failed: {type(e).__name__}: {e}")
            explanation = ""
        return explanation.strip() or f"이 쿼리는 데이터베이스에서 데이터를 조회합니다. SQL: {sql}"

    async def summarize_results(self, question: str, result: Any, llm_instance: Any = None) -> str:
        if not result.data:
            return NO_DATA_SUMMARY
        try:
            summary = await self._ainvoke(_SUMMARY_PROMPT, {
                "question": question,
                "row_count": result.row_count,
                "sample": result_sample(result.data, result.columns, EXPLAIN_SAMPLE_ROWS),
            }, llm_instance)
        except Exception as e:
            logger.warning(f"[SQLGen] summary failed: {type(e).__name__}: {e}")
            return SUMMARY_FALLBACK
        return summary.strip() or SUMMARY_FALLBACK

    async def generate_chart(self, question: str, result: Any, llm_instance: Any = None) -> Optional[Dict[str, Any]]:
        """차트 설정 {type, title, mapping}. 데이터가 없거나 응답이 올바르지 않으면 None."""
        if not result.data:
            return None
        try:
            raw = await self._ainvoke(_CHART_PROMPT, {
                "question": question,
                "columns": ", ".join(result.columns),
                "sample": result_sample(result.data, result.columns, CHART_SAMPLE_ROWS),
            }, llm_instance)
        except Exception as e:
            logger.warning(f"[SQLGen] chart suggestion failed: {type(e).__name__}: {e}")
            return None
        chart = parse_chart(raw)
        if chart is None:
            logger.info("[SQLGen] no usable chart in LLM answer")
        return chart


@lru_cache()
def get_sql_generator() -> SQLGenerator:
    """싱글톤 SQLGenerator 인스턴스 반환"""
    return SQLGenerator()
