"""
감사 로그 인터셉터
- @audited(...)로 표시한 엔드포인트의 결과를 핸들러 실행 후 한 번만 관찰
- 2xx → action, 4xx/5xx → FAILED_<action> (details: error, status_code)
- target/details/user 추출 함수는 (request, body) -> value 형태의 순수 함수
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException

from sqlbridge.core.errors import SQLBridgeError
from sqlbridge.services.audit_service import failed_action, get_audit_recorder

logger = logging.getLogger(__name__)

Extractor = Callable[[Request, Any], Any]


@dataclass(frozen=True)
class AuditSpec:
    action: str
    target_type: str
    get_target_id: Optional[Extractor] = None
    get_details: Optional[Extractor] = None
    # 로그인/회원가입처럼 요청 시점에 사용자가 없을 때 응답 본문에서 꺼냄
    get_user_id: Optional[Extractor] = None


def audited(
    action: str,
    target_type: str,
    get_target_id: Optional[Extractor] = None,
    get_details: Optional[Extractor] = None,
    get_user_id: Optional[Extractor] = None,
):
    """
    엔드포인트에 감사 설정을 붙입니다. 라우터 데코레이터 아래에 둡니다.

        @router.post("/", status_code=201)
        @audited("create_connection", "connection", get_target_id=lambda req, body: body.get("id"))
        async def create_connection(...): ...
    """
    spec = AuditSpec(action, target_type, get_target_id, get_details, get_user_id)

    def decorator(endpoint):
        endpoint.__audit_spec__ = spec
        return endpoint

    return decorator


def _safe_extract(extractor: Optional[Extractor], request: Request, body: Any) -> Any:
    if extractor is None:
        return None
    try:
        return extractor(request, body)
    except Exception as e:
        logger.warning(f"[Audit] extractor failed: {type(e).__name__}: {e}")
        return None


def _response_body(response: Response) -> Any:
    raw = getattr(response, "body", None)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        return None


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _current_user_id(request: Request) -> Optional[int]:
    user = getattr(request.state, "user", None)
    return getattr(user, "id", None)


def _error_text(body: Any, default: str) -> str:
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if detail:
            return detail if isinstance(detail, str) else json.dumps(detail, ensure_ascii=False, default=str)
    return default


def observe_success(request: Request, spec: AuditSpec, body: Any) -> None:
    user_id = _current_user_id(request)
    if spec.get_user_id is not None:
        user_id = _safe_extract(spec.get_user_id, request, body) or user_id
    get_audit_recorder().record_in_background(
        user_id=user_id,
        action=spec.action,
        target_type=spec.target_type,
        target_id=_safe_extract(spec.get_target_id, request, body),
        details=_safe_extract(spec.get_details, request, body),
        ip_address=_client_ip(request),
    )


def observe_failure(request: Request, spec: AuditSpec, status_code: int, error: str) -> None:
    get_audit_recorder().record_in_background(
        user_id=_current_user_id(request),
        action=failed_action(spec.action),
        target_type=spec.target_type,
        target_id=_safe_extract(spec.get_target_id, request, None),
        details={"error": error, "status_code": status_code},
        ip_address=_client_ip(request),
    )


class AuditedRoute(APIRoute):
    """@audited 가 붙은 엔드포인트의 결과를 감사 로그로 남기는 라우트"""

    def get_route_handler(self):
        original_handler = super().get_route_handler()
        spec: Optional[AuditSpec] = getattr(self.endpoint, "__audit_spec__", None)
        if spec is None:
            return original_handler

        async def audited_handler(request: Request) -> Response:
            try:
                response = await original_handler(request)
            except StarletteHTTPException as exc:
                error = exc.detail if isinstance(exc.detail, str) else _error_text({"detail": exc.detail}, "HTTP error")
                observe_failure(request, spec, exc.status_code, error)
                raise
            except SQLBridgeError as exc:
                observe_failure(request, spec, exc.status_code, str(exc))
                raise
            except RequestValidationError:
                observe_failure(request, spec, 422, "Validation error")
                raise
            except Exception:
                observe_failure(request, spec, 500, "Internal server error")
                raise

            status_code = response.status_code
            if 200 <= status_code < 300:
                observe_success(request, spec, _response_body(response))
            elif status_code >= 400:
                body = _response_body(response)
                observe_failure(request, spec, status_code, _error_text(body, "Unknown error"))
            return response

        return audited_handler
