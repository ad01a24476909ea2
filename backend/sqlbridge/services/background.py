"""
Fire-and-forget 태스크 실행기
- 감사 로그/쿼리 히스토리처럼 응답을 막으면 안 되는 부수 기록용
- 태스크 참조를 보관해 GC로 사라지지 않게 하고, 예외는 로그로만 남김
"""
import asyncio
import logging
from typing import Coroutine, Set

logger = logging.getLogger(__name__)

_pending: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"[Background] task {task.get_name()} failed: {exc}", exc_info=exc)


def fire_and_forget(coro: Coroutine, name: str = "side-write") -> asyncio.Task:
    """코루틴을 백그라운드 태스크로 띄우고 기다리지 않습니다."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_count() -> int:
    return len(_pending)


async def drain_background_tasks(timeout: float = 10.0) -> None:
    """남아있는 백그라운드 태스크 완료 대기 (종료 시/테스트용)"""
    if not _pending:
        return
    done, not_done = await asyncio.wait(set(_pending), timeout=timeout)
    if not_done:
        logger.warning(f"[Background] {len(not_done)} task(s) still running after {timeout}s")
