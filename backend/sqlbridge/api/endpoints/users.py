"""
사용자 관리 API (관리자 전용)
- 목록 / 조회 / 생성 / 수정 / 삭제
- 사용자를 삭제하면 연결과 쿼리 히스토리도 삭제되고 감사 로그는 남음
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.api.deps import get_current_admin
from sqlbridge.core.errors import NoFieldsToUpdateError
from sqlbridge.crud import user as crud_user
from sqlbridge.db.session import get_db
from sqlbridge.models.user import User
from sqlbridge.schemas.user import AdminUserCreate, AdminUserUpdate, UserListResponse, UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()

USER_NOT_FOUND = "사용자를 찾을 수 없습니다."
EMAIL_TAKEN = "이미 등록된 이메일입니다."


async def _get_or_404(db: AsyncSession, user_id: int) -> User:
    user = await crud_user.get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
    return user


@router.get("/", response_model=UserListResponse)
async def list_users(
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"users": await crud_user.list_users(db)}


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await _get_or_404(db, user_id)


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_in: AdminUserCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    if await crud_user.get_user_by_email(db, user_in.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=EMAIL_TAKEN)

    user = await crud_user.create_user(db, user_in, role=user_in.role)
    logger.info(f"[Admin] user created: id={user.id}, role={user.role} (by {admin.id})")
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    user_in: AdminUserUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """보낸 필드만 변경 (name, email, role, password)"""
    user = await _get_or_404(db, user_id)
    fields = user_in.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise NoFieldsToUpdateError("수정할 항목이 없습니다.")

    if "email" in fields:
        owner = await crud_user.get_user_by_email(db, fields["email"])
        if owner is not None and owner.id != user.id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=EMAIL_TAKEN)

    user = await crud_user.update_user(db, user, fields)
    logger.info(f"[Admin] user updated: id={user.id}, fields={sorted(fields)} (by {admin.id})")
    return user


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_or_404(db, user_id)
    await crud_user.delete_user(db, user)
    logger.info(f"[Admin] user deleted: id={user_id} (by {admin.id})")
    return {"message": "사용자가 삭제되었습니다."}
