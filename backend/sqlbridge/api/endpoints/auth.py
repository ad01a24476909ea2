"""
인증 API 엔드포인트
- 회원가입
- 로그인
- 현재 사용자 조회 / 프로필 수정 / 비밀번호 변경
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.api.audit_route import AuditedRoute, audited
from sqlbridge.api.deps import get_current_user
from sqlbridge.db.session import get_db
from sqlbridge.core.security import create_access_token, verify_password, get_dummy_hash
from sqlbridge.core.errors import NoFieldsToUpdateError
from sqlbridge.schemas.user import (
    PasswordChange,
    ProfileUpdate,
    ProfileUpdateResponse,
    RegisterResponse,
    Token,
    UserCreate,
    UserResponse,
)
from sqlbridge.crud.user import create_user, get_user_by_email, update_user
from sqlbridge.models.user import User

logger = logging.getLogger(__name__)
router = APIRouter(route_class=AuditedRoute)


def _user_id_from_body(request, body):
    return body["user"]["id"] if body else None


def _email_from_body(request, body):
    return {"email": body["user"]["email"]} if body else None


def _acting_user_id(request, body):
    user = getattr(request.state, "user", None)
    return user.id if user else None


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@audited(
    "register", "user",
    get_target_id=_user_id_from_body,
    get_details=_email_from_body,
    get_user_id=_user_id_from_body,
)
async def register(
    user_in: UserCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    회원가입 (기본 역할: user)
    """
    existing_user = await get_user_by_email(db, user_in.email)
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="이미 등록된 이메일입니다.",
        )

    user = await create_user(db, user_in)
    logger.info(f"새 사용자 등록: {user.email}")
    return {"message": "회원가입이 완료되었습니다.", "user": user}


@router.post("/login", response_model=Token)
@audited(
    "login", "user",
    get_target_id=_user_id_from_body,
    get_details=_email_from_body,
    get_user_id=_user_id_from_body,
)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    """
    로그인 (OAuth2 Password Flow)
    """
    # 1. 유저 조회
    user = await get_user_by_email(db, form_data.username)

    # 2. 비밀번호 검증 (타이밍 공격 방지를 위해 항상 검증 수행)
    if user:
        password_valid = verify_password(form_data.password, user.hashed_password)
    else:
        verify_password(form_data.password, get_dummy_hash())
        password_valid = False

    if not user or not password_valid:
        logger.warning(f"로그인 실패: {form_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="이메일 또는 비밀번호가 올바르지 않습니다.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 3. 비활성 사용자 체크
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="비활성화된 계정입니다."
        )

    # 4. 토큰 발급
    access_token = create_access_token(data={"sub": user.email})
    logger.info(f"로그인 성공: {user.email}")

    return {"access_token": access_token, "token_type": "bearer", "user": user}


@router.get("/me", response_model=UserResponse)
async def read_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=ProfileUpdateResponse)
@audited(
    "update_profile", "user",
    get_target_id=_acting_user_id,
    get_details=lambda request, body: {"updated_fields": request.state.updated_fields},
)
async def update_profile(
    profile_in: ProfileUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    이름 / 이메일 수정
    - 다른 사용자가 쓰는 이메일은 409
    - 토큰 subject가 이메일이므로 새 토큰을 함께 반환
    """
    fields = profile_in.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise NoFieldsToUpdateError("수정할 항목이 없습니다.")

    if "email" in fields:
        owner = await get_user_by_email(db, fields["email"])
        if owner is not None and owner.id != current_user.id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="이미 사용 중인 이메일입니다.")

    user = await update_user(db, current_user, fields)
    request.state.updated_fields = sorted(fields)
    logger.info(f"프로필 수정: user_id={user.id}, fields={sorted(fields)}")

    return {
        "message": "프로필이 수정되었습니다.",
        "access_token": create_access_token(data={"sub": user.email}),
        "token_type": "bearer",
        "user": user,
    }


@router.put("/change-password")
@audited("change_password", "user", get_target_id=_acting_user_id)
async def change_password(
    password_in: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """현재 비밀번호 확인 후 변경 (틀리면 401)"""
    if not verify_password(password_in.current_password, current_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="현재 비밀번호가 올바르지 않습니다.",
        )

    await update_user(db, current_user, {"password": password_in.new_password})
    logger.info(f"비밀번호 변경: user_id={current_user.id}")
    return {"message": "비밀번호가 변경되었습니다."}
