"""
API 공통 의존성
- Bearer 토큰 → User
- 감사 로그가 행위자를 알 수 있도록 request.state.user에 저장
- 소유권 확인 + 복호화된 연결 정보 로드
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.core.config import settings
from sqlbridge.core.security import decode_access_token
from sqlbridge.crud.db_connection import get_decrypted_connection
from sqlbridge.crud.user import get_user_by_email
from sqlbridge.db.session import get_db
from sqlbridge.models.user import User
from sqlbridge.schemas.db_connection import ConnectionConfig

CONNECTION_NOT_FOUND = "연결을 찾을 수 없습니다."

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="인증 정보가 유효하지 않습니다.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    email = decode_access_token(token)
    if not email:
        raise credentials_exception

    user = await get_user_by_email(db, email)
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="비활성화된 계정입니다.")

    request.state.user = user
    return user


async def get_current_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="관리자 권한이 필요합니다.")
    return current_user


async def load_connection_config(db: AsyncSession, connection_id: int, user: User) -> ConnectionConfig:
    """
    복호화된 연결 정보 로드
    - 없는 연결과 다른 사용자의 연결은 같은 404
    - 복호화 실패(DecryptionError)는 그대로 전파되어 500
    """
    config = await get_decrypted_connection(db, connection_id, user.id)
    if config is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CONNECTION_NOT_FOUND)
    return config
