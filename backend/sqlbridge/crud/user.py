from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sqlbridge.models.user import User
from sqlbridge.schemas.user import UserCreate
from sqlbridge.core.security import get_password_hash


async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalars().first()


async def list_users(db: AsyncSession) -> List[User]:
    result = await db.execute(select(User).order_by(User.id))
    return list(result.scalars().all())


async def create_user(db: AsyncSession, user_in: UserCreate, role: str = "user") -> User:
    user = User(
        email=user_in.email.lower(),
        name=user_in.name,
        hashed_password=get_password_hash(user_in.password),
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def update_user(db: AsyncSession, user: User, fields: Dict[str, Any]) -> User:
    """
    보낸 필드만 변경. password는 해시로 저장, email은 소문자로.
    """
    for key, value in fields.items():
        if key == "password":
            user.hashed_password = get_password_hash(value)
        elif key == "email":
            user.email = value.lower()
        else:
            setattr(user, key, value)
    await db.commit()
    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, user: User) -> None:
    """연결과 쿼리 히스토리도 함께 삭제 (감사 로그는 남음)"""
    await db.delete(user)
    await db.commit()
