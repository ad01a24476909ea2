import re
from typing import List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

Role = Literal["user", "admin"]


def check_password_strength(v: str) -> str:
    """비밀번호 강도 검증 (영문자 + 숫자)"""
    if not re.search(r'[A-Za-z]', v):
        raise ValueError('비밀번호에는 최소 하나의 영문자가 포함되어야 합니다.')
    if not re.search(r'\d', v):
        raise ValueError('비밀번호에는 최소 하나의 숫자가 포함되어야 합니다.')
    return v


class UserBase(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)


class UserCreate(UserBase):
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_strength(v)


class UserResponse(UserBase):
    id: int
    role: Role = "user"
    is_active: bool

    class Config:
        from_attributes = True


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse


class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse


class ProfileUpdate(BaseModel):
    """본인 프로필 수정 (보낸 필드만 변경)"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None


class ProfileUpdateResponse(Token):
    """이메일이 토큰 subject이므로 수정 후 새 토큰을 함께 발급"""
    message: str


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: str = Field(..., min_length=8, max_length=72)

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return check_password_strength(v)


class AdminUserCreate(UserCreate):
    role: Role = "user"


class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else check_password_strength(v)


class UserListResponse(BaseModel):
    users: List[UserResponse]
