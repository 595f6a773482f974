from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from abby.config import get_settings
from abby.db import get_db
from abby.errors import PermissionDeniedError
from abby.models import User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
# 토큰 발급(로그인)은 이 서비스 밖에서 한다
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def hash_password(password):
    if not isinstance(password, (str, bytes)):
        raise TypeError("Password must be a string or bytes.")
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    auth = get_settings().auth
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=auth.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, auth.secret_key, algorithm=auth.algorithm)


def token_for(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role})


async def get_current_user(token: str = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)) -> User:
    """
    Authorization 헤더의 Bearer 토큰을 검증하고 현재 사용자를 반환하는 의존성.
    비활성 사용자도 401.
    """
    auth = get_settings().auth
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, auth.secret_key, algorithms=[auth.algorithm])
        user_id_str: str = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        try:
            user_id = int(user_id_str)
        except ValueError:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    res = await db.execute(select(User).where(User.id == user_id))
    user = res.scalar_one_or_none()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_role(*roles: str):
    """라우터 단위 역할 검사. `dependencies=[Depends(require_role("admin"))]` 로 사용."""
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise PermissionDeniedError()
        return current_user
    return checker
