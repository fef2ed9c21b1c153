from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.config import settings
from learnhub.db.session import get_db
from learnhub.models.user import User, UserRole


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(*, user_id: str, role: str) -> str:
    now = datetime.utcnow()
    expire = now + timedelta(minutes=settings.jwt_access_token_minutes)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": expire,
        "iss": settings.jwt_issuer,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


MFA_PENDING = "mfa_pending"


def create_mfa_token(*, user_id: str) -> str:
    """Short-lived token proving the password step; only /auth/mfa/verify accepts it."""
    now = datetime.utcnow()
    payload = {
        "sub": user_id,
        "typ": MFA_PENDING,
        "iat": now,
        "exp": now + timedelta(minutes=settings.mfa_token_minutes),
        "iss": settings.jwt_issuer,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_mfa_token(token: str) -> uuid.UUID | None:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except JWTError:
        return None
    if payload.get("typ") != MFA_PENDING:
        return None
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    if not token:
        token = request.cookies.get("learnhub_token")
    if not token:
        raise HTTPException(status_code=401, detail="not authenticated")

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
        user_id = payload.get("sub")
        if not user_id or payload.get("typ") == MFA_PENDING:
            raise HTTPException(status_code=401, detail="invalid token")
    except JWTError as e:
        raise HTTPException(status_code=401, detail="invalid token") from e

    try:
        user_id = uuid.UUID(str(user_id))
    except ValueError as e:
        raise HTTPException(status_code=401, detail="invalid token") from e

    user = db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise HTTPException(status_code=401, detail="invalid token")

    request.state.user_id = str(user.id)
    return user


def require_roles(*roles: UserRole):
    def _dep(user: User = Depends(get_current_user)) -> User:
        # admin passes every role check
        if user.role == UserRole.admin:
            return user

        if user.role not in roles:
            raise HTTPException(status_code=403, detail="forbidden")
        return user

    return _dep
