import os
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlmodel import Session, select

from app.db.db import get_session
from app.models.user import User
from app.services.errors import AuthRequiredError, NotFoundError

ALGORITHM = "HS256"

bearer_scheme_required = HTTPBearer(auto_error=True)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=[ALGORITHM])
    except JWTError:
        return None


def get_current_user_required(token: HTTPAuthorizationCredentials = Depends(bearer_scheme_required)):
    payload = decode_token(token.credentials)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


def get_db_user(session: Session, current_user) -> User:
    if not current_user or "sub" not in current_user:
        raise AuthRequiredError("Sign in required")

    user = session.exec(
        select(User).where(User.public_id == current_user["sub"])
    ).first()

    if not user:
        raise NotFoundError("User not found")

    return user


def get_current_db_user(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
) -> User:
    """Auth context passed explicitly into every service call."""
    return get_db_user(session, current_user)


def get_user_from_token(session: Session, token: Optional[str]) -> User:
    # websockets cannot send an Authorization header from browsers
    payload = decode_token(token) if token else None
    if payload is None:
        raise AuthRequiredError("Invalid or expired token")

    return get_db_user(session, payload)
