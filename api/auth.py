import os
import uuid
import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.security import (
    SESSION_COOKIE,
    LoginSession,
    SessionRegistry,
    current_session,
    get_sessions,
    hash_password,
    verify_password,
)
from db.models import User
from db.session import get_db

logger = logging.getLogger(__name__)

COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in {"1", "true", "yes"}

router = APIRouter(prefix="/auth", tags=["auth"])


# --- Schemas
class RegisterIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    username: str
    model_config = ConfigDict(from_attributes=True)


class AuthOut(BaseModel):
    message: str
    user: UserOut


class MeOut(BaseModel):
    user: UserOut


def _set_session_cookie(response: Response, session: LoginSession, registry: SessionRegistry) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session.token,
        max_age=int(registry.ttl.total_seconds()),
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="none" if COOKIE_SECURE else "lax",
    )


@router.post("/register", response_model=AuthOut, status_code=201)
def register(
    body: RegisterIn,
    response: Response,
    db: Session = Depends(get_db),
    registry: SessionRegistry = Depends(get_sessions),
):
    if not (body.email and body.password and body.name and body.username):
        raise HTTPException(400, "All fields are required")

    email = body.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(409, "User already exists")
    if db.query(User).filter(func.lower(User.username) == body.username.strip().lower()).first():
        raise HTTPException(409, "Username already taken")

    user = User(
        id=str(uuid.uuid4()),
        email=email,
        username=body.username.strip(),
        name=body.name.strip(),
        password_hash=hash_password(body.password),
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Registration failed for %s", email)
        raise HTTPException(500, "Error registering user")

    _set_session_cookie(response, registry.open(user.id), registry)
    return {"message": "User registered successfully", "user": UserOut.model_validate(user)}


@router.post("/login", response_model=AuthOut)
def login(
    body: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    registry: SessionRegistry = Depends(get_sessions),
):
    if not (body.email and body.password):
        raise HTTPException(400, "Email and password are required")

    user = db.query(User).filter(User.email == body.email.strip().lower()).first()
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(401, "Invalid credentials")

    _set_session_cookie(response, registry.open(user.id), registry)
    return {"message": "Login successful", "user": UserOut.model_validate(user)}


@router.post("/logout")
def logout(
    response: Response,
    token: Optional[str] = Cookie(None),
    registry: SessionRegistry = Depends(get_sessions),
):
    if token:
        registry.close(token)
    response.delete_cookie(SESSION_COOKIE, httponly=True, secure=COOKIE_SECURE, samesite="none" if COOKIE_SECURE else "lax")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=MeOut)
def me(session: LoginSession = Depends(current_session), db: Session = Depends(get_db)):
    user = db.get(User, session.user_id)
    if not user:
        raise HTTPException(401, "Invalid or expired token")
    return {"user": UserOut.model_validate(user)}
