from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select

from .core import create_access_token, generate_api_key, hash_password, verify_password
from .dependencies import get_current_user, require_superadmin
from ..config import settings
from ..database import db_session
from ..models import User
from ..rate_limit import limiter

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    username: str
    name: str


class UserRead(BaseModel):
    id: int
    username: str
    name: str
    role: str
    is_active: bool
    api_key: Optional[str] = None
    created_at: datetime
    last_login_at: Optional[datetime] = None
    login_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class UserCreate(BaseModel):
    username: str = Field(..., min_length=2, max_length=100)
    name: str
    password: str = Field(..., min_length=6)
    role: str = Field(default="operator", pattern="^(superadmin|admin|operator|auditor)$")


class MeResponse(BaseModel):
    username: str
    name: str
    role: str
    api_key: Optional[str] = None


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> TokenResponse:
    with db_session() as session:
        user = session.execute(
            select(User).where(User.username == body.username)
        ).scalar_one_or_none()

        if not user or not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Invalid credentials.")
        if not verify_password(body.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Invalid credentials.")

        user.last_login_at = datetime.now(timezone.utc)
        user.login_count = (user.login_count or 0) + 1

        token = create_access_token(subject=user.username, role=user.role)
        return TokenResponse(
            access_token=token,
            role=user.role,
            username=user.username,
            name=user.name,
        )


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        username=current_user.username,
        name=current_user.name,
        role=current_user.role,
        api_key=current_user.api_key,
    )


@router.post("/me/rotate-key", response_model=MeResponse)
def rotate_own_key(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Regenerate the caller's API key. The old key stops working immediately."""
    with db_session() as session:
        user = session.get(User, current_user.id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        user.api_key = generate_api_key()
        session.flush()
        return MeResponse(
            username=user.username,
            name=user.name,
            role=user.role,
            api_key=user.api_key,
        )


# ---------------------------------------------------------------------------
# User management: superadmin only
# ---------------------------------------------------------------------------

@router.get("/users", response_model=List[UserRead])
def list_users(admin: User = Depends(require_superadmin)) -> List[UserRead]:
    with db_session() as session:
        users = session.execute(select(User).order_by(User.created_at)).scalars().all()
        return [UserRead.model_validate(u) for u in users]


@router.post("/users", response_model=UserRead, status_code=201)
def create_user(body: UserCreate, admin: User = Depends(require_superadmin)) -> UserRead:
    with db_session() as session:
        existing = session.execute(
            select(User).where(User.username == body.username)
        ).scalar_one_or_none()
        if existing:
            raise HTTPException(status_code=409, detail="Username already registered.")
        user = User(
            username=body.username,
            name=body.name,
            password_hash=hash_password(body.password),
            role=body.role,
            api_key=generate_api_key(),
            is_active=True,
        )
        session.add(user)
        session.flush()
        session.refresh(user)
        return UserRead.model_validate(user)
