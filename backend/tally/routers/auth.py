"""Auth routes: register, login, logout."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tally.core.auth import (
    SESSION_TOKEN_HEADER,
    get_current_user,
    login_user,
    logout_user,
    register_user,
)
from tally.dependencies import get_db
from tally.models.user import User
from tally.schemas.user import LoginRead, UserCreate, UserRead

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else None
    user = await register_user(db, email=body.email, password=body.password, ip_address=ip)
    await db.commit()
    return user


@router.post("/login", response_model=LoginRead)
async def login(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else None
    user, token = await login_user(db, email=body.email, password=body.password, ip_address=ip)
    await db.commit()
    return {"token": token, "user_id": user.id}


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await logout_user(db, token=request.headers[SESSION_TOKEN_HEADER])
    await db.commit()
