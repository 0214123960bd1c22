# routers/auth.py — Registration, login and identity endpoints
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES, AuthService, CurrentUser, UserLogin, UserRegister,
    get_current_user,
)
from database import get_db_session
from errors import AuthenticationRequired
from models import User

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "displayName": user.display_name or "",
        "avatarUrl": user.avatar_url,
    }


def _token_response(user: User) -> dict:
    return {
        "success": True,
        "data": {
            "token": AuthService.token_for(user),
            "tokenType": "bearer",
            "expiresIn": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "user": _user_out(user),
        },
    }


@router.post("/register", status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account"""
    user = await AuthService.register_user(user_data, db)
    return _token_response(user)


@router.post("/login")
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive a token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise AuthenticationRequired("Invalid credentials")
    return _token_response(user)


@router.get("/me")
async def me(user: CurrentUser = Depends(get_current_user)):
    return {"success": True, "data": user.model_dump()}
