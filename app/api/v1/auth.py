from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from app.api.v1.users import UserPublic
from app.core.security import create_access_token, get_current_user, verify_password
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserPublic


async def _authenticate(storage: Storage, username: str, password: str) -> schemas.User:
    user = await storage.get_user_by_username(username.strip())
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuario ou senha invalidos"
        )
    return user


def _token_response(user: schemas.User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"access_token": token, "token_type": "bearer", "user": UserPublic.from_user(user)}


@router.post("/auth/login", response_model=LoginResponse, summary="Login JSON (frontend)")
async def login(payload: LoginRequest, storage: Storage = Depends(get_storage)):
    """
    Uso tipico via frontend/script JSON:
    - POST /api/auth/login
    - body: {"username": "...", "password": "..."}
    """
    user = await _authenticate(storage, payload.username, payload.password)
    return _token_response(user)


@router.post(
    "/auth/token",
    response_model=LoginResponse,
    summary="Login para Swagger (OAuth2PasswordBearer)",
)
async def login_swagger(
    form_data: OAuth2PasswordRequestForm = Depends(), storage: Storage = Depends(get_storage)
):
    user = await _authenticate(storage, form_data.username, form_data.password)
    return _token_response(user)


@router.get("/auth/session", response_model=UserPublic)
async def session(current_user: schemas.User = Depends(get_current_user)):
    return UserPublic.from_user(current_user)
