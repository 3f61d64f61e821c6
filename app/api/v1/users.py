from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.core.security import get_current_user, get_password_hash, require_roles
from app.services.audit import AuditRecorder, get_recorder
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Usuarios"])


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: str
    role: schemas.UserRole = "user"
    avatar: Optional[str] = None


class UserPublic(BaseModel):
    id: int
    username: str
    name: str
    email: str
    role: str
    avatar: Optional[str] = None

    @classmethod
    def from_user(cls, user: schemas.User) -> "UserPublic":
        return cls(**user.model_dump(exclude={"password_hash"}))


@router.get("/users", response_model=list[UserPublic])
async def list_users(
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return [UserPublic.from_user(user) for user in await storage.list_users()]


@router.post("/users", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    current_user: schemas.User = Depends(require_roles("admin")),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if await storage.get_user_by_username(payload.username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Usuario ja existe")
    if await storage.get_user_by_email(payload.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email ja cadastrado")
    try:
        password_hash = get_password_hash(payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    user = await storage.create_user(
        schemas.UserCreate(
            username=payload.username,
            password_hash=password_hash,
            name=payload.name,
            email=payload.email,
            role=payload.role,
            avatar=payload.avatar,
        )
    )
    public = UserPublic.from_user(user)
    await recorder.record_create("user", public, current_user.id)
    return public


@router.get("/users/{user_id}", response_model=UserPublic)
async def get_user(
    user_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    user = await storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario nao encontrado")
    return UserPublic.from_user(user)
