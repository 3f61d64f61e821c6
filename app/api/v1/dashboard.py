from fastapi import APIRouter, Depends

from app.core.security import get_current_user
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Dashboard"])


@router.get("/dashboard/stats", response_model=schemas.DashboardStats)
async def dashboard_stats(
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_dashboard_stats()
