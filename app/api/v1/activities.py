from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import get_current_user
from app.services.audit import AuditRecorder, get_recorder
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Atividades"])


async def _get_activity_or_404(storage: Storage, activity_id: int) -> schemas.Activity:
    activity = await storage.get_activity(activity_id)
    if not activity:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Atividade nao encontrada")
    return activity


@router.get("/activities", response_model=list[schemas.Activity])
async def list_activities(
    delayed: bool = Query(default=False),
    responsible: Optional[int] = Query(default=None),
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    if delayed:
        return await storage.list_delayed_activities()
    if responsible is not None:
        return await storage.list_activities_by_responsible(responsible)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Informe delayed=true ou responsible",
    )


@router.post("/activities", response_model=schemas.Activity, status_code=status.HTTP_201_CREATED)
async def create_activity(
    payload: schemas.ActivityCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if payload.subproject_id is not None and not await storage.get_subproject(payload.subproject_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subprojeto nao encontrado")
    activity = await storage.create_activity(payload)
    await recorder.record_create("activity", activity, current_user.id)
    return activity


@router.get("/activities/{activity_id}", response_model=schemas.Activity)
async def get_activity(
    activity_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await _get_activity_or_404(storage, activity_id)


@router.api_route("/activities/{activity_id}", methods=["PUT", "PATCH"], response_model=schemas.Activity)
async def update_activity(
    activity_id: int,
    payload: schemas.ActivityPatch,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    changed = await storage.update_tracked("activity", activity_id, payload)
    if not changed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Atividade nao encontrada")
    before, activity = changed
    await recorder.record_update("activity", activity_id, before, activity, current_user.id)
    return activity


@router.delete("/activities/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_activity(
    activity_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    before = await _get_activity_or_404(storage, activity_id)
    if not await storage.delete_activity(activity_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Atividade nao encontrada")
    await recorder.record_delete("activity", activity_id, before, current_user.id)


@router.get("/activities/{activity_id}/comments", response_model=list[schemas.ActivityComment])
async def list_activity_comments(
    activity_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    await _get_activity_or_404(storage, activity_id)
    return await storage.list_activity_comments_by_activity(activity_id)


@router.post(
    "/activity-comments", response_model=schemas.ActivityComment, status_code=status.HTTP_201_CREATED
)
async def create_activity_comment(
    payload: schemas.ActivityCommentCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if payload.activity_id is not None:
        await _get_activity_or_404(storage, payload.activity_id)
    if payload.user_id is None:
        payload = payload.model_copy(update={"user_id": current_user.id})
    comment = await storage.create_activity_comment(payload)
    await recorder.record_create("activity_comment", comment, current_user.id)
    return comment
