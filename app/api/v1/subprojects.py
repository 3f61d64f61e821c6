from fastapi import APIRouter, Depends, HTTPException, status

from app.core.security import get_current_user
from app.services.audit import AuditRecorder, get_recorder
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Subprojetos"])


async def _get_subproject_or_404(storage: Storage, subproject_id: int) -> schemas.Subproject:
    subproject = await storage.get_subproject(subproject_id)
    if not subproject:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subprojeto nao encontrado")
    return subproject


@router.post("/subprojects", response_model=schemas.Subproject, status_code=status.HTTP_201_CREATED)
async def create_subproject(
    payload: schemas.SubprojectCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if payload.project_id is not None and not await storage.get_project(payload.project_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Projeto nao encontrado")
    subproject = await storage.create_subproject(payload)
    await recorder.record_create("subproject", subproject, current_user.id)
    return subproject


@router.get("/subprojects/{subproject_id}", response_model=schemas.Subproject)
async def get_subproject(
    subproject_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await _get_subproject_or_404(storage, subproject_id)


@router.api_route(
    "/subprojects/{subproject_id}", methods=["PUT", "PATCH"], response_model=schemas.Subproject
)
async def update_subproject(
    subproject_id: int,
    payload: schemas.SubprojectPatch,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    changed = await storage.update_tracked("subproject", subproject_id, payload)
    if not changed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subprojeto nao encontrado")
    before, subproject = changed
    await recorder.record_update("subproject", subproject_id, before, subproject, current_user.id)
    return subproject


@router.delete("/subprojects/{subproject_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subproject(
    subproject_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    before = await _get_subproject_or_404(storage, subproject_id)
    if not await storage.delete_subproject(subproject_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subprojeto nao encontrado")
    await recorder.record_delete("subproject", subproject_id, before, current_user.id)


@router.get("/subprojects/{subproject_id}/activities", response_model=list[schemas.Activity])
async def list_subproject_activities(
    subproject_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    await _get_subproject_or_404(storage, subproject_id)
    return await storage.list_activities_by_subproject(subproject_id)
