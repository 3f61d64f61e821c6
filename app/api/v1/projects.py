from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import get_current_user
from app.services.audit import AuditRecorder, get_recorder
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Projetos"])


async def _get_project_or_404(storage: Storage, project_id: int) -> schemas.Project:
    project = await storage.get_project(project_id)
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Projeto nao encontrado")
    return project


@router.get("/projects", response_model=list[schemas.Project])
async def list_projects(
    status_filter: Optional[schemas.Status] = Query(default=None, alias="status"),
    responsible: Optional[int] = Query(default=None),
    municipality: Optional[str] = Query(default=None),
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    if status_filter is not None:
        return await storage.list_projects_by_status(schemas.Status(status_filter).value)
    if responsible is not None:
        return await storage.list_projects_by_responsible(responsible)
    if municipality:
        return await storage.list_projects_by_municipality(municipality)
    return await storage.list_projects()


@router.post("/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: schemas.ProjectCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    project = await storage.create_project(payload)
    await recorder.record_create("project", project, current_user.id)
    return project


@router.get("/projects/{project_id}", response_model=schemas.Project)
async def get_project(
    project_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await _get_project_or_404(storage, project_id)


@router.api_route("/projects/{project_id}", methods=["PUT", "PATCH"], response_model=schemas.Project)
async def update_project(
    project_id: int,
    payload: schemas.ProjectPatch,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    changed = await storage.update_tracked("project", project_id, payload)
    if not changed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Projeto nao encontrado")
    before, project = changed
    await recorder.record_update("project", project_id, before, project, current_user.id)
    return project


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    before = await _get_project_or_404(storage, project_id)
    if not await storage.delete_project(project_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Projeto nao encontrado")
    await recorder.record_delete("project", project_id, before, current_user.id)


@router.get("/projects/{project_id}/contacts", response_model=list[schemas.Contact])
async def list_project_contacts(
    project_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    await _get_project_or_404(storage, project_id)
    return await storage.list_contacts_by_project(project_id)


@router.get("/projects/{project_id}/updates", response_model=list[schemas.ProjectUpdate])
async def list_project_updates(
    project_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    await _get_project_or_404(storage, project_id)
    return await storage.list_project_updates_by_project(project_id)


@router.get("/projects/{project_id}/subprojects", response_model=list[schemas.Subproject])
async def list_project_subprojects(
    project_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    await _get_project_or_404(storage, project_id)
    return await storage.list_subprojects_by_project(project_id)


@router.post("/contacts", response_model=schemas.Contact, status_code=status.HTTP_201_CREATED)
async def create_contact(
    payload: schemas.ContactCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if payload.project_id is not None:
        await _get_project_or_404(storage, payload.project_id)
    contact = await storage.create_contact(payload)
    await recorder.record_create("contact", contact, current_user.id)
    return contact


@router.post("/project-updates", response_model=schemas.ProjectUpdate, status_code=status.HTTP_201_CREATED)
async def create_project_update(
    payload: schemas.ProjectUpdateCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if payload.project_id is not None:
        await _get_project_or_404(storage, payload.project_id)
    if payload.user_id is None:
        payload = payload.model_copy(update={"user_id": current_user.id})
    update = await storage.create_project_update(payload)
    await recorder.record_create("project_update", update, current_user.id)
    return update
