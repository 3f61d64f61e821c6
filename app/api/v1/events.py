from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import get_current_user
from app.services.audit import AuditRecorder, get_recorder
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Eventos"])


async def _get_event_or_404(storage: Storage, event_id: int) -> schemas.Event:
    event = await storage.get_event(event_id)
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento nao encontrado")
    return event


@router.get("/events", response_model=list[schemas.Event])
async def list_events(
    project_id: Optional[int] = Query(default=None),
    subproject_id: Optional[int] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """
    Calendario:
    - ?start=...&end=... filtra pela data de inicio do evento (intervalo fechado);
    - ?project_id ou ?subproject_id filtra pelo dono;
    - sem filtro retorna todos.
    """
    if (start is None) != (end is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Informe start e end juntos",
        )
    if start is not None:
        return await storage.list_events_by_date_range(start, end)
    if project_id is not None:
        return await storage.list_events_by_project(project_id)
    if subproject_id is not None:
        return await storage.list_events_by_subproject(subproject_id)
    return await storage.list_events()


@router.post("/events", response_model=schemas.Event, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: schemas.EventCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    if payload.created_by is None:
        payload = payload.model_copy(update={"created_by": current_user.id})
    event = await storage.create_event(payload)
    await recorder.record_create("event", event, current_user.id)
    return event


@router.get("/events/{event_id}", response_model=schemas.Event)
async def get_event(
    event_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await _get_event_or_404(storage, event_id)


@router.api_route("/events/{event_id}", methods=["PUT", "PATCH"], response_model=schemas.Event)
async def update_event(
    event_id: int,
    payload: schemas.EventPatch,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    changed = await storage.update_tracked("event", event_id, payload)
    if not changed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento nao encontrado")
    before, event = changed
    await recorder.record_update("event", event_id, before, event, current_user.id)
    return event


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: int,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    before = await _get_event_or_404(storage, event_id)
    if not await storage.delete_event(event_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento nao encontrado")
    await recorder.record_delete("event", event_id, before, current_user.id)
