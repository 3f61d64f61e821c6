from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import get_current_user
from app.services.audit import AuditRecorder, get_recorder
from app.storage import schemas
from app.storage.base import ATTACHMENT_OWNERS, Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Anexos"])


@router.get("/attachments", response_model=list[schemas.Attachment])
async def list_attachments(
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[int] = Query(default=None),
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    if not entity_type or entity_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Informe entity_type e entity_id",
        )
    if entity_type not in ATTACHMENT_OWNERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="entity_type invalido")
    return await storage.list_attachments_by_entity(entity_type, entity_id)


@router.post("/attachments", response_model=schemas.Attachment, status_code=status.HTTP_201_CREATED)
async def create_attachment(
    payload: schemas.AttachmentCreate,
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    recorder: AuditRecorder = Depends(get_recorder),
):
    owners = [payload.project_id, payload.subproject_id, payload.activity_id]
    if all(owner is None for owner in owners):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Anexo precisa de project_id, subproject_id ou activity_id",
        )
    if payload.uploaded_by is None:
        payload = payload.model_copy(update={"uploaded_by": current_user.id})
    attachment = await storage.create_attachment(payload)
    await recorder.record_create("attachment", attachment, current_user.id)
    return attachment
