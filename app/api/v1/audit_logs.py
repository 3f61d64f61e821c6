from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import get_current_user
from app.services.audit import ENTITY_TYPES
from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

router = APIRouter(tags=["Auditoria"])


@router.get("/audit-logs", response_model=list[schemas.AuditLog])
async def list_audit_logs(
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[int] = Query(default=None),
    current_user: schemas.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Historico de uma entidade, mais recente primeiro."""
    if not entity_type or entity_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Informe entity_type e entity_id",
        )
    if entity_type not in ENTITY_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="entity_type invalido")
    return await storage.list_audit_logs_by_entity(entity_type, entity_id)
