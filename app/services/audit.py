import logging
from typing import Any, Optional

from fastapi import Depends
from fastapi.encoders import jsonable_encoder

from app.storage import schemas
from app.storage.base import Storage
from app.storage.provider import get_storage

logger = logging.getLogger("gestor.audit")

ENTITY_TYPES = {
    "project",
    "subproject",
    "activity",
    "event",
    "contact",
    "project_update",
    "activity_comment",
    "attachment",
    "user",
}


def snapshot(entity: Any) -> Optional[dict[str, Any]]:
    """Copia profunda em formato JSON; nunca compartilha referencias com o objeto vivo."""
    if entity is None:
        return None
    return jsonable_encoder(entity)


class AuditRecorder:
    """
    Grava uma linha de auditoria por mutacao.

    Os snapshots sao tirados aqui dentro, no momento da chamada; quem chama nao
    precisa copiar nada. Erros do storage sobem para o chamador.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def _append(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: Optional[int],
        before: Any = None,
        after: Any = None,
    ) -> schemas.AuditLog:
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Tipo de entidade nao auditavel: {entity_type}")
        log = await self.storage.create_audit_log(
            schemas.AuditLogCreate(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                before=snapshot(before),
                after=snapshot(after),
                user_id=actor_id,
            )
        )
        logger.info(
            "audit entity=%s id=%s action=%s actor=%s", entity_type, entity_id, action, actor_id
        )
        return log

    async def record_create(self, entity_type: str, entity: Any, actor_id: Optional[int]) -> schemas.AuditLog:
        after = snapshot(entity)
        return await self._append(entity_type, after["id"], "create", actor_id, after=after)

    async def record_update(
        self,
        entity_type: str,
        entity_id: int,
        before: Any,
        after: Any,
        actor_id: Optional[int],
    ) -> schemas.AuditLog:
        return await self._append(
            entity_type, entity_id, "update", actor_id, before=snapshot(before), after=snapshot(after)
        )

    async def record_delete(
        self, entity_type: str, entity_id: int, before: Any, actor_id: Optional[int]
    ) -> schemas.AuditLog:
        return await self._append(entity_type, entity_id, "delete", actor_id, before=snapshot(before))


def get_recorder(storage: Storage = Depends(get_storage)) -> AuditRecorder:
    return AuditRecorder(storage)
