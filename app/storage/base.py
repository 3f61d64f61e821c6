"""
Interface unica de persistencia.

Toda leitura e escrita de entidades passa por aqui: rotas da API, auditoria e
automacao de atrasos nunca tocam o backend diretamente. Operacoes que nao
encontram o id retornam None (ou False no delete) em vez de levantar erro;
falhas de I/O do backend sobem como StorageError.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from app.storage import schemas


ATTACHMENT_OWNERS = {
    "project": "project_id",
    "subproject": "subproject_id",
    "activity": "activity_id",
}


class StorageError(Exception):
    """Falha do backend de persistencia (conexao, transacao, integridade)."""


def utcnow() -> datetime:
    return datetime.utcnow()


def _not_before(previous: Optional[datetime], now: datetime) -> datetime:
    if previous is not None and previous > now:
        return previous
    return now


def apply_changes(current: dict[str, Any], changes: dict[str, Any], now: datetime) -> dict[str, Any]:
    """
    Mescla uma atualizacao parcial sobre o estado atual.

    - id e created_at nunca mudam;
    - updated_at recebe o instante da chamada (quando a entidade o possui);
    - status_updated_at so muda quando status e enviado e difere do atual;
    - is_delayed enviado explicitamente sobrescreve o valor salvo.
    """
    merged = dict(current)
    for key, value in changes.items():
        if key in {"id", "created_at", "updated_at", "status_updated_at"}:
            continue
        merged[key] = value
    if "updated_at" in current:
        merged["updated_at"] = _not_before(current.get("updated_at"), now)
    if "status_updated_at" in current and changes.get("status") not in (None, current.get("status")):
        merged["status_updated_at"] = _not_before(current.get("status_updated_at"), now)
    return merged


class Storage(ABC):
    # Users
    @abstractmethod
    async def create_user(self, data: schemas.UserCreate) -> schemas.User: ...

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[schemas.User]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[schemas.User]: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[schemas.User]: ...

    @abstractmethod
    async def list_users(self) -> list[schemas.User]: ...

    # Projects
    @abstractmethod
    async def create_project(self, data: schemas.ProjectCreate) -> schemas.Project: ...

    @abstractmethod
    async def get_project(self, project_id: int) -> Optional[schemas.Project]: ...

    @abstractmethod
    async def update_project(
        self, project_id: int, data: schemas.ProjectPatch
    ) -> Optional[schemas.Project]: ...

    @abstractmethod
    async def delete_project(self, project_id: int) -> bool: ...

    @abstractmethod
    async def list_projects(self) -> list[schemas.Project]: ...

    @abstractmethod
    async def list_projects_by_responsible(self, user_id: int) -> list[schemas.Project]: ...

    @abstractmethod
    async def list_projects_by_status(self, status: str) -> list[schemas.Project]: ...

    @abstractmethod
    async def list_projects_by_municipality(self, municipality: str) -> list[schemas.Project]: ...

    # Contacts
    @abstractmethod
    async def create_contact(self, data: schemas.ContactCreate) -> schemas.Contact: ...

    @abstractmethod
    async def list_contacts_by_project(self, project_id: int) -> list[schemas.Contact]: ...

    # Project updates (diario)
    @abstractmethod
    async def create_project_update(
        self, data: schemas.ProjectUpdateCreate
    ) -> schemas.ProjectUpdate: ...

    @abstractmethod
    async def list_project_updates_by_project(self, project_id: int) -> list[schemas.ProjectUpdate]:
        """Mais recente primeiro."""

    async def get_latest_project_update(self, project_id: int) -> Optional[schemas.ProjectUpdate]:
        updates = await self.list_project_updates_by_project(project_id)
        return updates[0] if updates else None

    # Subprojects
    @abstractmethod
    async def create_subproject(self, data: schemas.SubprojectCreate) -> schemas.Subproject: ...

    @abstractmethod
    async def get_subproject(self, subproject_id: int) -> Optional[schemas.Subproject]: ...

    @abstractmethod
    async def update_subproject(
        self, subproject_id: int, data: schemas.SubprojectPatch
    ) -> Optional[schemas.Subproject]: ...

    @abstractmethod
    async def delete_subproject(self, subproject_id: int) -> bool: ...

    @abstractmethod
    async def list_subprojects_by_project(self, project_id: int) -> list[schemas.Subproject]: ...

    @abstractmethod
    async def list_subprojects_by_responsible(self, user_id: int) -> list[schemas.Subproject]: ...

    # Activities
    @abstractmethod
    async def create_activity(self, data: schemas.ActivityCreate) -> schemas.Activity: ...

    @abstractmethod
    async def get_activity(self, activity_id: int) -> Optional[schemas.Activity]: ...

    @abstractmethod
    async def update_activity(
        self, activity_id: int, data: schemas.ActivityPatch
    ) -> Optional[schemas.Activity]: ...

    @abstractmethod
    async def delete_activity(self, activity_id: int) -> bool: ...

    @abstractmethod
    async def list_activities_by_subproject(self, subproject_id: int) -> list[schemas.Activity]: ...

    @abstractmethod
    async def list_activities_by_responsible(self, user_id: int) -> list[schemas.Activity]: ...

    @abstractmethod
    async def list_delayed_activities(self) -> list[schemas.Activity]: ...

    # Activity comments
    @abstractmethod
    async def create_activity_comment(
        self, data: schemas.ActivityCommentCreate
    ) -> schemas.ActivityComment: ...

    @abstractmethod
    async def list_activity_comments_by_activity(
        self, activity_id: int
    ) -> list[schemas.ActivityComment]:
        """Mais antigo primeiro."""

    # Attachments
    @abstractmethod
    async def create_attachment(self, data: schemas.AttachmentCreate) -> schemas.Attachment: ...

    @abstractmethod
    async def list_attachments_by_entity(
        self, entity_type: str, entity_id: int
    ) -> list[schemas.Attachment]: ...

    # Events
    @abstractmethod
    async def create_event(self, data: schemas.EventCreate) -> schemas.Event: ...

    @abstractmethod
    async def get_event(self, event_id: int) -> Optional[schemas.Event]: ...

    @abstractmethod
    async def update_event(self, event_id: int, data: schemas.EventPatch) -> Optional[schemas.Event]: ...

    @abstractmethod
    async def delete_event(self, event_id: int) -> bool: ...

    @abstractmethod
    async def list_events(self) -> list[schemas.Event]: ...

    @abstractmethod
    async def list_events_by_project(self, project_id: int) -> list[schemas.Event]: ...

    @abstractmethod
    async def list_events_by_subproject(self, subproject_id: int) -> list[schemas.Event]: ...

    @abstractmethod
    async def list_events_by_date_range(self, start: datetime, end: datetime) -> list[schemas.Event]:
        """Eventos cujo inicio cai em [start, end]; a data final do evento e ignorada."""

    # Atualizacao com snapshot anterior
    @abstractmethod
    async def update_tracked(
        self, entity_type: str, entity_id: int, data: schemas.Payload
    ) -> Optional[tuple[schemas.Entity, schemas.Entity]]:
        """
        Como update_<entidade>, mas devolve (antes, depois).

        O estado "antes" e lido dentro da mesma trava/transacao da escrita,
        entao corresponde exatamente ao que foi mesclado.
        """

    # Audit logs (somente insercao)
    @abstractmethod
    async def create_audit_log(self, data: schemas.AuditLogCreate) -> schemas.AuditLog: ...

    @abstractmethod
    async def list_audit_logs_by_entity(
        self, entity_type: str, entity_id: int
    ) -> list[schemas.AuditLog]:
        """Mais recente primeiro."""

    # Dashboard
    async def get_dashboard_stats(self) -> schemas.DashboardStats:
        projects = await self.list_projects()
        return schemas.DashboardStats(
            total_projects=len(projects),
            active_projects=sum(1 for p in projects if p.status == schemas.Status.EM_ANDAMENTO.value),
            delayed_projects=sum(1 for p in projects if p.is_delayed),
            completed_projects=sum(1 for p in projects if p.status == schemas.Status.FINALIZADO.value),
        )
