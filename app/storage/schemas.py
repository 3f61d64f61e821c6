from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Status(str, Enum):
    EM_ANDAMENTO = "Em andamento"
    AGUARDANDO = "Aguardando"
    FINALIZADO = "Finalizado"
    ATRASADO = "Atrasado"

    @classmethod
    def parse(cls, value: Any) -> Optional["Status"]:
        """Status conhecido ou None para valores legados fora da lista."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


TERMINAL_STATUS = Status.FINALIZADO


def naive_utc(value: datetime) -> datetime:
    """Datas com fuso viram UTC sem tzinfo, o formato gravado no banco."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


UserRole = Literal["admin", "manager", "user"]


class ChecklistItem(BaseModel):
    title: str
    completed: bool = False


class Entity(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ----------------------------------------------------------------------------
# Entidades persistidas
# ----------------------------------------------------------------------------


class User(Entity):
    id: int
    username: str
    password_hash: str
    name: str
    email: str
    role: str = "user"
    avatar: Optional[str] = None


class Project(Entity):
    id: int
    name: str
    description: Optional[str] = None
    status: str = Status.EM_ANDAMENTO.value
    status_updated_at: datetime
    municipality: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    responsible_id: Optional[int] = None
    sla: Optional[int] = None
    is_delayed: bool = False
    checklist: Optional[list[ChecklistItem]] = None
    created_at: datetime
    updated_at: datetime


class Contact(Entity):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    project_id: Optional[int] = None
    created_at: datetime


class ProjectUpdate(Entity):
    id: int
    project_id: Optional[int] = None
    content: str
    user_id: Optional[int] = None
    created_at: datetime


class Subproject(Entity):
    id: int
    name: str
    description: Optional[str] = None
    status: str = Status.EM_ANDAMENTO.value
    status_updated_at: datetime
    project_id: Optional[int] = None
    responsible_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class Activity(Entity):
    id: int
    name: str
    description: Optional[str] = None
    status: str = Status.EM_ANDAMENTO.value
    status_updated_at: datetime
    subproject_id: Optional[int] = None
    responsible_id: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    sla: Optional[int] = None
    is_delayed: bool = False
    checklist: Optional[list[ChecklistItem]] = None
    created_at: datetime
    updated_at: datetime


class ActivityComment(Entity):
    id: int
    activity_id: Optional[int] = None
    content: str
    user_id: Optional[int] = None
    created_at: datetime


class Attachment(Entity):
    id: int
    filename: str
    path: str
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    activity_id: Optional[int] = None
    uploaded_by: Optional[int] = None
    created_at: datetime


class Event(Entity):
    id: int
    title: str
    description: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class AuditLog(Entity):
    id: int
    entity_type: str
    entity_id: int
    action: Literal["create", "update", "delete"]
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    user_id: Optional[int] = None
    created_at: datetime


class DashboardStats(BaseModel):
    total_projects: int
    active_projects: int
    delayed_projects: int
    completed_projects: int


# ----------------------------------------------------------------------------
# Entradas (criacao e atualizacao parcial)
# ----------------------------------------------------------------------------


class Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True, validate_default=True)

    NOT_NULL: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict[str, Any]:
        """Somente os campos enviados explicitamente; null em campo obrigatorio e ignorado."""
        data = self.model_dump(exclude_unset=True)
        return {key: value for key, value in data.items() if not (value is None and key in self.NOT_NULL)}


class UserCreate(Payload):
    username: str = Field(..., min_length=1)
    password_hash: str
    name: str = Field(..., min_length=1)
    email: str
    role: UserRole = "user"
    avatar: Optional[str] = None


class ProjectCreate(Payload):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: Status = Status.EM_ANDAMENTO
    municipality: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    responsible_id: Optional[int] = None
    sla: Optional[int] = Field(default=None, ge=0)
    checklist: Optional[list[ChecklistItem]] = None


class ProjectPatch(Payload):
    NOT_NULL = frozenset({"name", "status", "is_delayed"})

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[Status] = None
    municipality: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    responsible_id: Optional[int] = None
    sla: Optional[int] = Field(default=None, ge=0)
    is_delayed: Optional[bool] = None
    checklist: Optional[list[ChecklistItem]] = None


class ContactCreate(Payload):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    project_id: Optional[int] = None


class ProjectUpdateCreate(Payload):
    project_id: Optional[int] = None
    content: str = Field(..., min_length=1)
    user_id: Optional[int] = None


class SubprojectCreate(Payload):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: Status = Status.EM_ANDAMENTO
    project_id: Optional[int] = None
    responsible_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class SubprojectPatch(Payload):
    NOT_NULL = frozenset({"name", "status"})

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[Status] = None
    project_id: Optional[int] = None
    responsible_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ActivityCreate(Payload):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: Status = Status.EM_ANDAMENTO
    subproject_id: Optional[int] = None
    responsible_id: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    sla: Optional[int] = Field(default=None, ge=0)
    checklist: Optional[list[ChecklistItem]] = None


class ActivityPatch(Payload):
    NOT_NULL = frozenset({"name", "status", "is_delayed"})

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[Status] = None
    subproject_id: Optional[int] = None
    responsible_id: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    sla: Optional[int] = Field(default=None, ge=0)
    is_delayed: Optional[bool] = None
    checklist: Optional[list[ChecklistItem]] = None


class ActivityCommentCreate(Payload):
    activity_id: Optional[int] = None
    content: str = Field(..., min_length=1)
    user_id: Optional[int] = None


class AttachmentCreate(Payload):
    filename: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    activity_id: Optional[int] = None
    uploaded_by: Optional[int] = None


class EventCreate(Payload):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    created_by: Optional[int] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value) if value is not None else None


class EventPatch(Payload):
    NOT_NULL = frozenset({"title", "start_date"})

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value) if value is not None else None


class AuditLogCreate(Payload):
    entity_type: str
    entity_id: int
    action: Literal["create", "update", "delete"]
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    user_id: Optional[int] = None
