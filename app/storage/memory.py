import asyncio
import itertools
from datetime import datetime
from typing import Any, Callable, Generic, Optional, TypeVar

from app.storage import schemas
from app.storage.base import ATTACHMENT_OWNERS, Storage, apply_changes, utcnow

T = TypeVar("T", bound=schemas.Entity)


class _Table(Generic[T]):
    """Mapa id -> entidade com gerador de ids monotonico."""

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self.rows: dict[int, T] = {}
        self._ids = itertools.count(1)

    def insert(self, values: dict[str, Any]) -> T:
        row = self.model.model_validate({**values, "id": next(self._ids)})
        self.rows[row.id] = row
        return row.model_copy(deep=True)

    def get(self, row_id: int) -> Optional[T]:
        row = self.rows.get(row_id)
        return row.model_copy(deep=True) if row else None

    def replace(self, row_id: int, values: dict[str, Any]) -> T:
        row = self.model.model_validate(values)
        self.rows[row_id] = row
        return row.model_copy(deep=True)

    def delete(self, row_id: int) -> bool:
        return self.rows.pop(row_id, None) is not None

    def filter(self, predicate: Callable[[T], bool] = lambda row: True) -> list[T]:
        return [row.model_copy(deep=True) for row in self.rows.values() if predicate(row)]


class MemStorage(Storage):
    """Backend em memoria; cada leitura devolve uma copia independente."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self.users = _Table(schemas.User)
        self.projects = _Table(schemas.Project)
        self.contacts = _Table(schemas.Contact)
        self.project_updates = _Table(schemas.ProjectUpdate)
        self.subprojects = _Table(schemas.Subproject)
        self.activities = _Table(schemas.Activity)
        self.activity_comments = _Table(schemas.ActivityComment)
        self.attachments = _Table(schemas.Attachment)
        self.events = _Table(schemas.Event)
        self.audit_logs = _Table(schemas.AuditLog)

    def _stamped(self, payload: schemas.Payload, *fields: str) -> dict[str, Any]:
        now = self._clock()
        values = payload.model_dump()
        for field in fields:
            values[field] = now
        return values

    async def _update_pair(self, table: _Table, row_id: int, payload: schemas.Payload):
        async with self._lock:
            current = table.rows.get(row_id)
            if current is None:
                return None
            merged = apply_changes(current.model_dump(), payload.changes(), self._clock())
            return current.model_copy(deep=True), table.replace(row_id, merged)

    async def _update(self, table: _Table, row_id: int, payload: schemas.Payload):
        changed = await self._update_pair(table, row_id, payload)
        return changed[1] if changed else None

    async def update_tracked(self, entity_type: str, entity_id: int, data: schemas.Payload):
        tables = {
            "project": self.projects,
            "subproject": self.subprojects,
            "activity": self.activities,
            "event": self.events,
        }
        if entity_type not in tables:
            raise ValueError(f"Entidade sem atualizacao: {entity_type}")
        return await self._update_pair(tables[entity_type], entity_id, data)

    # Users
    async def create_user(self, data: schemas.UserCreate) -> schemas.User:
        return self.users.insert(data.model_dump())

    async def get_user(self, user_id: int) -> Optional[schemas.User]:
        return self.users.get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[schemas.User]:
        matches = self.users.filter(lambda user: user.username == username)
        return matches[0] if matches else None

    async def get_user_by_email(self, email: str) -> Optional[schemas.User]:
        matches = self.users.filter(lambda user: user.email == email)
        return matches[0] if matches else None

    async def list_users(self) -> list[schemas.User]:
        return self.users.filter()

    # Projects
    async def create_project(self, data: schemas.ProjectCreate) -> schemas.Project:
        values = self._stamped(data, "status_updated_at", "created_at", "updated_at")
        values["is_delayed"] = False
        return self.projects.insert(values)

    async def get_project(self, project_id: int) -> Optional[schemas.Project]:
        return self.projects.get(project_id)

    async def update_project(self, project_id: int, data: schemas.ProjectPatch) -> Optional[schemas.Project]:
        return await self._update(self.projects, project_id, data)

    async def delete_project(self, project_id: int) -> bool:
        return self.projects.delete(project_id)

    async def list_projects(self) -> list[schemas.Project]:
        return self.projects.filter()

    async def list_projects_by_responsible(self, user_id: int) -> list[schemas.Project]:
        return self.projects.filter(lambda project: project.responsible_id == user_id)

    async def list_projects_by_status(self, status: str) -> list[schemas.Project]:
        return self.projects.filter(lambda project: project.status == status)

    async def list_projects_by_municipality(self, municipality: str) -> list[schemas.Project]:
        return self.projects.filter(lambda project: project.municipality == municipality)

    # Contacts
    async def create_contact(self, data: schemas.ContactCreate) -> schemas.Contact:
        return self.contacts.insert(self._stamped(data, "created_at"))

    async def list_contacts_by_project(self, project_id: int) -> list[schemas.Contact]:
        return self.contacts.filter(lambda contact: contact.project_id == project_id)

    # Project updates
    async def create_project_update(self, data: schemas.ProjectUpdateCreate) -> schemas.ProjectUpdate:
        return self.project_updates.insert(self._stamped(data, "created_at"))

    async def list_project_updates_by_project(self, project_id: int) -> list[schemas.ProjectUpdate]:
        updates = self.project_updates.filter(lambda update: update.project_id == project_id)
        return sorted(updates, key=lambda update: (update.created_at, update.id), reverse=True)

    # Subprojects
    async def create_subproject(self, data: schemas.SubprojectCreate) -> schemas.Subproject:
        return self.subprojects.insert(self._stamped(data, "status_updated_at", "created_at", "updated_at"))

    async def get_subproject(self, subproject_id: int) -> Optional[schemas.Subproject]:
        return self.subprojects.get(subproject_id)

    async def update_subproject(
        self, subproject_id: int, data: schemas.SubprojectPatch
    ) -> Optional[schemas.Subproject]:
        return await self._update(self.subprojects, subproject_id, data)

    async def delete_subproject(self, subproject_id: int) -> bool:
        return self.subprojects.delete(subproject_id)

    async def list_subprojects_by_project(self, project_id: int) -> list[schemas.Subproject]:
        return self.subprojects.filter(lambda subproject: subproject.project_id == project_id)

    async def list_subprojects_by_responsible(self, user_id: int) -> list[schemas.Subproject]:
        return self.subprojects.filter(lambda subproject: subproject.responsible_id == user_id)

    # Activities
    async def create_activity(self, data: schemas.ActivityCreate) -> schemas.Activity:
        values = self._stamped(data, "status_updated_at", "created_at", "updated_at")
        values["is_delayed"] = False
        return self.activities.insert(values)

    async def get_activity(self, activity_id: int) -> Optional[schemas.Activity]:
        return self.activities.get(activity_id)

    async def update_activity(self, activity_id: int, data: schemas.ActivityPatch) -> Optional[schemas.Activity]:
        return await self._update(self.activities, activity_id, data)

    async def delete_activity(self, activity_id: int) -> bool:
        return self.activities.delete(activity_id)

    async def list_activities_by_subproject(self, subproject_id: int) -> list[schemas.Activity]:
        return self.activities.filter(lambda activity: activity.subproject_id == subproject_id)

    async def list_activities_by_responsible(self, user_id: int) -> list[schemas.Activity]:
        return self.activities.filter(lambda activity: activity.responsible_id == user_id)

    async def list_delayed_activities(self) -> list[schemas.Activity]:
        return self.activities.filter(lambda activity: activity.is_delayed)

    # Activity comments
    async def create_activity_comment(self, data: schemas.ActivityCommentCreate) -> schemas.ActivityComment:
        return self.activity_comments.insert(self._stamped(data, "created_at"))

    async def list_activity_comments_by_activity(self, activity_id: int) -> list[schemas.ActivityComment]:
        comments = self.activity_comments.filter(lambda comment: comment.activity_id == activity_id)
        return sorted(comments, key=lambda comment: (comment.created_at, comment.id))

    # Attachments
    async def create_attachment(self, data: schemas.AttachmentCreate) -> schemas.Attachment:
        return self.attachments.insert(self._stamped(data, "created_at"))

    async def list_attachments_by_entity(self, entity_type: str, entity_id: int) -> list[schemas.Attachment]:
        field = ATTACHMENT_OWNERS.get(entity_type)
        if field is None:
            return []
        return self.attachments.filter(lambda attachment: getattr(attachment, field) == entity_id)

    # Events
    async def create_event(self, data: schemas.EventCreate) -> schemas.Event:
        return self.events.insert(self._stamped(data, "created_at", "updated_at"))

    async def get_event(self, event_id: int) -> Optional[schemas.Event]:
        return self.events.get(event_id)

    async def update_event(self, event_id: int, data: schemas.EventPatch) -> Optional[schemas.Event]:
        return await self._update(self.events, event_id, data)

    async def delete_event(self, event_id: int) -> bool:
        return self.events.delete(event_id)

    async def list_events(self) -> list[schemas.Event]:
        return self.events.filter()

    async def list_events_by_project(self, project_id: int) -> list[schemas.Event]:
        return self.events.filter(lambda event: event.project_id == project_id)

    async def list_events_by_subproject(self, subproject_id: int) -> list[schemas.Event]:
        return self.events.filter(lambda event: event.subproject_id == subproject_id)

    async def list_events_by_date_range(self, start: datetime, end: datetime) -> list[schemas.Event]:
        start, end = schemas.naive_utc(start), schemas.naive_utc(end)
        return self.events.filter(lambda event: start <= event.start_date <= end)

    # Audit logs
    async def create_audit_log(self, data: schemas.AuditLogCreate) -> schemas.AuditLog:
        return self.audit_logs.insert(self._stamped(data, "created_at"))

    async def list_audit_logs_by_entity(self, entity_type: str, entity_id: int) -> list[schemas.AuditLog]:
        logs = self.audit_logs.filter(
            lambda log: log.entity_type == entity_type and log.entity_id == entity_id
        )
        return sorted(logs, key=lambda log: (log.created_at, log.id), reverse=True)
