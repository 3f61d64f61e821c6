import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.db import models
from app.storage import schemas
from app.storage.base import ATTACHMENT_OWNERS, Storage, StorageError, apply_changes, utcnow

logger = logging.getLogger("gestor.storage")

_UPDATABLE = {
    "project": (models.Project, schemas.Project),
    "subproject": (models.Subproject, schemas.Subproject),
    "activity": (models.Activity, schemas.Activity),
    "event": (models.Event, schemas.Event),
}


class SqlStorage(Storage):
    """Backend relacional via SQLAlchemy: uma transacao por operacao."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _run(self, func, *args, **kwargs):
        # sessao sincrona fora do event loop
        return await run_in_threadpool(func, *args, **kwargs)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("storage transaction failed: %s", exc)
            raise StorageError(str(exc)) from exc
        finally:
            db.close()

    def _insert(self, model, schema, values: dict[str, Any]):
        with self._transaction() as db:
            row = model(**values)
            db.add(row)
            db.flush()
            return schema.model_validate(row)

    def _stamped(self, payload: schemas.Payload, *fields: str) -> dict[str, Any]:
        now = self._clock()
        values = payload.model_dump()
        for field in fields:
            values[field] = now
        return values

    def _get(self, model, schema, row_id: int):
        with self._transaction() as db:
            row = db.get(model, row_id)
            return schema.model_validate(row) if row is not None else None

    def _update(self, model, schema, row_id: int, payload: schemas.Payload):
        with self._transaction() as db:
            row = db.get(model, row_id, with_for_update=True)
            if row is None:
                return None
            before = schema.model_validate(row)
            current = before.model_dump()
            merged = apply_changes(current, payload.changes(), self._clock())
            for key, value in merged.items():
                if key != "id":
                    setattr(row, key, value)
            db.flush()
            return before, schema.model_validate(row)

    async def _updated(self, model, schema, row_id: int, payload: schemas.Payload):
        changed = await self._run(self._update, model, schema, row_id, payload)
        return changed[1] if changed else None

    async def update_tracked(self, entity_type: str, entity_id: int, data: schemas.Payload):
        if entity_type not in _UPDATABLE:
            raise ValueError(f"Entidade sem atualizacao: {entity_type}")
        model, schema = _UPDATABLE[entity_type]
        return await self._run(self._update, model, schema, entity_id, data)

    def _delete(self, model, row_id: int) -> bool:
        with self._transaction() as db:
            row = db.get(model, row_id)
            if row is None:
                return False
            db.delete(row)
            return True

    def _list(self, model, schema, *criteria, order_by=None):
        with self._transaction() as db:
            query = db.query(model).filter(*criteria)
            query = query.order_by(*(order_by if order_by is not None else [model.id]))
            return [schema.model_validate(row) for row in query.all()]

    # Users
    async def create_user(self, data: schemas.UserCreate) -> schemas.User:
        return await self._run(self._insert, models.User, schemas.User, data.model_dump())

    async def get_user(self, user_id: int) -> Optional[schemas.User]:
        return await self._run(self._get, models.User, schemas.User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[schemas.User]:
        users = await self._run(self._list, models.User, schemas.User, models.User.username == username)
        return users[0] if users else None

    async def get_user_by_email(self, email: str) -> Optional[schemas.User]:
        users = await self._run(self._list, models.User, schemas.User, models.User.email == email)
        return users[0] if users else None

    async def list_users(self) -> list[schemas.User]:
        return await self._run(self._list, models.User, schemas.User)

    # Projects
    async def create_project(self, data: schemas.ProjectCreate) -> schemas.Project:
        values = self._stamped(data, "status_updated_at", "created_at", "updated_at")
        values["is_delayed"] = False
        return await self._run(self._insert, models.Project, schemas.Project, values)

    async def get_project(self, project_id: int) -> Optional[schemas.Project]:
        return await self._run(self._get, models.Project, schemas.Project, project_id)

    async def update_project(self, project_id: int, data: schemas.ProjectPatch) -> Optional[schemas.Project]:
        return await self._updated(models.Project, schemas.Project, project_id, data)

    async def delete_project(self, project_id: int) -> bool:
        return await self._run(self._delete, models.Project, project_id)

    async def list_projects(self) -> list[schemas.Project]:
        return await self._run(self._list, models.Project, schemas.Project)

    async def list_projects_by_responsible(self, user_id: int) -> list[schemas.Project]:
        return await self._run(self._list, models.Project, schemas.Project, models.Project.responsible_id == user_id)

    async def list_projects_by_status(self, status: str) -> list[schemas.Project]:
        return await self._run(self._list, models.Project, schemas.Project, models.Project.status == status)

    async def list_projects_by_municipality(self, municipality: str) -> list[schemas.Project]:
        return await self._run(self._list, models.Project, schemas.Project, models.Project.municipality == municipality)

    # Contacts
    async def create_contact(self, data: schemas.ContactCreate) -> schemas.Contact:
        return await self._run(self._insert, models.Contact, schemas.Contact, self._stamped(data, "created_at"))

    async def list_contacts_by_project(self, project_id: int) -> list[schemas.Contact]:
        return await self._run(self._list, models.Contact, schemas.Contact, models.Contact.project_id == project_id)

    # Project updates
    async def create_project_update(self, data: schemas.ProjectUpdateCreate) -> schemas.ProjectUpdate:
        return await self._run(self._insert, models.ProjectUpdate, schemas.ProjectUpdate, self._stamped(data, "created_at"))

    async def list_project_updates_by_project(self, project_id: int) -> list[schemas.ProjectUpdate]:
        return await self._run(self._list, 
            models.ProjectUpdate,
            schemas.ProjectUpdate,
            models.ProjectUpdate.project_id == project_id,
            order_by=[models.ProjectUpdate.created_at.desc(), models.ProjectUpdate.id.desc()],
        )

    # Subprojects
    async def create_subproject(self, data: schemas.SubprojectCreate) -> schemas.Subproject:
        values = self._stamped(data, "status_updated_at", "created_at", "updated_at")
        return await self._run(self._insert, models.Subproject, schemas.Subproject, values)

    async def get_subproject(self, subproject_id: int) -> Optional[schemas.Subproject]:
        return await self._run(self._get, models.Subproject, schemas.Subproject, subproject_id)

    async def update_subproject(
        self, subproject_id: int, data: schemas.SubprojectPatch
    ) -> Optional[schemas.Subproject]:
        return await self._updated(models.Subproject, schemas.Subproject, subproject_id, data)

    async def delete_subproject(self, subproject_id: int) -> bool:
        return await self._run(self._delete, models.Subproject, subproject_id)

    async def list_subprojects_by_project(self, project_id: int) -> list[schemas.Subproject]:
        return await self._run(self._list, models.Subproject, schemas.Subproject, models.Subproject.project_id == project_id)

    async def list_subprojects_by_responsible(self, user_id: int) -> list[schemas.Subproject]:
        return await self._run(self._list, models.Subproject, schemas.Subproject, models.Subproject.responsible_id == user_id)

    # Activities
    async def create_activity(self, data: schemas.ActivityCreate) -> schemas.Activity:
        values = self._stamped(data, "status_updated_at", "created_at", "updated_at")
        values["is_delayed"] = False
        return await self._run(self._insert, models.Activity, schemas.Activity, values)

    async def get_activity(self, activity_id: int) -> Optional[schemas.Activity]:
        return await self._run(self._get, models.Activity, schemas.Activity, activity_id)

    async def update_activity(self, activity_id: int, data: schemas.ActivityPatch) -> Optional[schemas.Activity]:
        return await self._updated(models.Activity, schemas.Activity, activity_id, data)

    async def delete_activity(self, activity_id: int) -> bool:
        return await self._run(self._delete, models.Activity, activity_id)

    async def list_activities_by_subproject(self, subproject_id: int) -> list[schemas.Activity]:
        return await self._run(self._list, models.Activity, schemas.Activity, models.Activity.subproject_id == subproject_id)

    async def list_activities_by_responsible(self, user_id: int) -> list[schemas.Activity]:
        return await self._run(self._list, models.Activity, schemas.Activity, models.Activity.responsible_id == user_id)

    async def list_delayed_activities(self) -> list[schemas.Activity]:
        return await self._run(self._list, models.Activity, schemas.Activity, models.Activity.is_delayed.is_(True))

    # Activity comments
    async def create_activity_comment(self, data: schemas.ActivityCommentCreate) -> schemas.ActivityComment:
        return await self._run(self._insert, models.ActivityComment, schemas.ActivityComment, self._stamped(data, "created_at"))

    async def list_activity_comments_by_activity(self, activity_id: int) -> list[schemas.ActivityComment]:
        return await self._run(self._list, 
            models.ActivityComment,
            schemas.ActivityComment,
            models.ActivityComment.activity_id == activity_id,
            order_by=[models.ActivityComment.created_at.asc(), models.ActivityComment.id.asc()],
        )

    # Attachments
    async def create_attachment(self, data: schemas.AttachmentCreate) -> schemas.Attachment:
        return await self._run(self._insert, models.Attachment, schemas.Attachment, self._stamped(data, "created_at"))

    async def list_attachments_by_entity(self, entity_type: str, entity_id: int) -> list[schemas.Attachment]:
        field = ATTACHMENT_OWNERS.get(entity_type)
        if field is None:
            return []
        return await self._run(self._list, models.Attachment, schemas.Attachment, getattr(models.Attachment, field) == entity_id)

    # Events
    async def create_event(self, data: schemas.EventCreate) -> schemas.Event:
        return await self._run(self._insert, models.Event, schemas.Event, self._stamped(data, "created_at", "updated_at"))

    async def get_event(self, event_id: int) -> Optional[schemas.Event]:
        return await self._run(self._get, models.Event, schemas.Event, event_id)

    async def update_event(self, event_id: int, data: schemas.EventPatch) -> Optional[schemas.Event]:
        return await self._updated(models.Event, schemas.Event, event_id, data)

    async def delete_event(self, event_id: int) -> bool:
        return await self._run(self._delete, models.Event, event_id)

    async def list_events(self) -> list[schemas.Event]:
        return await self._run(self._list, models.Event, schemas.Event)

    async def list_events_by_project(self, project_id: int) -> list[schemas.Event]:
        return await self._run(self._list, models.Event, schemas.Event, models.Event.project_id == project_id)

    async def list_events_by_subproject(self, subproject_id: int) -> list[schemas.Event]:
        return await self._run(self._list, models.Event, schemas.Event, models.Event.subproject_id == subproject_id)

    async def list_events_by_date_range(self, start: datetime, end: datetime) -> list[schemas.Event]:
        return await self._run(self._list, 
            models.Event,
            schemas.Event,
            models.Event.start_date >= schemas.naive_utc(start),
            models.Event.start_date <= schemas.naive_utc(end),
        )

    # Audit logs
    async def create_audit_log(self, data: schemas.AuditLogCreate) -> schemas.AuditLog:
        return await self._run(self._insert, models.AuditLog, schemas.AuditLog, self._stamped(data, "created_at"))

    async def list_audit_logs_by_entity(self, entity_type: str, entity_id: int) -> list[schemas.AuditLog]:
        return await self._run(self._list, 
            models.AuditLog,
            schemas.AuditLog,
            models.AuditLog.entity_type == entity_type,
            models.AuditLog.entity_id == entity_id,
            order_by=[models.AuditLog.created_at.desc(), models.AuditLog.id.desc()],
        )
