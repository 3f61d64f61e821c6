import asyncio
import contextlib
import time
import unittest
from datetime import date, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.db import models
from app.db.session import build_engine
from app.storage import schemas
from app.storage.memory import MemStorage
from app.storage.sql import SqlStorage


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _make_sql_storage(clock) -> SqlStorage:
    engine = build_engine("sqlite:///:memory:")
    models.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    return SqlStorage(factory, clock=clock)


class StorageContract:
    """Comportamento comum aos dois backends."""

    def make_storage(self, clock):
        raise NotImplementedError

    def setUp(self):
        self.clock = FakeClock(datetime(2026, 3, 10, 15, 0, 0))
        self.storage = self.make_storage(self.clock)

    async def _project(self, **fields):
        data = {"name": "Ponte Norte", "sla": 5, "end_date": date(2026, 3, 20)}
        data.update(fields)
        return await self.storage.create_project(schemas.ProjectCreate(**data))

    async def test_create_then_get_returns_same_entity(self):
        project = await self._project(municipality="Campinas", checklist=[{"title": "Licenca"}])
        self.assertEqual(project.id, 1)
        self.assertEqual(project.status, "Em andamento")
        self.assertFalse(project.is_delayed)
        self.assertEqual(project.created_at, self.clock.now)
        self.assertEqual(project.status_updated_at, self.clock.now)
        fetched = await self.storage.get_project(project.id)
        self.assertEqual(fetched, project)
        self.assertEqual(fetched.checklist[0].title, "Licenca")

    async def test_get_unknown_returns_none(self):
        self.assertIsNone(await self.storage.get_project(999))
        self.assertIsNone(await self.storage.get_activity(999))
        self.assertIsNone(await self.storage.update_project(999, schemas.ProjectPatch(name="X")))
        self.assertFalse(await self.storage.delete_project(999))

    async def test_status_change_moves_status_updated_at(self):
        project = await self._project()
        self.clock.advance(hours=2)
        updated = await self.storage.update_project(
            project.id, schemas.ProjectPatch(status=schemas.Status.AGUARDANDO)
        )
        self.assertEqual(updated.status, "Aguardando")
        self.assertEqual(updated.status_updated_at, self.clock.now)
        self.assertEqual(updated.updated_at, self.clock.now)
        self.assertEqual(updated.created_at, project.created_at)

    async def test_same_status_or_other_fields_keep_status_updated_at(self):
        project = await self._project()
        self.clock.advance(hours=1)
        same = await self.storage.update_project(
            project.id, schemas.ProjectPatch(status="Em andamento", description="sem mudanca")
        )
        self.assertEqual(same.status_updated_at, project.status_updated_at)
        self.assertEqual(same.description, "sem mudanca")
        self.clock.advance(hours=1)
        other = await self.storage.update_project(project.id, schemas.ProjectPatch(sla=10))
        self.assertEqual(other.status_updated_at, project.status_updated_at)
        self.assertEqual(other.sla, 10)

    async def test_status_updated_at_never_moves_backwards(self):
        project = await self._project()
        self.clock.advance(hours=-3)
        updated = await self.storage.update_project(project.id, schemas.ProjectPatch(status="Finalizado"))
        self.assertEqual(updated.status_updated_at, project.status_updated_at)
        self.assertEqual(updated.updated_at, project.updated_at)

    async def test_explicit_is_delayed_overwrites_flag(self):
        activity = await self.storage.create_activity(schemas.ActivityCreate(name="Fundacao", sla=1))
        updated = await self.storage.update_activity(activity.id, schemas.ActivityPatch(is_delayed=True))
        self.assertTrue(updated.is_delayed)
        self.assertEqual([a.id for a in await self.storage.list_delayed_activities()], [activity.id])

    async def test_null_in_required_field_is_ignored(self):
        project = await self._project()
        updated = await self.storage.update_project(
            project.id, schemas.ProjectPatch(name=None, status=None, end_date=None)
        )
        self.assertEqual(updated.name, "Ponte Norte")
        self.assertEqual(updated.status, "Em andamento")
        self.assertIsNone(updated.end_date)

    async def test_returned_entities_are_independent_copies(self):
        project = await self._project(checklist=[{"title": "Licenca"}])
        project.name = "alterado"
        project.checklist[0].completed = True
        fetched = await self.storage.get_project(project.id)
        self.assertEqual(fetched.name, "Ponte Norte")
        self.assertFalse(fetched.checklist[0].completed)

    async def test_delete_project_does_not_cascade(self):
        project = await self._project()
        first = await self.storage.create_subproject(schemas.SubprojectCreate(name="Lote 1", project_id=project.id))
        second = await self.storage.create_subproject(schemas.SubprojectCreate(name="Lote 2", project_id=project.id))
        self.assertTrue(await self.storage.delete_project(project.id))
        self.assertIsNone(await self.storage.get_project(project.id))
        self.assertIsNotNone(await self.storage.get_subproject(first.id))
        self.assertIsNotNone(await self.storage.get_subproject(second.id))

    async def test_project_filters(self):
        await self._project(name="A", responsible_id=7, municipality="Campinas")
        await self._project(name="B", status="Aguardando", municipality="Sorocaba")
        await self._project(name="C", responsible_id=7)
        by_responsible = await self.storage.list_projects_by_responsible(7)
        self.assertEqual([p.name for p in by_responsible], ["A", "C"])
        by_status = await self.storage.list_projects_by_status("Aguardando")
        self.assertEqual([p.name for p in by_status], ["B"])
        by_city = await self.storage.list_projects_by_municipality("Campinas")
        self.assertEqual([p.name for p in by_city], ["A"])
        self.assertEqual([p.name for p in await self.storage.list_projects()], ["A", "B", "C"])

    async def test_updates_newest_first_and_comments_oldest_first(self):
        project = await self._project()
        activity = await self.storage.create_activity(schemas.ActivityCreate(name="Fundacao"))
        for content in ("primeira", "segunda", "terceira"):
            await self.storage.create_project_update(
                schemas.ProjectUpdateCreate(project_id=project.id, content=content)
            )
            await self.storage.create_activity_comment(
                schemas.ActivityCommentCreate(activity_id=activity.id, content=content)
            )
            self.clock.advance(minutes=5)
        updates = await self.storage.list_project_updates_by_project(project.id)
        self.assertEqual([u.content for u in updates], ["terceira", "segunda", "primeira"])
        latest = await self.storage.get_latest_project_update(project.id)
        self.assertEqual(latest.content, "terceira")
        comments = await self.storage.list_activity_comments_by_activity(activity.id)
        self.assertEqual([c.content for c in comments], ["primeira", "segunda", "terceira"])

    async def test_event_date_range_uses_start_date_only(self):
        inside = await self.storage.create_event(
            schemas.EventCreate(
                title="Vistoria",
                start_date=datetime(2026, 3, 1, 9, 0),
                end_date=datetime(2026, 4, 30, 9, 0),
            )
        )
        await self.storage.create_event(
            schemas.EventCreate(title="Reuniao", start_date=datetime(2026, 2, 27, 9, 0), end_date=datetime(2026, 3, 2))
        )
        edge = await self.storage.create_event(schemas.EventCreate(title="Entrega", start_date=datetime(2026, 3, 31)))
        found = await self.storage.list_events_by_date_range(datetime(2026, 3, 1, 9, 0), datetime(2026, 3, 31))
        self.assertEqual([e.id for e in found], [inside.id, edge.id])

    async def test_attachments_by_owner(self):
        project = await self._project()
        attachment = await self.storage.create_attachment(
            schemas.AttachmentCreate(filename="planta.pdf", path="/files/planta.pdf", project_id=project.id)
        )
        await self.storage.create_attachment(
            schemas.AttachmentCreate(filename="foto.jpg", path="/files/foto.jpg", activity_id=project.id)
        )
        found = await self.storage.list_attachments_by_entity("project", project.id)
        self.assertEqual([a.id for a in found], [attachment.id])
        self.assertEqual(await self.storage.list_attachments_by_entity("desconhecido", project.id), [])

    async def test_audit_logs_newest_first(self):
        for action in ("create", "update", "delete"):
            await self.storage.create_audit_log(
                schemas.AuditLogCreate(entity_type="project", entity_id=1, action=action)
            )
            self.clock.advance(seconds=1)
        await self.storage.create_audit_log(schemas.AuditLogCreate(entity_type="activity", entity_id=1, action="create"))
        logs = await self.storage.list_audit_logs_by_entity("project", 1)
        self.assertEqual([log.action for log in logs], ["delete", "update", "create"])

    async def test_dashboard_stats(self):
        await self._project(name="A")
        await self._project(name="B", status="Finalizado")
        delayed = await self._project(name="C")
        await self.storage.update_project(delayed.id, schemas.ProjectPatch(is_delayed=True))
        stats = await self.storage.get_dashboard_stats()
        self.assertEqual(stats.total_projects, 3)
        self.assertEqual(stats.active_projects, 2)
        self.assertEqual(stats.completed_projects, 1)
        self.assertEqual(stats.delayed_projects, 1)

    async def test_users_by_username(self):
        user = await self.storage.create_user(
            schemas.UserCreate(username="maria", password_hash="x", name="Maria", email="maria@example.com")
        )
        self.assertEqual((await self.storage.get_user_by_username("maria")).id, user.id)
        self.assertIsNone(await self.storage.get_user_by_username("joao"))
        self.assertEqual(len(await self.storage.list_users()), 1)
        self.assertEqual((await self.storage.get_user_by_email("maria@example.com")).id, user.id)
        self.assertIsNone(await self.storage.get_user_by_email("joao@example.com"))

    async def test_update_tracked_returns_state_it_merged_onto(self):
        project = await self._project()
        self.clock.advance(hours=1)
        before, after = await self.storage.update_tracked(
            "project", project.id, schemas.ProjectPatch(status="Aguardando")
        )
        self.assertEqual(before, project)
        self.assertEqual(after.status, "Aguardando")
        self.clock.advance(hours=1)
        second_before, second_after = await self.storage.update_tracked(
            "project", project.id, schemas.ProjectPatch(status="Finalizado")
        )
        self.assertEqual(second_before, after)
        self.assertEqual(second_after.status_updated_at, self.clock.now)
        self.assertIsNone(
            await self.storage.update_tracked("project", 999, schemas.ProjectPatch(name="X"))
        )
        with self.assertRaises(ValueError):
            await self.storage.update_tracked("contact", project.id, schemas.ProjectPatch(name="X"))


class MemStorageTests(StorageContract, unittest.IsolatedAsyncioTestCase):
    def make_storage(self, clock):
        return MemStorage(clock=clock)


class SqlStorageTests(StorageContract, unittest.IsolatedAsyncioTestCase):
    def make_storage(self, clock):
        return _make_sql_storage(clock)


def test_status_parse_accepts_known_values_only():
    assert schemas.Status.parse("Finalizado") is schemas.Status.FINALIZADO
    assert schemas.Status.parse(schemas.Status.ATRASADO) is schemas.Status.ATRASADO
    assert schemas.Status.parse("finalizado") is None


def test_project_payload_rejects_unknown_status():
    with pytest.raises(ValidationError):
        schemas.ProjectCreate(name="X", status="Concluido")


def test_audit_row_keeps_json_snapshot(db_session):
    row = models.AuditLog(
        entity_type="project",
        entity_id=1,
        action="update",
        before={"name": "A", "checklist": [{"title": "x", "completed": False}]},
        after={"name": "B"},
    )
    db_session.add(row)
    db_session.commit()
    stored = db_session.get(models.AuditLog, row.id)
    assert stored.before["checklist"][0]["title"] == "x"
    assert schemas.AuditLog.model_validate(stored).after == {"name": "B"}


class MemStorageConcurrencyTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_updates_see_each_other(self):
        storage = MemStorage()
        project = await storage.create_project(schemas.ProjectCreate(name="Ponte Norte"))
        first, second = await asyncio.gather(
            storage.update_tracked("project", project.id, schemas.ProjectPatch(status="Aguardando")),
            storage.update_tracked("project", project.id, schemas.ProjectPatch(status="Finalizado")),
        )
        self.assertEqual(first[0].status, "Em andamento")
        self.assertEqual(second[0], first[1])


class SqlStorageEventLoopTests(unittest.IsolatedAsyncioTestCase):
    async def test_slow_queries_do_not_block_event_loop(self):
        engine = build_engine("sqlite:///:memory:")
        models.Base.metadata.create_all(bind=engine)

        @event.listens_for(engine, "before_cursor_execute")
        def _slow_query(*args):
            time.sleep(0.05)

        storage = SqlStorage(sessionmaker(bind=engine, expire_on_commit=False))
        ticks = 0

        async def heartbeat():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.005)
                ticks += 1

        task = asyncio.create_task(heartbeat())
        try:
            for name in ("A", "B", "C"):
                await storage.create_project(schemas.ProjectCreate(name=name))
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.assertGreater(ticks, 5)
        self.assertEqual(len(await storage.list_projects()), 3)


def test_duplicate_email_is_rejected_by_database(db_session):
    db_session.add(models.User(username="a", password_hash="x", name="A", email="dup@example.com"))
    db_session.commit()
    db_session.add(models.User(username="b", password_hash="x", name="B", email="dup@example.com"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()
