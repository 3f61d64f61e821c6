import unittest
from datetime import date

from app.services.audit import AuditRecorder, snapshot
from app.storage import schemas
from app.storage.base import StorageError
from app.storage.memory import MemStorage


class BrokenAuditStorage(MemStorage):
    async def create_audit_log(self, data):
        raise StorageError("disco cheio")


class AuditRecorderTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.storage = MemStorage()
        self.recorder = AuditRecorder(self.storage)
        self.project = await self.storage.create_project(
            schemas.ProjectCreate(
                name="Ponte Norte",
                sla=5,
                end_date=date(2026, 3, 20),
                checklist=[{"title": "Licenca"}],
            )
        )

    async def test_create_appends_one_row(self):
        log = await self.recorder.record_create("project", self.project, actor_id=3)
        self.assertEqual(log.entity_type, "project")
        self.assertEqual(log.entity_id, self.project.id)
        self.assertEqual(log.action, "create")
        self.assertEqual(log.user_id, 3)
        self.assertIsNone(log.before)
        self.assertEqual(log.after["name"], "Ponte Norte")
        self.assertEqual(log.after["end_date"], "2026-03-20")
        logs = await self.storage.list_audit_logs_by_entity("project", self.project.id)
        self.assertEqual(len(logs), 1)

    async def test_snapshot_is_not_affected_by_later_mutation(self):
        await self.recorder.record_create("project", self.project, actor_id=1)
        self.project.name = "Outro nome"
        self.project.checklist[0].completed = True
        [log] = await self.storage.list_audit_logs_by_entity("project", self.project.id)
        self.assertEqual(log.after["name"], "Ponte Norte")
        self.assertFalse(log.after["checklist"][0]["completed"])

    async def test_snapshot_of_plain_dict_is_a_copy(self):
        live = {"name": "A", "tags": ["x"]}
        copied = snapshot(live)
        live["tags"].append("y")
        self.assertEqual(copied, {"name": "A", "tags": ["x"]})

    async def test_update_records_before_and_after(self):
        before = await self.storage.get_project(self.project.id)
        after = await self.storage.update_project(
            self.project.id, schemas.ProjectPatch(status=schemas.Status.FINALIZADO)
        )
        log = await self.recorder.record_update("project", self.project.id, before, after, actor_id=2)
        self.assertEqual(log.action, "update")
        self.assertEqual(log.before["status"], "Em andamento")
        self.assertEqual(log.after["status"], "Finalizado")

    async def test_delete_records_before_only(self):
        log = await self.recorder.record_delete("project", self.project.id, self.project, actor_id=None)
        self.assertEqual(log.action, "delete")
        self.assertEqual(log.before["id"], self.project.id)
        self.assertIsNone(log.after)
        self.assertIsNone(log.user_id)

    async def test_unknown_entity_type_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.recorder.record_create("tenant", self.project, actor_id=1)
        self.assertEqual(await self.storage.list_audit_logs_by_entity("tenant", self.project.id), [])

    async def test_storage_failure_propagates(self):
        recorder = AuditRecorder(BrokenAuditStorage())
        with self.assertRaises(StorageError):
            await recorder.record_create("project", self.project, actor_id=1)
