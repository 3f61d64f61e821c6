import asyncio
import unittest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

from app.services import scheduler as automation
from app.services.delays import SweepReport
from app.storage.memory import MemStorage


class RegisterJobsTests(unittest.TestCase):
    def test_delay_sweep_job_configuration(self):
        target = automation.build_scheduler()
        evaluator = MagicMock()
        automation.register_jobs(target, evaluator, warmup_seconds=5, interval_seconds=3600)
        job = target.get_job(automation.JOB_ID)
        self.assertIsNotNone(job)
        self.assertEqual(job.trigger.interval, timedelta(hours=1))
        self.assertIs(job.kwargs["evaluator"], evaluator)
        self.assertEqual(target._job_defaults["max_instances"], 1)
        self.assertTrue(target._job_defaults["coalesce"])

    def test_first_sweep_waits_for_warmup(self):
        target = automation.build_scheduler()
        tz = ZoneInfo(automation.settings.TIMEZONE)
        before = datetime.now(tz)
        automation.register_jobs(target, MagicMock(), warmup_seconds=5, interval_seconds=3600)
        after = datetime.now(tz)
        job = target.get_job(automation.JOB_ID)
        self.assertLessEqual(before + timedelta(seconds=5), job.next_run_time)
        self.assertLessEqual(job.next_run_time, after + timedelta(seconds=5))
        self.assertEqual(job.next_run_time.utcoffset(), after.utcoffset())


class SweepJobTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        automation.state["last_report"] = None

    async def test_job_stores_last_summary(self):
        report = SweepReport(started_at=datetime(2026, 3, 10, 12, 0), flagged=["project:1"])
        report.finished_at = report.started_at
        evaluator = MagicMock()
        evaluator.run_sweep = AsyncMock(return_value=report)
        summary = await automation._job_delay_sweep(evaluator)
        self.assertEqual(summary["flagged"], 1)
        self.assertEqual(automation.state["last_report"], summary)
        self.assertIsNone(automation.state["current_task"])

    async def test_job_failure_is_logged_not_raised(self):
        evaluator = MagicMock()
        evaluator.run_sweep = AsyncMock(side_effect=RuntimeError("boom"))
        with self.assertLogs("gestor.scheduler", level="ERROR"):
            self.assertIsNone(await automation._job_delay_sweep(evaluator))
        self.assertIsNone(automation.state["last_report"])

    async def test_running_sweep_can_be_cancelled(self):
        started = asyncio.Event()

        async def slow_sweep():
            started.set()
            await asyncio.sleep(60)

        evaluator = MagicMock()
        evaluator.run_sweep = slow_sweep
        task = asyncio.create_task(automation._job_delay_sweep(evaluator))
        await started.wait()
        automation.stop_automation()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertIsNone(automation.state["current_task"])


class StartStopTests(unittest.IsolatedAsyncioTestCase):
    async def test_start_and_stop(self):
        with patch.object(automation.settings, "AUTOMATION_WARMUP_SECONDS", 3600):
            started = automation.start_automation(MemStorage())
        try:
            self.assertTrue(started.running)
            self.assertIs(automation.start_automation(MemStorage()), started)
            self.assertIsNotNone(started.get_job(automation.JOB_ID))
        finally:
            automation.stop_automation()
        self.assertIsNone(automation.scheduler)
