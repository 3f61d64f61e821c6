"""
Agendador da automacao de prazos.

Usa o AsyncIOScheduler do APScheduler no mesmo event loop da API: uma
varredura logo apos o aquecimento e depois em intervalo fixo. Nunca roda duas
varreduras ao mesmo tempo.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.services.audit import AuditRecorder
from app.services.delays import DelayEvaluator
from app.storage.base import Storage

logger = logging.getLogger("gestor.scheduler")

JOB_ID = "delay_sweep"

scheduler: Optional[AsyncIOScheduler] = None
state: dict[str, Any] = {"last_report": None, "current_task": None}


def build_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(
        timezone=settings.TIMEZONE,
        job_defaults={
            "coalesce": True,           # execucoes perdidas viram uma so
            "max_instances": 1,         # sem varreduras sobrepostas
            "misfire_grace_time": 3600,
        },
    )


def register_jobs(
    target: AsyncIOScheduler,
    evaluator: DelayEvaluator,
    warmup_seconds: Optional[int] = None,
    interval_seconds: Optional[int] = None,
) -> None:
    """Registra a varredura de atrasos."""
    warmup = settings.AUTOMATION_WARMUP_SECONDS if warmup_seconds is None else warmup_seconds
    interval = settings.AUTOMATION_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
    first_run = datetime.now(ZoneInfo(settings.TIMEZONE)) + timedelta(seconds=warmup)
    target.add_job(
        func=_job_delay_sweep,
        trigger=IntervalTrigger(seconds=interval, timezone=settings.TIMEZONE),
        next_run_time=first_run,
        id=JOB_ID,
        name="Varredura de atrasos (SLA)",
        kwargs={"evaluator": evaluator},
        replace_existing=True,
    )
    logger.info("Jobs registrados: %s", [job.id for job in target.get_jobs()])


async def _job_delay_sweep(evaluator: DelayEvaluator) -> Optional[dict]:
    state["current_task"] = asyncio.current_task()
    try:
        report = await evaluator.run_sweep()
        state["last_report"] = report.summary()
        return state["last_report"]
    except asyncio.CancelledError:
        logger.warning("Varredura de atrasos interrompida")
        raise
    except Exception as e:
        logger.error("Erro na varredura de atrasos: %s", e, exc_info=True)
        return None
    finally:
        state["current_task"] = None


def start_automation(storage: Storage) -> AsyncIOScheduler:
    """Inicia o agendador; chamado uma vez no startup da API."""
    global scheduler
    if scheduler is not None and scheduler.running:
        return scheduler
    recorder = AuditRecorder(storage) if settings.AUDIT_AUTOMATED_CHANGES else None
    evaluator = DelayEvaluator(storage, recorder=recorder)
    scheduler = build_scheduler()
    register_jobs(scheduler, evaluator)
    scheduler.start()
    logger.info("=== Automacao de prazos iniciada ===")
    return scheduler


def stop_automation() -> None:
    """Para o agendador e interrompe uma varredura em andamento."""
    global scheduler
    task = state.get("current_task")
    if task is not None and not task.done():
        task.cancel()
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("=== Automacao de prazos encerrada ===")
    scheduler = None
