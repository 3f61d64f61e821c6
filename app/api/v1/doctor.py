import logging

from fastapi import APIRouter

from app.core import config
from app.services import scheduler as automation

router = APIRouter()
logger = logging.getLogger("gestor.doctor")


@router.get("/doctor")
def doctor():
    settings = config.settings
    running = automation.scheduler is not None and automation.scheduler.running
    scheduler_ok = running or not settings.SCHEDULER_ENABLED
    if not scheduler_ok:
        logger.warning("doctor: automacao habilitada mas agendador parado")
    next_run = None
    if running:
        job = automation.scheduler.get_job(automation.JOB_ID)
        if job is not None and job.next_run_time is not None:
            next_run = job.next_run_time.isoformat()

    return {
        "status": "OK" if scheduler_ok else "WARN",
        "storage": settings.STORAGE_BACKEND,
        "scheduler": "OK" if running else ("OFF" if not settings.SCHEDULER_ENABLED else "ERROR"),
        "next_sweep": next_run,
        "last_sweep": automation.state.get("last_report"),
        "cors": "OK" if settings.BACKEND_CORS_ORIGINS else "ERROR",
    }
