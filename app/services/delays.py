"""
Automacao de prazos (SLA).

A cada varredura:
1. projetos nao finalizados com SLA e data final recebem is_delayed conforme a
   data final ja tenha passado (hoje ainda conta como no prazo);
2. atividades nao finalizadas com SLA e data de entrega, alcancadas via
   projeto -> subprojeto -> atividade, seguem a mesma regra;
3. projetos nao finalizados sem atualizacao no diario hoje sao apenas
   registrados como "precisa de atencao".

Falha ao avaliar uma entidade e registrada e nao interrompe as demais.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.services.audit import AuditRecorder
from app.storage import schemas
from app.storage.base import Storage

logger = logging.getLogger("gestor.automation")


def days_until_due(deadline: date, today: date) -> int:
    return (deadline - today).days


def should_be_delayed(
    status: str, sla: Optional[int], deadline: Optional[date], today: date
) -> Optional[bool]:
    """True/False para entidades avaliadas; None quando a regra nao se aplica."""
    if schemas.Status.parse(status) == schemas.TERMINAL_STATUS:
        return None
    if not sla or deadline is None:
        return None
    return days_until_due(deadline, today) < 0


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    flagged: list[str] = field(default_factory=list)
    cleared: list[str] = field(default_factory=list)
    needs_attention: list[int] = field(default_factory=list)
    errors: int = 0

    def summary(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "flagged": len(self.flagged),
            "cleared": len(self.cleared),
            "needs_attention": len(self.needs_attention),
            "errors": self.errors,
        }


def local_now(tz_name: Optional[str] = None) -> datetime:
    return datetime.now(ZoneInfo(tz_name or settings.TIMEZONE))


def _local_date(moment: datetime, reference: datetime) -> date:
    # created_at e gravado em UTC sem tzinfo
    if reference.tzinfo is None:
        return moment.date()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(reference.tzinfo).date()


class DelayEvaluator:
    def __init__(
        self,
        storage: Storage,
        recorder: Optional[AuditRecorder] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.storage = storage
        self.recorder = recorder
        self.clock = clock

    async def _flip(self, entity_type: str, entity, delayed: bool, report: SweepReport) -> None:
        patch = schemas.ProjectPatch if entity_type == "project" else schemas.ActivityPatch
        changed = await self.storage.update_tracked(entity_type, entity.id, patch(is_delayed=delayed))
        if changed is None:
            # removido entre a leitura e a escrita
            return
        before, updated = changed
        if self.recorder is not None:
            await self.recorder.record_update(entity_type, entity.id, before, updated, None)
        label = f"{entity_type}:{entity.id}"
        if delayed:
            report.flagged.append(label)
            logger.info("%s %s (%s) marked as delayed", entity_type, entity.id, entity.name)
        else:
            report.cleared.append(label)
            logger.info("%s %s (%s) is no longer delayed", entity_type, entity.id, entity.name)

    async def _evaluate(self, entity_type: str, entity, deadline: Optional[date], today: date, report: SweepReport):
        try:
            expected = should_be_delayed(entity.status, entity.sla, deadline, today)
            if expected is None or expected == entity.is_delayed:
                return
            await self._flip(entity_type, entity, expected, report)
        except Exception:
            report.errors += 1
            logger.exception("Erro ao avaliar atraso de %s %s", entity_type, entity.id)

    async def check_project_delays(self, report: SweepReport) -> None:
        logger.info("Running automation: checking project delays")
        today = self.clock().date()
        for project in await self.storage.list_projects():
            await self._evaluate("project", project, project.end_date, today, report)

    async def _all_activities(self, report: SweepReport) -> list[schemas.Activity]:
        activities: list[schemas.Activity] = []
        for project in await self.storage.list_projects():
            try:
                for subproject in await self.storage.list_subprojects_by_project(project.id):
                    activities.extend(await self.storage.list_activities_by_subproject(subproject.id))
            except Exception:
                report.errors += 1
                logger.exception("Erro ao carregar atividades do projeto %s", project.id)
        return activities

    async def check_activity_delays(self, report: SweepReport) -> None:
        logger.info("Running automation: checking activity delays")
        today = self.clock().date()
        for activity in await self._all_activities(report):
            await self._evaluate("activity", activity, activity.due_date, today, report)

    async def check_daily_updates(self, report: SweepReport) -> None:
        logger.info("Running automation: checking daily updates")
        now = self.clock()
        today = now.date()
        for project in await self.storage.list_projects():
            if schemas.Status.parse(project.status) == schemas.TERMINAL_STATUS:
                continue
            try:
                latest = await self.storage.get_latest_project_update(project.id)
                if latest is None:
                    logger.info("Project %s (%s) has no updates", project.id, project.name)
                elif _local_date(latest.created_at, now) < today:
                    logger.info("Project %s (%s) has not been updated today", project.id, project.name)
                else:
                    continue
                report.needs_attention.append(project.id)
            except Exception:
                report.errors += 1
                logger.exception("Erro ao verificar diario do projeto %s", project.id)

    async def run_sweep(self) -> SweepReport:
        report = SweepReport(started_at=self.clock())
        await self.check_project_delays(report)
        await self.check_activity_delays(report)
        await self.check_daily_updates(report)
        report.finished_at = self.clock()
        logger.info("delay sweep finished %s", report.summary())
        return report
