import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from clubreach.core.base import utcnow
from clubreach.core.config import settings
from clubreach.modules.outreach.repository import InvitationRepository
from clubreach.modules.outreach.service import OutreachService, OUTCOME_REMINDED, OUTCOME_ESCALATED

log = logging.getLogger("outreach.scheduler")

@dataclass
class TickReport:
    evaluated: int = 0
    reminded: int = 0
    escalated: int = 0
    errors: int = 0
    skipped: bool = False

class OutreachScheduler:
    """Periodic evaluation of every open invitation.

    Each invitation is evaluated in its own session so one failure is logged
    and rolled back without stopping the rest of the tick. Ticks never overlap
    within a process; a tick requested while one is running is skipped.
    """

    def __init__(self, session_factory: async_sessionmaker, *, interval_seconds: float | None = None,
                 service_factory: Callable[[AsyncSession], OutreachService] | None = None):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.SCHEDULER_INTERVAL_SECONDS
        self.service_factory = service_factory or OutreachService
        self._lock = asyncio.Lock()

    async def tick(self, now: datetime | None = None) -> TickReport:
        if self._lock.locked():
            log.warning("Outreach tick already in progress; skipping")
            return TickReport(skipped=True)
        async with self._lock:
            return await self._tick(now or utcnow())

    async def _tick(self, now: datetime) -> TickReport:
        report = TickReport()
        async with self.session_factory() as session:
            ids = await InvitationRepository(session).list_open_ids()
        for invitation_id in ids:
            async with self.session_factory() as session:
                try:
                    outcome = await self.service_factory(session).evaluate_by_id(invitation_id, now)
                    await session.commit()
                except Exception:
                    log.exception(f"Evaluating invitation {invitation_id} failed; continuing")
                    await session.rollback()
                    report.errors += 1
                    continue
            report.evaluated += 1
            if outcome == OUTCOME_REMINDED:
                report.reminded += 1
            elif outcome == OUTCOME_ESCALATED:
                report.escalated += 1
        log.info(f"Outreach tick: {report.evaluated} evaluated, {report.reminded} reminded, "
                 f"{report.escalated} escalated, {report.errors} errors")
        return report

    async def run_forever(self):
        # the first tick runs immediately and catches up on anything overdue
        log.info(f"Outreach scheduler started (every {self.interval_seconds}s)")
        try:
            while True:
                try:
                    await self.tick()
                except Exception:
                    log.exception("Outreach tick failed; retrying next interval")
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            log.info("Outreach scheduler stopped")
            raise
