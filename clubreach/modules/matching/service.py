import logging
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.base import as_utc
from clubreach.core.security import Principal
from clubreach.modules.directory.models import Contact
from clubreach.modules.directory.service import DirectoryService
from clubreach.modules.matching.scorer import Candidate, EventRequirements, RankedCandidate, Window, rank

log = logging.getLogger(__name__)

def _windows(raw: list | None) -> list[Window]:
    windows = []
    for w in raw or []:
        try:
            windows.append(Window(start=as_utc(datetime.fromisoformat(w["start"])), end=as_utc(datetime.fromisoformat(w["end"]))))
        except (KeyError, TypeError, ValueError):
            log.debug(f"Skipping malformed availability window {w!r}")
    return windows

def to_candidate(contact: Contact) -> Candidate:
    return Candidate(
        id=contact.id,
        display_name=contact.display_name,
        specialties=set(contact.specialties or []),
        availability=_windows(contact.availability),
        ratings=[float(r) for r in contact.ratings or []],
        location=contact.location,
    )

class MatchingService:
    def __init__(self, session: AsyncSession):
        self.directory = DirectoryService(session)

    async def rank_coaches(self, ctx: Principal, event: EventRequirements, limit: int | None = None) -> list[RankedCandidate]:
        event = EventRequirements(required_skills=event.required_skills, start=as_utc(event.start), end=as_utc(event.end),
                                  location=event.location)
        coaches = await self.directory.coaches(ctx.org_id)
        return rank([to_candidate(c) for c in coaches], event, limit=limit)
