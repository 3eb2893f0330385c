from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.db import get_session
from clubreach.core.security import get_principal, require_scopes, Principal
from clubreach.modules.matching.schemas import RankRequest, RankedCoachOut
from clubreach.modules.matching.scorer import EventRequirements
from clubreach.modules.matching.service import MatchingService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> MatchingService:
    return MatchingService(session)

@router.post("/rank", response_model=list[RankedCoachOut], dependencies=[Depends(require_scopes("matching:read"))])
async def rank_coaches(
    payload: RankRequest,
    principal: Principal = Depends(get_principal),
    service: MatchingService = Depends(svc),
):
    event = EventRequirements(required_skills=set(payload.required_skills), start=payload.start, end=payload.end,
                              location=payload.location)
    ranked = await service.rank_coaches(principal, event, limit=payload.limit)
    return [RankedCoachOut(recipient_id=r.candidate.id, display_name=r.candidate.display_name, score=r.score) for r in ranked]
