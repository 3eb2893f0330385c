import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.channels import channel_label
from clubreach.core.db import SessionLocal, get_session
from clubreach.core.security import get_principal, require_scopes, Principal
from clubreach.modules.messaging.schemas import DeliveryRecordOut
from clubreach.modules.outreach.schemas import (
    InitiateOutreach, InitiateOut, DeliveryFailureOut, SubmitResponse, AcknowledgementOut,
    CampaignStatusOut, InvitationStatusOut, EscalateRequest, EscalateOut, TickOut,
)
from clubreach.modules.outreach.scheduler import OutreachScheduler
from clubreach.modules.outreach.service import (
    OutreachService, InvalidConfig, CampaignAlreadyActive, CampaignNotFound, NoRecipients, InvalidResponseToken,
)

router = APIRouter()

_scheduler: OutreachScheduler | None = None

def get_scheduler() -> OutreachScheduler:
    """Process-wide scheduler; the background loop and manual ticks share its lock."""
    global _scheduler
    if _scheduler is None:
        _scheduler = OutreachScheduler(SessionLocal)
    return _scheduler

def svc(session: AsyncSession = Depends(get_session)) -> OutreachService:
    return OutreachService(session)

# ---- Campaigns ----

@router.post("/campaigns", response_model=InitiateOut, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_scopes("outreach:write"))])
async def initiate_outreach(
    payload: InitiateOutreach,
    principal: Principal = Depends(get_principal),
    service: OutreachService = Depends(svc),
):
    try:
        result = await service.initiate(principal, payload.event_id, payload.recipient_ids, payload.config, payload.context)
    except (InvalidConfig, NoRecipients) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CampaignAlreadyActive as e:
        raise HTTPException(status_code=409, detail=str(e))
    return InitiateOut(
        campaign_id=result.campaign.id,
        invited=len(result.invitations),
        skipped=result.skipped,
        sent=len(result.invitations) - len(result.batch.failures),
        failures=[DeliveryFailureOut(recipient_id=f.recipient_id, detail=f.detail) for f in result.batch.failures],
        partial=bool(result.batch.failures) and len(result.batch.failures) < len(result.invitations),
    )

@router.get("/campaigns/{campaign_id}/deliveries", response_model=list[DeliveryRecordOut],
            dependencies=[Depends(require_scopes("outreach:read"))])
async def campaign_deliveries(
    campaign_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: OutreachService = Depends(svc),
):
    try:
        return await service.deliveries(principal, campaign_id)
    except CampaignNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.get("/events/{event_id}/status", response_model=CampaignStatusOut,
            dependencies=[Depends(require_scopes("outreach:read"))])
async def campaign_status(
    event_id: str,
    principal: Principal = Depends(get_principal),
    service: OutreachService = Depends(svc),
):
    try:
        st = await service.status(principal, event_id)
    except CampaignNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return CampaignStatusOut(
        campaign_id=st.campaign.id,
        event_id=st.campaign.event_id,
        created_at=st.campaign.created_at,
        closed=st.closed,
        invitations=[
            InvitationStatusOut(
                recipient_id=s.invitation.recipient_id,
                recipient_name=s.invitation.recipient_name,
                channel=s.invitation.channel,
                channel_label=channel_label(s.invitation.channel),
                state=s.invitation.state,
                reminders_sent=s.invitation.reminders_sent,
                last_action_at=s.invitation.last_action_at,
                response_detail=s.invitation.response_detail,
                failed_deliveries=s.failed_deliveries,
            )
            for s in st.invitations
        ],
    )

@router.post("/events/{event_id}/escalate", response_model=EscalateOut,
             dependencies=[Depends(require_scopes("outreach:admin"))])
async def escalate_now(
    event_id: str,
    payload: EscalateRequest,
    principal: Principal = Depends(get_principal),
    service: OutreachService = Depends(svc),
):
    try:
        n = await service.escalate_now(principal, event_id, payload.recipient_id, payload.reason)
    except CampaignNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return EscalateOut(escalated=n)

@router.post("/events/{event_id}/cancel", response_model=EscalateOut,
             dependencies=[Depends(require_scopes("outreach:admin"))])
async def cancel_campaign(
    event_id: str,
    principal: Principal = Depends(get_principal),
    service: OutreachService = Depends(svc),
):
    try:
        n = await service.cancel(principal, event_id)
    except CampaignNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return EscalateOut(escalated=n)

# ---- Responses ----

@router.post("/responses", response_model=AcknowledgementOut, dependencies=[Depends(require_scopes("outreach:write"))])
async def submit_response(
    payload: SubmitResponse,
    principal: Principal = Depends(get_principal),
    service: OutreachService = Depends(svc),
):
    try:
        ack = await service.submit_response(principal, payload.event_id, payload.recipient_id, payload.response, payload.detail)
    except CampaignNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if ack is None:
        raise HTTPException(status_code=404, detail="No open invitation for this recipient")
    return ack

@router.get("/respond", response_class=HTMLResponse)
async def respond_by_link(
    token: str,
    response: str = Query(..., pattern="^(accept|decline)$"),
    service: OutreachService = Depends(svc),
):
    """Target of the link embedded in outreach messages; no bearer token, the signed link is the credential."""
    try:
        ack = await service.respond_with_token(token, response)
    except InvalidResponseToken as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CampaignNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if ack is None:
        return HTMLResponse("<p>This invitation is already closed. Please contact the coordinator.</p>", status_code=409)
    word = "accepted" if ack.response == "accept" else "declined"
    return HTMLResponse(f"<p>Thanks, we have recorded that you {word} this coaching request.</p>")

# ---- Scheduler ----

@router.post("/ticks", response_model=TickOut, dependencies=[Depends(require_scopes("outreach:admin"))])
async def run_tick(scheduler: OutreachScheduler = Depends(get_scheduler)):
    report = await scheduler.tick()
    return TickOut(evaluated=report.evaluated, reminded=report.reminded, escalated=report.escalated,
                   errors=report.errors, skipped=report.skipped)
