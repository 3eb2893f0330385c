import re
import uuid
import logging
from email.utils import parseaddr
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator

from clubreach.core.channels import Channel
from clubreach.core.config import settings
from clubreach.core.db import get_session
from clubreach.modules.messaging.dispatcher import ChannelDispatcher
from clubreach.modules.outreach.correlator import AcknowledgementCorrelator
from clubreach.modules.webhooks.schemas import InboundReply, DeliveryStatusUpdate, InboundResult, DeliveryStatusResult
from clubreach.modules.webhooks.twilio_schema import TwilioInboundMessage, TwilioStatusCallback

router = APIRouter()
logger = logging.getLogger(__name__)

EMPTY_TWIML = "<Response></Response>"

async def _twilio_form(request: Request) -> dict:
    form = dict(await request.form())
    if settings.ENV != "local" and settings.TWILIO_AUTH_TOKEN:
        signature = request.headers.get("X-Twilio-Signature", "")
        if not RequestValidator(settings.TWILIO_AUTH_TOKEN).validate(str(request.url), form, signature):
            logger.warning(f"Rejected Twilio callback with bad signature on {request.url.path}")
            raise HTTPException(status_code=403, detail="Invalid signature")
    return form

async def _correlate(session: AsyncSession, channel: Channel, address: str, text: str, token: str) -> InboundResult:
    ack = await AcknowledgementCorrelator(session).correlate_inbound(channel.value, address, text, token)
    await session.commit()
    return InboundResult(matched=ack is not None, response=ack.response if ack else None)

# ---- Inbound replies ----

@router.post("/twilio/inbound")
async def twilio_inbound(request: Request, db: AsyncSession = Depends(get_session)):
    """
    SMS reply from a coach. Always answers with empty TwiML so Twilio sends nothing back.
    """
    form = await _twilio_form(request)
    try:
        msg = TwilioInboundMessage.model_validate(form)
    except ValidationError as e:
        logger.error(f"Twilio inbound payload invalid: {e}")
        return Response(status_code=400)
    result = await _correlate(db, Channel.SMS, msg.from_number, msg.body.strip(), msg.message_id)
    logger.info(f"Twilio reply {msg.message_id} from {msg.from_number}: matched={result.matched}")
    return Response(content=EMPTY_TWIML, media_type="application/xml")

def _message_id_from_headers(raw_headers: str) -> str | None:
    m = re.search(r"^Message-ID:\s*(\S+)", raw_headers or "", flags=re.IGNORECASE | re.MULTILINE)
    return m.group(1).strip("<>") if m else None

@router.post("/sendgrid/inbound", response_model=InboundResult)
async def sendgrid_inbound(request: Request, db: AsyncSession = Depends(get_session)):
    """
    SendGrid Inbound Parse: multipart form with from/text/headers.
    """
    form = await request.form()
    _, sender = parseaddr(str(form.get("from") or ""))
    if not sender:
        return Response(status_code=400)
    text = str(form.get("text") or form.get("subject") or "")
    token = _message_id_from_headers(str(form.get("headers") or "")) or f"sendgrid-{uuid.uuid4().hex}"
    return await _correlate(db, Channel.EMAIL, sender, text.strip(), token)

@router.post("/inbound", response_model=InboundResult)
async def generic_inbound(payload: InboundReply, db: AsyncSession = Depends(get_session)):
    return await _correlate(db, Channel(payload.channel), payload.address, payload.text, payload.provider_token)

# ---- Delivery confirmations ----

async def _confirm(session: AsyncSession, provider_message_id: str, status: str, error_detail: str | None) -> DeliveryStatusResult:
    record = await ChannelDispatcher(session).confirm(provider_message_id, status, error_detail)
    await session.commit()
    return DeliveryStatusResult(matched=record is not None, status=record.status if record else None)

@router.post("/delivery-status", response_model=DeliveryStatusResult)
async def delivery_status(payload: DeliveryStatusUpdate, db: AsyncSession = Depends(get_session)):
    return await _confirm(db, payload.provider_message_id, payload.status, payload.error_detail)

@router.post("/twilio/status", status_code=204)
async def twilio_status(request: Request, db: AsyncSession = Depends(get_session)):
    form = await _twilio_form(request)
    try:
        cb = TwilioStatusCallback.model_validate(form)
    except ValidationError as e:
        logger.error(f"Twilio status payload invalid: {e}")
        return Response(status_code=400)
    detail = None
    if cb.error_code or cb.error_message:
        detail = f"twilio {cb.error_code or ''} {cb.error_message or ''}".strip()
    await _confirm(db, cb.message_id, cb.message_status, detail)
    return Response(status_code=204)

@router.post("/sendgrid/events", status_code=204)
async def sendgrid_events(request: Request, db: AsyncSession = Depends(get_session)):
    """
    SendGrid Event Webhook: a JSON array of events. ``sg_message_id`` starts with
    the X-Message-Id we stored at send time.
    """
    events = await request.json()
    if not isinstance(events, list):
        return Response(status_code=400)
    dispatcher = ChannelDispatcher(db)
    for ev in events:
        sg_id = str(ev.get("sg_message_id") or "")
        if not sg_id:
            continue
        detail = ev.get("reason") or ev.get("response")
        await dispatcher.confirm(sg_id.split(".")[0], str(ev.get("event") or ""), detail)
    await db.commit()
    return Response(status_code=204)
