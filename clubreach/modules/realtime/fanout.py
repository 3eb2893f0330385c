import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.config import settings
from clubreach.modules.events.outbox import OutboxService
from clubreach.modules.messaging.models import Message, DeliveryRecord

KIND_MESSAGE = "message"
KIND_DELIVERY_STATUS = "delivery_status"
KIND_ESCALATION = "OUTREACH_ESCALATED"

def event_topic(event_id: str | None) -> str:
    return f"event.{event_id or 'global'}"

def message_payload(m: Message) -> dict:
    return {
        "id": str(m.id),
        "event_id": m.event_id,
        "campaign_id": str(m.campaign_id) if m.campaign_id else None,
        "template_id": m.template_id,
        "subject": m.subject,
        "text": m.rendered_text,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }

def delivery_payload(r: DeliveryRecord) -> dict:
    return {
        "id": str(r.id),
        "message_id": str(r.message_id),
        "recipient_id": str(r.recipient_id),
        "channel": r.channel,
        "status": r.status,
        "provider_message_id": r.provider_message_id,
        "error_detail": r.error_detail,
        "sent_at": r.sent_at.isoformat() if r.sent_at else None,
        "delivered_at": r.delivered_at.isoformat() if r.delivered_at else None,
    }

class NotificationFanout:
    """Queues viewer updates in the caller's transaction; the outbox relay pushes them."""

    def __init__(self, session: AsyncSession):
        self.outbox = OutboxService(session)

    async def message(self, message: Message) -> None:
        await self.outbox.enqueue(
            message.org_id, event_topic(message.event_id), KIND_MESSAGE, "message", message.id,
            message_payload(message), dedup_key=str(message.id),
        )

    async def delivery_status(self, record: DeliveryRecord, event_id: str | None) -> None:
        # one envelope per status a record passes through
        await self.outbox.enqueue(
            record.org_id, event_topic(event_id), KIND_DELIVERY_STATUS, "delivery_record", record.id,
            delivery_payload(record), dedup_key=f"{record.id}:{record.status}",
        )

    async def inbound_reply(self, org_id: uuid.UUID, event_id: str | None, *, recipient_id: uuid.UUID, channel: str,
                            text: str, provider_token: str) -> None:
        await self.outbox.enqueue(
            org_id, event_topic(event_id), KIND_MESSAGE, "inbound_reply", provider_token,
            {"id": provider_token, "event_id": event_id, "recipient_id": str(recipient_id), "channel": channel,
             "text": text, "source": f"{channel}_reply"},
            dedup_key=f"inbound:{provider_token}",
        )

    async def escalation(self, org_id: uuid.UUID, *, event_id: str, campaign_id: uuid.UUID, invitation_id: uuid.UUID,
                         recipient_id: uuid.UUID, recipient_name: str | None, reason: str) -> None:
        await self.outbox.enqueue(
            org_id, settings.OPERATOR_TOPIC, KIND_ESCALATION, "invitation", invitation_id,
            {"event_id": event_id, "campaign_id": str(campaign_id), "recipient_id": str(recipient_id),
             "recipient_name": recipient_name, "reason": reason},
            dedup_key=f"escalated:{invitation_id}",
        )
