import uuid
import logging
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.base import utcnow
from clubreach.modules.messaging.models import Message, DeliveryRecord, STATUS_SENT, STATUS_DELIVERED, STATUS_FAILED
from clubreach.modules.outreach.models import Invitation

log = logging.getLogger(__name__)

def can_transition(current: str, new: str) -> bool:
    """Records only move sent -> delivered | failed; repeats of the same status are refreshes."""
    return current == new or current == STATUS_SENT

class DeliveryLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ---- Messages ----

    async def append_message(self, org_id: uuid.UUID, *, template_id: str, rendered_text: str, subject: str | None = None,
                             event_id: str | None = None, campaign_id: uuid.UUID | None = None) -> Message:
        obj = Message(org_id=org_id, template_id=template_id, rendered_text=rendered_text, subject=subject,
                      event_id=event_id, campaign_id=campaign_id)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get_message(self, org_id: uuid.UUID, message_id: uuid.UUID) -> Message | None:
        res = await self.session.execute(select(Message).where(Message.id == message_id, Message.org_id == org_id))
        return res.scalar_one_or_none()

    # ---- Delivery records ----

    async def get_record(self, message_id: uuid.UUID, recipient_id: uuid.UUID) -> DeliveryRecord | None:
        res = await self.session.execute(select(DeliveryRecord).where(
            DeliveryRecord.message_id == message_id, DeliveryRecord.recipient_id == recipient_id))
        return res.scalar_one_or_none()

    async def get_record_by_provider_id(self, provider_message_id: str) -> DeliveryRecord | None:
        res = await self.session.execute(select(DeliveryRecord).where(
            DeliveryRecord.provider_message_id == provider_message_id).limit(1))
        return res.scalar_one_or_none()

    async def upsert_record(self, message: Message, *, recipient_id: uuid.UUID, channel: str, address: str, status: str,
                            provider_message_id: str | None = None, error_detail: str | None = None,
                            sent_at: datetime | None = None) -> tuple[DeliveryRecord, bool]:
        """Insert or update the record for (message, recipient). Returns (record, changed)."""
        existing = await self.get_record(message.id, recipient_id)
        if existing is None:
            obj = DeliveryRecord(
                org_id=message.org_id, message_id=message.id, recipient_id=recipient_id, channel=channel,
                address=address, status=status, provider_message_id=provider_message_id,
                error_detail=error_detail, sent_at=sent_at or utcnow(),
                delivered_at=utcnow() if status == STATUS_DELIVERED else None,
            )
            self.session.add(obj)
            await self.session.flush()
            return obj, True
        if not can_transition(existing.status, status):
            log.debug(f"Ignoring {existing.status}->{status} for delivery record {existing.id}")
            return existing, False
        existing.status = status
        if provider_message_id:
            existing.provider_message_id = provider_message_id
        existing.error_detail = error_detail
        if sent_at:
            existing.sent_at = sent_at
        if status == STATUS_DELIVERED and existing.delivered_at is None:
            existing.delivered_at = utcnow()
        await self.session.flush()
        return existing, True

    async def apply_status(self, record: DeliveryRecord, status: str, error_detail: str | None = None) -> bool:
        if record.status == status or not can_transition(record.status, status):
            return False
        record.status = status
        if status == STATUS_DELIVERED:
            record.delivered_at = utcnow()
        if status == STATUS_FAILED:
            record.error_detail = error_detail or record.error_detail
        await self.session.flush()
        return True

    async def list_for_message(self, org_id: uuid.UUID, message_id: uuid.UUID) -> Sequence[DeliveryRecord]:
        res = await self.session.execute(select(DeliveryRecord).where(
            DeliveryRecord.org_id == org_id, DeliveryRecord.message_id == message_id,
        ).order_by(DeliveryRecord.sent_at.asc()))
        return res.scalars().all()

    def _campaign_join(self, campaign_id: uuid.UUID):
        return (
            select(DeliveryRecord)
            .join(Message, Message.id == DeliveryRecord.message_id)
            .join(Invitation, and_(Invitation.campaign_id == Message.campaign_id,
                                   Invitation.recipient_id == DeliveryRecord.recipient_id))
            .where(Message.campaign_id == campaign_id)
        )

    async def list_for_campaign(self, org_id: uuid.UUID, campaign_id: uuid.UUID) -> Sequence[DeliveryRecord]:
        q = self._campaign_join(campaign_id).where(DeliveryRecord.org_id == org_id).order_by(DeliveryRecord.sent_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def failure_counts_for_campaign(self, org_id: uuid.UUID, campaign_id: uuid.UUID) -> dict[uuid.UUID, int]:
        q = (
            select(DeliveryRecord.recipient_id, func.count(DeliveryRecord.id))
            .join(Message, Message.id == DeliveryRecord.message_id)
            .where(Message.campaign_id == campaign_id, DeliveryRecord.org_id == org_id,
                   DeliveryRecord.status == STATUS_FAILED)
            .group_by(DeliveryRecord.recipient_id)
        )
        res = await self.session.execute(q)
        return {rid: n for rid, n in res.all()}
