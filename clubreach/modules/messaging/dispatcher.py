"""
Channel dispatch: one rendered message to one recipient over the recipient's
channel, recorded in the delivery ledger and fanned out to live viewers.

Submits within a batch run concurrently, bounded per channel. Each submit is
isolated, so a gateway error becomes a ``failed`` record for that recipient
and never aborts its siblings. Ledger writes happen afterwards, one at a time,
on the caller's session.
"""
import uuid
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.base import utcnow
from clubreach.core.channels import Channel
from clubreach.platform.ports.gateway import GatewayPort, SubmitResult
from clubreach.modules.directory.service import Recipient
from clubreach.modules.messaging.models import Message, DeliveryRecord, STATUS_SENT, STATUS_DELIVERED, STATUS_FAILED
from clubreach.modules.messaging.repository import DeliveryLedger
from clubreach.modules.realtime.fanout import NotificationFanout

log = logging.getLogger("messaging.dispatcher")

# provider vocabularies (Twilio MessageStatus, SendGrid event) -> ledger status; anything else is intermediate
_PROVIDER_STATUS = {
    "delivered": STATUS_DELIVERED,
    "read": STATUS_DELIVERED,
    "failed": STATUS_FAILED,
    "undelivered": STATUS_FAILED,
    "bounce": STATUS_FAILED,
    "bounced": STATUS_FAILED,
    "dropped": STATUS_FAILED,
}

def normalize_provider_status(status: str) -> str | None:
    return _PROVIDER_STATUS.get((status or "").strip().lower())

class ChannelLimiter:
    """Caps concurrent gateway submits per channel."""

    def __init__(self, limits: dict[Channel, int], default: int = 4):
        self._sems = {Channel(ch): asyncio.Semaphore(max(1, n)) for ch, n in limits.items()}
        self._default = default

    def for_channel(self, channel: Channel) -> asyncio.Semaphore:
        if channel not in self._sems:
            self._sems[channel] = asyncio.Semaphore(self._default)
        return self._sems[channel]

@dataclass
class DeliveryFailure:
    recipient_id: uuid.UUID
    detail: str

@dataclass
class BatchResult:
    records: list[DeliveryRecord] = field(default_factory=list)
    failures: list[DeliveryFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.failures) and any(r.status != STATUS_FAILED for r in self.records)

    def merge(self, other: "BatchResult") -> "BatchResult":
        self.records.extend(other.records)
        self.failures.extend(other.failures)
        return self

class ChannelDispatcher:
    def __init__(self, session: AsyncSession, gateways: dict[Channel, GatewayPort] | None = None,
                 limiter: ChannelLimiter | None = None, fanout: NotificationFanout | None = None):
        if gateways is None or limiter is None:
            from clubreach.platform.provider_registry import registry
            gateways = gateways if gateways is not None else registry.gateways()
            limiter = limiter or registry.channel_limiter()
        self.session = session
        self.gateways = gateways
        self.limiter = limiter
        self.ledger = DeliveryLedger(session)
        self.fanout = fanout or NotificationFanout(session)

    async def _submit(self, message: Message, recipient: Recipient) -> SubmitResult:
        gateway = self.gateways.get(recipient.channel)
        if gateway is None:
            return SubmitResult(error=f"no gateway for channel {recipient.channel.value}")
        async with self.limiter.for_channel(recipient.channel):
            try:
                return await gateway.submit(message.rendered_text, recipient.address, subject=message.subject)
            except Exception as e:
                # adapters report provider errors as results; anything raised is still this recipient's failure only
                log.exception(f"Gateway {recipient.channel.value} raised for recipient {recipient.id}")
                return SubmitResult(error=f"{type(e).__name__}: {e}")

    async def send(self, message: Message, recipient: Recipient) -> DeliveryRecord:
        result = await self.send_batch([(message, recipient)])
        return result.records[0]

    async def send_batch(self, deliveries: Sequence[tuple[Message, Recipient]]) -> BatchResult:
        sent_at = utcnow()
        outcomes = await asyncio.gather(*(self._submit(m, r) for m, r in deliveries))
        result = BatchResult()
        for (message, recipient), outcome in zip(deliveries, outcomes):
            status = STATUS_SENT if outcome.ok else STATUS_FAILED
            record, changed = await self.ledger.upsert_record(
                message, recipient_id=recipient.id, channel=recipient.channel.value, address=recipient.address,
                status=status, provider_message_id=outcome.provider_message_id, error_detail=outcome.error,
                sent_at=sent_at,
            )
            if changed:
                await self.fanout.delivery_status(record, message.event_id)
            result.records.append(record)
            if not outcome.ok:
                log.warning(f"Delivery to {recipient.id} via {recipient.channel.value} failed: {outcome.error}")
                result.failures.append(DeliveryFailure(recipient_id=recipient.id, detail=outcome.error or "unknown error"))
        log.info(f"Dispatched {len(deliveries)} message(s): {len(deliveries) - len(result.failures)} sent, {len(result.failures)} failed")
        return result

    async def confirm(self, provider_message_id: str, status: str, error_detail: str | None = None) -> DeliveryRecord | None:
        """Apply an asynchronous provider confirmation to the existing record; never creates one."""
        normalized = normalize_provider_status(status)
        if normalized is None:
            log.debug(f"Ignoring intermediate provider status {status!r} for {provider_message_id}")
            return None
        record = await self.ledger.get_record_by_provider_id(provider_message_id)
        if record is None:
            log.info(f"Delivery confirmation for unknown provider id {provider_message_id}; ignoring")
            return None
        if await self.ledger.apply_status(record, normalized, error_detail):
            message = await self.ledger.get_message(record.org_id, record.message_id)
            await self.fanout.delivery_status(record, message.event_id if message else None)
            log.info(f"Delivery record {record.id} -> {normalized}")
        return record
