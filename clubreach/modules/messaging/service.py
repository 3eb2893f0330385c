import uuid
import logging
from dataclasses import dataclass, field
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.security import Principal
from clubreach.modules.directory.service import DirectoryService
from clubreach.modules.messaging.dispatcher import ChannelDispatcher, BatchResult
from clubreach.modules.messaging.models import Message, DeliveryRecord
from clubreach.modules.messaging.repository import DeliveryLedger
from clubreach.modules.realtime.fanout import NotificationFanout

log = logging.getLogger(__name__)

TEMPLATE_CHAT = "chat"

class MessageNotFound(ValueError):
    pass

@dataclass
class ChatResult:
    message: Message
    skipped: list[uuid.UUID] = field(default_factory=list)
    batch: BatchResult = field(default_factory=BatchResult)

class ChatService:
    """Free-form coordinator messages posted on an event, pushed to viewers and to the listed recipients."""

    def __init__(self, session: AsyncSession, dispatcher: ChannelDispatcher | None = None,
                 directory: DirectoryService | None = None, fanout: NotificationFanout | None = None):
        self.session = session
        self.fanout = fanout or NotificationFanout(session)
        self.dispatcher = dispatcher or ChannelDispatcher(session, fanout=self.fanout)
        self.directory = directory or DirectoryService(session)
        self.ledger = DeliveryLedger(session)

    async def post(self, ctx: Principal, text: str, event_id: str | None = None,
                   recipient_ids: Sequence[uuid.UUID] = (), subject: str | None = None) -> ChatResult:
        message = await self.ledger.append_message(ctx.org_id, template_id=TEMPLATE_CHAT, rendered_text=text,
                                                   subject=subject, event_id=event_id)
        await self.fanout.message(message)
        result = ChatResult(message=message)
        if recipient_ids:
            recipients, result.skipped = await self.directory.resolve(ctx.org_id, recipient_ids)
            result.batch = await self.dispatcher.send_batch([(message, r) for r in recipients])
        await self.session.commit()
        log.info(f"Chat message {message.id} on event {event_id or '-'}: {len(result.batch.records)} deliveries")
        return result

    async def deliveries(self, ctx: Principal, message_id: uuid.UUID) -> Sequence[DeliveryRecord]:
        message = await self.ledger.get_message(ctx.org_id, message_id)
        if message is None:
            raise MessageNotFound(f"message {message_id} not found")
        return await self.ledger.list_for_message(ctx.org_id, message_id)
