import uuid
import logging
from dataclasses import dataclass
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.channels import Channel, CHANNEL_INFO, FALLBACK_ORDER
from clubreach.modules.directory.models import Contact
from clubreach.modules.directory.repository import ContactRepository

log = logging.getLogger(__name__)

@dataclass(frozen=True)
class Recipient:
    id: uuid.UUID
    display_name: str
    channel: Channel
    address: str
    role: str = "coach"

def address_for(contact: Contact, channel: Channel) -> str | None:
    value = getattr(contact, CHANNEL_INFO[channel].address_field, None)
    return value.strip() if value and value.strip() else None

def to_recipient(contact: Contact) -> Recipient | None:
    """Preferred channel first, then the fallback order; None when the contact has no usable address."""
    try:
        preferred = Channel(contact.channel_preference)
    except ValueError:
        preferred = None
    order = ([preferred] if preferred else []) + [c for c in FALLBACK_ORDER if c != preferred]
    for channel in order:
        address = address_for(contact, channel)
        if address:
            return Recipient(id=contact.id, display_name=contact.display_name, channel=channel, address=address, role=contact.role)
    return None

class DirectoryService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = ContactRepository(session)

    async def resolve(self, org_id: uuid.UUID, ids: Sequence[uuid.UUID]) -> tuple[list[Recipient], list[uuid.UUID]]:
        """Returns (recipients in request order, ids that could not be resolved)."""
        contacts = {c.id: c for c in await self.repo.get_many(org_id, ids)}
        resolved: list[Recipient] = []
        skipped: list[uuid.UUID] = []
        for cid in dict.fromkeys(ids):
            contact = contacts.get(cid)
            if contact is None or not contact.active:
                log.info(f"Recipient {cid} not found or inactive; skipping")
                skipped.append(cid)
                continue
            recipient = to_recipient(contact)
            if recipient is None:
                log.info(f"Recipient {cid} has no contact address; skipping")
                skipped.append(cid)
                continue
            resolved.append(recipient)
        return resolved, skipped

    async def coaches(self, org_id: uuid.UUID) -> Sequence[Contact]:
        return await self.repo.list_active(org_id, role="coach")
