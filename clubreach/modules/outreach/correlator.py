import re
import uuid
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.base import utcnow
from clubreach.modules.outreach.models import Acknowledgement, Invitation, InvitationState, is_terminal
from clubreach.modules.outreach.repository import CampaignRepository, InvitationRepository, AcknowledgementRepository
from clubreach.modules.realtime.fanout import NotificationFanout

log = logging.getLogger("outreach.correlator")

RESPONSE_ACCEPT = "accept"
RESPONSE_DECLINE = "decline"
RESPONSE_UNRECOGNIZED = "unrecognized"

_ACCEPT_WORDS = {"accept", "accepted", "yes", "y", "yep", "yeah", "sure", "ok", "okay", "available", "1"}
_DECLINE_WORDS = {"decline", "declined", "no", "n", "nope", "unavailable", "cant", "cannot", "2"}

# concurrent writers (a scheduler tick) can bump the version between our read and write
_MAX_ATTEMPTS = 3

def interpret_reply(text: str | None) -> str | None:
    """accept/decline from the first word of the first non-empty line, else None."""
    if not text:
        return None
    for line in text.splitlines():
        words = re.findall(r"[a-z0-9']+", line.lower())
        if words:
            word = words[0].replace("'", "")
            if word in _ACCEPT_WORDS:
                return RESPONSE_ACCEPT
            if word in _DECLINE_WORDS:
                return RESPONSE_DECLINE
            return None
    return None

def _target_state(response: str) -> InvitationState:
    if response == RESPONSE_ACCEPT:
        return InvitationState.ACCEPTED
    if response == RESPONSE_DECLINE:
        return InvitationState.DECLINED
    return InvitationState.ESCALATED

class AcknowledgementCorrelator:
    def __init__(self, session: AsyncSession, fanout: NotificationFanout | None = None):
        self.session = session
        self.campaigns = CampaignRepository(session)
        self.invitations = InvitationRepository(session)
        self.acks = AcknowledgementRepository(session)
        self.fanout = fanout or NotificationFanout(session)

    async def correlate(self, org_id: uuid.UUID, campaign_id: uuid.UUID, recipient_id: uuid.UUID, token: str,
                        response: str | None, detail: str | None = None) -> Acknowledgement | None:
        """Record the reply exactly once. Returns the (possibly pre-existing) ack, or None when nothing matched."""
        existing = await self.acks.get(campaign_id, recipient_id) or await self.acks.get_by_token(token, org_id)
        if existing is not None:
            log.info(f"Duplicate reply for campaign={campaign_id} recipient={recipient_id}; keeping ack {existing.id}")
            return existing

        inv = await self.invitations.get_for_recipient(campaign_id, recipient_id)
        if inv is None or inv.org_id != org_id:
            log.info(f"No invitation for campaign={campaign_id} recipient={recipient_id}; reply dropped")
            return None

        normalized = (response or "").strip().lower()
        if normalized not in (RESPONSE_ACCEPT, RESPONSE_DECLINE):
            normalized = RESPONSE_UNRECOGNIZED
        target = _target_state(normalized)
        if target == InvitationState.ESCALATED:
            # uninterpretable replies go to a human with the raw text
            raw = response or ""
            response_detail = raw if detail in (None, raw) else f"{raw}: {detail}"
        else:
            response_detail = detail

        now = utcnow()
        for _ in range(_MAX_ATTEMPTS):
            if is_terminal(inv.state):
                log.info(f"Invitation {inv.id} already {inv.state}; reply dropped")
                return await self.acks.get(campaign_id, recipient_id)
            if await self.invitations.transition(inv, expected_version=inv.version, state=target.value,
                                                 last_action_at=now, response_detail=response_detail):
                break
        else:
            log.warning(f"Invitation {inv.id} kept changing under the reply; giving up")
            return None

        ack = await self.acks.create(org_id, campaign_id=campaign_id, recipient_id=recipient_id, token=token,
                                     response=normalized, acknowledged_at=now)
        if target == InvitationState.ESCALATED:
            campaign = await self.campaigns.get(org_id, campaign_id)
            await self.fanout.escalation(org_id, event_id=campaign.event_id if campaign else "", campaign_id=campaign_id,
                                         invitation_id=inv.id, recipient_id=recipient_id,
                                         recipient_name=inv.recipient_name, reason="unrecognized reply")
        log.info(f"Invitation {inv.id} -> {target.value} via reply")
        return ack

    async def correlate_inbound(self, channel: str, address: str, raw_text: str, provider_token: str) -> Acknowledgement | None:
        """Gateway webhook path: resolve the address to its most recent open invitation, then correlate."""
        # providers redeliver webhooks under the same message id
        seen = await self.acks.get_by_token(provider_token)
        if seen is not None:
            log.info(f"Inbound {channel} reply {provider_token} already recorded as ack {seen.id}")
            return seen
        inv: Invitation | None = await self.invitations.latest_open_for_address(channel, address)
        if inv is None:
            log.info(f"Inbound {channel} reply from {address} matches no open invitation; dropped")
            return None
        campaign = await self.campaigns.get(inv.org_id, inv.campaign_id)
        await self.fanout.inbound_reply(inv.org_id, campaign.event_id if campaign else None, recipient_id=inv.recipient_id,
                                        channel=channel, text=raw_text, provider_token=provider_token)
        response = interpret_reply(raw_text)
        return await self.correlate(inv.org_id, inv.campaign_id, inv.recipient_id, provider_token,
                                    response or raw_text, detail=None if response else raw_text)
