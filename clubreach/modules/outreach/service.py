"""
Outreach campaigns: invite a set of coaches to an event, remind the silent
ones on a schedule, and hand the rest to a human coordinator.

Every invitation write goes through ``InvitationRepository.transition`` so a
reply and a scheduler tick racing on the same invitation cannot both win.
"""
import uuid
import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.base import utcnow, as_utc
from clubreach.core.channels import Channel
from clubreach.core.security import Principal
from clubreach.modules.directory.service import DirectoryService, Recipient
from clubreach.modules.messaging.dispatcher import ChannelDispatcher, BatchResult, DeliveryFailure
from clubreach.modules.messaging.models import Message, DeliveryRecord
from clubreach.modules.messaging.renderer import render, MissingPlaceholder
from clubreach.modules.messaging.repository import DeliveryLedger
from clubreach.modules.outreach.correlator import AcknowledgementCorrelator
from clubreach.modules.outreach.links import build_response_link, verify_response_token
from clubreach.modules.outreach.models import OutreachCampaign, Invitation, Acknowledgement, InvitationState, is_terminal
from clubreach.modules.outreach.repository import CampaignRepository, InvitationRepository
from clubreach.modules.outreach.schemas import CampaignConfig
from clubreach.modules.realtime.fanout import NotificationFanout

log = logging.getLogger("outreach.service")

TEMPLATE_INITIAL = "initial"
TEMPLATE_REMINDER = "reminder"

OUTCOME_REMINDED = "reminded"
OUTCOME_ESCALATED = "escalated"

_MAX_ATTEMPTS = 3

# One initiation per (org, event) at a time within this process. Separate workers
# still rely on the read-then-create check, so run initiation on a single worker.
_initiate_locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()

def _event_lock(org_id: uuid.UUID, event_id: str) -> asyncio.Lock:
    key = (org_id, event_id)
    lock = _initiate_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _initiate_locks[key] = lock
    return lock

class InvalidConfig(ValueError):
    pass

class CampaignAlreadyActive(ValueError):
    pass

class CampaignNotFound(ValueError):
    pass

class NoRecipients(ValueError):
    pass

class InvalidResponseToken(ValueError):
    pass

def validate_config(config: CampaignConfig) -> None:
    offsets = config.reminder_offsets_days
    if any(o < 0 for o in offsets):
        raise InvalidConfig("reminder offsets must be non-negative")
    if any(b <= a for a, b in zip(offsets, offsets[1:])):
        raise InvalidConfig("reminder offsets must be strictly increasing")
    if config.handoff_after_days <= 0:
        raise InvalidConfig("handoff_after_days must be positive")
    if offsets and config.handoff_after_days < offsets[-1]:
        raise InvalidConfig("handoff_after_days must not precede the last reminder offset")
    if not config.templates.initial.strip() or not config.templates.reminder.strip():
        raise InvalidConfig("templates must not be empty")

def days_since(start: datetime, now: datetime) -> float:
    return (as_utc(now) - as_utc(start)) / timedelta(days=1)

def recipient_of(inv: Invitation) -> Recipient:
    return Recipient(id=inv.recipient_id, display_name=inv.recipient_name, channel=Channel(inv.channel), address=inv.address)

@dataclass
class InitiateResult:
    campaign: OutreachCampaign
    invitations: list[Invitation]
    skipped: list[uuid.UUID]
    batch: BatchResult = field(default_factory=BatchResult)

@dataclass
class InvitationStatus:
    invitation: Invitation
    failed_deliveries: int

@dataclass
class CampaignStatus:
    campaign: OutreachCampaign
    invitations: list[InvitationStatus]

    @property
    def closed(self) -> bool:
        return all(is_terminal(s.invitation.state) for s in self.invitations)

class OutreachService:
    def __init__(self, session: AsyncSession, dispatcher: ChannelDispatcher | None = None,
                 directory: DirectoryService | None = None, fanout: NotificationFanout | None = None):
        self.session = session
        self.fanout = fanout or NotificationFanout(session)
        self.dispatcher = dispatcher or ChannelDispatcher(session, fanout=self.fanout)
        self.directory = directory or DirectoryService(session)
        self.campaigns = CampaignRepository(session)
        self.invitations = InvitationRepository(session)
        self.ledger = DeliveryLedger(session)
        self.correlator = AcknowledgementCorrelator(session, fanout=self.fanout)

    # ---- Rendering ----

    def _render(self, campaign: OutreachCampaign, inv: Invitation, template_id: str) -> tuple[str, str]:
        ctx = dict(campaign.context or {})
        ctx.setdefault("eventId", campaign.event_id)
        ctx["recipientName"] = inv.recipient_name
        ctx["coachName"] = inv.recipient_name
        ctx["responseLink"] = build_response_link(campaign.id, inv.recipient_id)
        text = render(campaign.templates[template_id], ctx)
        event_name = ctx.get("eventName")
        subject = f"Coaching opportunity: {event_name}" if event_name else "Coaching opportunity"
        if template_id == TEMPLATE_REMINDER:
            subject = f"Reminder: {subject}"
        return text, subject

    async def _append(self, campaign: OutreachCampaign, template_id: str, text: str, subject: str) -> Message:
        return await self.ledger.append_message(
            campaign.org_id, template_id=template_id, rendered_text=text, subject=subject,
            event_id=campaign.event_id, campaign_id=campaign.id,
        )

    # ---- Campaign lifecycle ----

    async def initiate(self, ctx: Principal, event_id: str, recipient_ids: Sequence[uuid.UUID], config: CampaignConfig,
                       context: dict | None = None, now: datetime | None = None) -> InitiateResult:
        validate_config(config)
        async with _event_lock(ctx.org_id, event_id):
            return await self._initiate(ctx, event_id, recipient_ids, config, context, now)

    async def _initiate(self, ctx: Principal, event_id: str, recipient_ids: Sequence[uuid.UUID], config: CampaignConfig,
                        context: dict | None, now: datetime | None) -> InitiateResult:
        latest = await self.campaigns.latest_for_event(ctx.org_id, event_id)
        if latest is not None and await self.campaigns.open_invitation_count(latest.id) > 0:
            raise CampaignAlreadyActive(f"event {event_id} already has an open campaign ({latest.id})")

        recipients, skipped = await self.directory.resolve(ctx.org_id, recipient_ids)
        if not recipients:
            raise NoRecipients("none of the requested recipients could be resolved")

        now = now or utcnow()
        campaign = await self.campaigns.create(
            ctx.org_id, event_id=event_id, reminder_offsets_days=list(config.reminder_offsets_days),
            handoff_after_days=config.handoff_after_days, templates=config.templates.model_dump(),
            context=dict(context or {}), created_by=None if ctx.is_system else ctx.user_id,
        )
        result = InitiateResult(campaign=campaign, invitations=[], skipped=skipped)
        deliveries: list[tuple[Message, Recipient]] = []
        for recipient in recipients:
            inv = await self.invitations.create(
                ctx.org_id, campaign_id=campaign.id, recipient_id=recipient.id, recipient_name=recipient.display_name,
                channel=recipient.channel.value, address=recipient.address, state=InvitationState.PENDING.value,
                reminders_sent=0, invited_at=now, last_action_at=now,
            )
            result.invitations.append(inv)
            try:
                text, subject = self._render(campaign, inv, TEMPLATE_INITIAL)
            except MissingPlaceholder as e:
                log.warning(f"Initial message for {recipient.id} not rendered: {e}")
                result.batch.failures.append(DeliveryFailure(recipient_id=recipient.id, detail=str(e)))
                continue
            message = await self._append(campaign, TEMPLATE_INITIAL, text, subject)
            deliveries.append((message, recipient))

        result.batch.merge(await self.dispatcher.send_batch(deliveries))
        await self.session.commit()
        log.info(f"Campaign {campaign.id} for event {event_id}: {len(result.invitations)} invited, "
                 f"{len(skipped)} skipped, {len(result.batch.failures)} failed")
        return result

    async def _require_campaign(self, ctx: Principal, event_id: str) -> OutreachCampaign:
        campaign = await self.campaigns.latest_for_event(ctx.org_id, event_id)
        if campaign is None:
            raise CampaignNotFound(f"no campaign for event {event_id}")
        return campaign

    async def submit_response(self, ctx: Principal, event_id: str, recipient_id: uuid.UUID, response: str,
                              detail: str | None = None) -> Acknowledgement | None:
        campaign = await self._require_campaign(ctx, event_id)
        ack = await self.correlator.correlate(ctx.org_id, campaign.id, recipient_id, f"api:{ctx.user_id}:{campaign.id}:{recipient_id}", response, detail)
        await self.session.commit()
        return ack

    async def respond_with_token(self, token: str, response: str) -> Acknowledgement | None:
        """Magic-link replies: the signed token names the campaign and recipient."""
        claims = verify_response_token(token)
        if claims is None:
            raise InvalidResponseToken("response link is invalid or expired")
        campaign = await self.campaigns.get_any_org(claims.campaign_id)
        if campaign is None:
            raise CampaignNotFound("campaign no longer exists")
        ack = await self.correlator.correlate(campaign.org_id, campaign.id, claims.recipient_id, token, response)
        await self.session.commit()
        return ack

    async def status(self, ctx: Principal, event_id: str) -> CampaignStatus:
        campaign = await self._require_campaign(ctx, event_id)
        invitations = await self.invitations.list_for_campaign(campaign.id)
        failures = await self.ledger.failure_counts_for_campaign(ctx.org_id, campaign.id)
        return CampaignStatus(
            campaign=campaign,
            invitations=[InvitationStatus(invitation=i, failed_deliveries=failures.get(i.recipient_id, 0)) for i in invitations],
        )

    async def deliveries(self, ctx: Principal, campaign_id: uuid.UUID) -> Sequence[DeliveryRecord]:
        campaign = await self.campaigns.get(ctx.org_id, campaign_id)
        if campaign is None:
            raise CampaignNotFound(f"campaign {campaign_id} not found")
        return await self.ledger.list_for_campaign(ctx.org_id, campaign.id)

    async def _escalate(self, campaign: OutreachCampaign, inv: Invitation, now: datetime, reason: str,
                        attempts: int = 1) -> bool:
        for _ in range(attempts):
            if is_terminal(inv.state):
                return False
            if await self.invitations.transition(inv, expected_version=inv.version, state=InvitationState.ESCALATED.value,
                                                 last_action_at=now, response_detail=reason):
                await self.fanout.escalation(campaign.org_id, event_id=campaign.event_id, campaign_id=campaign.id,
                                             invitation_id=inv.id, recipient_id=inv.recipient_id,
                                             recipient_name=inv.recipient_name, reason=reason)
                log.info(f"Invitation {inv.id} escalated: {reason}")
                return True
        return False

    async def escalate_now(self, ctx: Principal, event_id: str, recipient_id: uuid.UUID | None = None,
                           reason: str | None = None) -> int:
        campaign = await self._require_campaign(ctx, event_id)
        invitations = await self.invitations.list_for_campaign(campaign.id)
        if recipient_id is not None:
            invitations = [i for i in invitations if i.recipient_id == recipient_id]
            if not invitations:
                raise CampaignNotFound(f"recipient {recipient_id} is not part of the campaign for event {event_id}")
        now = utcnow()
        count = 0
        for inv in invitations:
            if await self._escalate(campaign, inv, now, reason or "Escalated by coordinator", attempts=_MAX_ATTEMPTS):
                count += 1
        await self.session.commit()
        return count

    async def cancel(self, ctx: Principal, event_id: str) -> int:
        """Closes the campaign by handing every open invitation to a coordinator."""
        return await self.escalate_now(ctx, event_id, reason="Campaign cancelled")

    # ---- Timed policy ----

    async def evaluate(self, campaign: OutreachCampaign, inv: Invitation, now: datetime) -> str | None:
        """One scheduler step for one invitation. Escalation wins over a reminder due at the same instant."""
        if is_terminal(inv.state):
            return None
        elapsed = days_since(inv.invited_at, now)
        if elapsed >= campaign.handoff_after_days:
            reason = f"No response after {campaign.handoff_after_days} days"
            return OUTCOME_ESCALATED if await self._escalate(campaign, inv, now, reason) else None

        offsets = campaign.reminder_offsets_days or []
        sent = inv.reminders_sent
        if sent >= len(offsets) or elapsed < offsets[sent]:
            return None

        text, subject = self._render(campaign, inv, TEMPLATE_REMINDER)
        # claim first: a reply that lands in between wins and nothing goes out
        if not await self.invitations.transition(inv, expected_version=inv.version, state=InvitationState.REMINDED.value,
                                                 reminders_sent=sent + 1, last_action_at=now):
            log.info(f"Invitation {inv.id} changed during evaluation; reminder skipped")
            return None
        message = await self._append(campaign, TEMPLATE_REMINDER, text, subject)
        await self.dispatcher.send(message, recipient_of(inv))
        log.info(f"Invitation {inv.id} reminder {sent + 1}/{len(offsets)} sent")
        return OUTCOME_REMINDED

    async def evaluate_by_id(self, invitation_id: uuid.UUID, now: datetime) -> str | None:
        inv = await self.invitations.get(invitation_id)
        if inv is None:
            return None
        campaign = await self.campaigns.get(inv.org_id, inv.campaign_id)
        if campaign is None:
            return None
        return await self.evaluate(campaign, inv, now)
