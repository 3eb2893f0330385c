import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.modules.outreach.models import OutreachCampaign, Invitation, Acknowledgement, OPEN_STATES

class CampaignRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> OutreachCampaign:
        obj = OutreachCampaign(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, campaign_id: uuid.UUID) -> OutreachCampaign | None:
        res = await self.session.execute(select(OutreachCampaign).where(
            OutreachCampaign.id == campaign_id, OutreachCampaign.org_id == org_id, OutreachCampaign.deleted_at.is_(None)))
        return res.scalar_one_or_none()

    async def get_any_org(self, campaign_id: uuid.UUID) -> OutreachCampaign | None:
        res = await self.session.execute(select(OutreachCampaign).where(OutreachCampaign.id == campaign_id))
        return res.scalar_one_or_none()

    async def latest_for_event(self, org_id: uuid.UUID, event_id: str) -> OutreachCampaign | None:
        res = await self.session.execute(select(OutreachCampaign).where(
            OutreachCampaign.org_id == org_id, OutreachCampaign.event_id == event_id, OutreachCampaign.deleted_at.is_(None),
        ).order_by(OutreachCampaign.created_at.desc()).limit(1))
        return res.scalar_one_or_none()

    async def open_invitation_count(self, campaign_id: uuid.UUID) -> int:
        res = await self.session.execute(select(func.count(Invitation.id)).where(
            Invitation.campaign_id == campaign_id, Invitation.state.in_(OPEN_STATES)))
        return int(res.scalar_one())

class InvitationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> Invitation:
        obj = Invitation(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, invitation_id: uuid.UUID) -> Invitation | None:
        res = await self.session.execute(select(Invitation).where(Invitation.id == invitation_id))
        return res.scalar_one_or_none()

    async def get_for_recipient(self, campaign_id: uuid.UUID, recipient_id: uuid.UUID) -> Invitation | None:
        res = await self.session.execute(select(Invitation).where(
            Invitation.campaign_id == campaign_id, Invitation.recipient_id == recipient_id))
        return res.scalar_one_or_none()

    async def list_for_campaign(self, campaign_id: uuid.UUID) -> Sequence[Invitation]:
        res = await self.session.execute(select(Invitation).where(
            Invitation.campaign_id == campaign_id).order_by(Invitation.recipient_name.asc()))
        return res.scalars().all()

    async def list_open_ids(self, limit: int | None = None) -> list[uuid.UUID]:
        """Every non-terminal invitation across all campaigns and orgs (scheduler scan)."""
        q = select(Invitation.id).where(Invitation.state.in_(OPEN_STATES), Invitation.deleted_at.is_(None)).order_by(Invitation.invited_at.asc())
        if limit:
            q = q.limit(limit)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def latest_open_for_address(self, channel: str, address: str) -> Invitation | None:
        res = await self.session.execute(select(Invitation).where(
            Invitation.channel == channel, Invitation.address == address, Invitation.state.in_(OPEN_STATES),
            Invitation.deleted_at.is_(None),
        ).order_by(Invitation.invited_at.desc()).limit(1))
        return res.scalar_one_or_none()

    async def transition(self, inv: Invitation, *, expected_version: int, **values) -> bool:
        """Compare-and-set write: applies only if nobody bumped the version since it was read.

        On success the in-memory object is refreshed; on failure the caller's
        transition is simply discarded.
        """
        res = await self.session.execute(
            update(Invitation)
            .where(and_(Invitation.id == inv.id, Invitation.version == expected_version))
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(inv)
        return res.rowcount == 1

class AcknowledgementRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, campaign_id: uuid.UUID, recipient_id: uuid.UUID) -> Acknowledgement | None:
        res = await self.session.execute(select(Acknowledgement).where(
            Acknowledgement.campaign_id == campaign_id, Acknowledgement.recipient_id == recipient_id))
        return res.scalar_one_or_none()

    async def get_by_token(self, token: str, org_id: uuid.UUID | None = None) -> Acknowledgement | None:
        q = select(Acknowledgement).where(Acknowledgement.token == token)
        if org_id is not None:
            q = q.where(Acknowledgement.org_id == org_id)
        res = await self.session.execute(q.limit(1))
        return res.scalar_one_or_none()

    async def create(self, org_id: uuid.UUID, *, campaign_id: uuid.UUID, recipient_id: uuid.UUID, token: str,
                     response: str, acknowledged_at: datetime) -> Acknowledgement:
        obj = Acknowledgement(org_id=org_id, campaign_id=campaign_id, recipient_id=recipient_id, token=token,
                              response=response, acknowledged_at=acknowledged_at)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def count_for_campaign(self, campaign_id: uuid.UUID) -> int:
        res = await self.session.execute(select(func.count(Acknowledgement.id)).where(Acknowledgement.campaign_id == campaign_id))
        return int(res.scalar_one())
