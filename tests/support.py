"""Shared fixtures: a fresh in-memory database per test and in-memory gateways."""

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from clubreach.core.base import Base
from clubreach.core.channels import Channel
from clubreach.core.config import settings
from clubreach.core.db import import_models
from clubreach.core.security import Principal
from clubreach.modules.directory.repository import ContactRepository
from clubreach.modules.messaging.dispatcher import ChannelDispatcher, ChannelLimiter
from clubreach.modules.outreach.schemas import CampaignConfig
from clubreach.modules.outreach.service import OutreachService
from clubreach.platform.ports.gateway import SubmitResult

ORG_ID = uuid.UUID(settings.DEFAULT_ORG_ID)
T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

EVENT_CONTEXT = {
    "eventName": "Spring Clinic",
    "eventType": "clinic",
    "eventDate": "2025-03-15",
    "eventLocation": "North Gym",
}


def day(n: float) -> datetime:
    return T0 + timedelta(days=n)


def principal() -> Principal:
    return Principal(user_id=uuid.uuid4(), org_id=ORG_ID, roles=["admin"], scopes=["*"])


async def make_db():
    """Returns (engine, session_factory) over a private in-memory sqlite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class FakeGateway:
    """Records every submit; addresses in ``fail_for`` are rejected, in ``raise_for`` blow up."""

    def __init__(self, channel: Channel, fail_for=(), raise_for=()):
        self.channel = channel
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.sent: list[tuple[str, str]] = []

    async def submit(self, text: str, address: str, subject: str | None = None) -> SubmitResult:
        self.sent.append((address, text))
        if address in self.raise_for:
            raise ConnectionError("socket closed")
        if address in self.fail_for:
            return SubmitResult(error="carrier rejected")
        return SubmitResult(provider_message_id=f"{self.channel.value}-{uuid.uuid4().hex}")


def fake_gateways(**kwargs) -> dict[Channel, FakeGateway]:
    return {ch: FakeGateway(ch, **kwargs) for ch in Channel}


def dispatcher_for(session, gateways) -> ChannelDispatcher:
    return ChannelDispatcher(session, gateways=gateways, limiter=ChannelLimiter({}, default=2))


def service_for(session, gateways) -> OutreachService:
    return OutreachService(session, dispatcher=dispatcher_for(session, gateways))


_phones = iter(range(1000, 10_000))


def address_fields(name: str, channel: Channel) -> dict:
    slug = name.lower().replace(" ", ".")
    if channel == Channel.SMS:
        return {"phone": f"+1555000{next(_phones)}"}
    if channel == Channel.EMAIL:
        return {"email": f"{slug}@club.test"}
    return {"chat_handle": slug}


async def add_contact(session_factory, name: str, channel: Channel = Channel.SMS, role: str = "coach", **extra):
    fields = {**address_fields(name, channel), **extra}
    async with session_factory() as s:
        contact = await ContactRepository(s).create(
            ORG_ID, display_name=name, role=role, channel_preference=channel.value, **fields
        )
        await s.commit()
        return contact


def config(offsets=(1, 3, 5), handoff=7, **templates) -> CampaignConfig:
    data = {"reminder_offsets_days": list(offsets), "handoff_after_days": handoff}
    if templates:
        data["templates"] = templates
    return CampaignConfig(**data)
