import uuid
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP, text, String, Integer, Text, JSON, select, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clubreach.core.base import Base, TimestampedTenantMixin, utcnow
from clubreach.platform.ports.event_bus import EventBusPort
from clubreach.modules.realtime.hub import TopicHub, make_envelope

log = logging.getLogger("event.outbox")

class EventOutbox(Base, TimestampedTenantMixin):
    topic: Mapped[str] = mapped_column(String(128), index=True)
    event_type: Mapped[str] = mapped_column(String(64))
    subject_type: Mapped[str] = mapped_column(String(32))
    subject_id: Mapped[str] = mapped_column(String(64))
    dedup_key: Mapped[str] = mapped_column(String(128))
    payload: Mapped[dict] = mapped_column(JSON)

    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, server_default=text("CURRENT_TIMESTAMP"))

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, server_default=text("CURRENT_TIMESTAMP"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def envelope(self) -> dict:
        return make_envelope(self.event_type, self.topic, self.dedup_key, self.payload)

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, org_id: uuid.UUID, *, topic: str, event_type: str, subject_type: str, subject_id: str,
                      payload: dict, dedup_key: str | None = None, occurred_at: datetime | None = None) -> EventOutbox:
        now = datetime.now(timezone.utc)
        obj = EventOutbox(
            org_id=org_id,
            topic=topic,
            event_type=event_type,
            subject_type=subject_type,
            subject_id=str(subject_id),
            dedup_key=dedup_key or str(subject_id),
            payload=payload,
            occurred_at=occurred_at or now,
            status="pending",
            attempts=0,
            next_attempt_at=now,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 50) -> list[EventOutbox]:
        # SELECT ... FOR UPDATE SKIP LOCKED (a no-op on sqlite)
        q = (
            select(EventOutbox)
            .where(
                and_(
                    EventOutbox.deleted_at.is_(None),
                    EventOutbox.status == "pending",
                    EventOutbox.next_attempt_at <= datetime.now(timezone.utc),
                )
            )
            .order_by(EventOutbox.occurred_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        # mark as processing
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str):
        obj.status = "pending"  # retry
        obj.attempts = (obj.attempts or 0) + 1
        backoff = min(60, 2 ** min(obj.attempts, 6))  # 1,2,4,8,16,32,60s
        obj.next_attempt_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
        obj.last_error = error[:2000]  # truncate
        await self.session.flush()

    async def list_for_topic_after(self, org_id: uuid.UUID, topic: str, after: datetime, limit: int = 100) -> Sequence[EventOutbox]:
        q = select(EventOutbox).where(
            EventOutbox.org_id == org_id,
            EventOutbox.topic == topic,
            EventOutbox.occurred_at > after,
            EventOutbox.deleted_at.is_(None),
        ).order_by(EventOutbox.occurred_at.asc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

class OutboxService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = OutboxRepository(session)

    async def enqueue(self, org_id: uuid.UUID, topic: str, event_type: str, subject_type: str, subject_id: str | uuid.UUID,
                      payload: dict, dedup_key: str | None = None, occurred_at: datetime | None = None) -> EventOutbox:
        return await self.repo.enqueue(org_id, topic=topic, event_type=event_type, subject_type=subject_type,
                                       subject_id=str(subject_id), payload=payload, dedup_key=dedup_key, occurred_at=occurred_at)

# ---- Background relay ----

async def relay_once(session: AsyncSession, bus: EventBusPort, hub: TopicHub | None = None, limit: int = 50) -> int:
    """Publish one claimed batch; returns how many rows were published.

    A row is marked sent only after publishing, so a crash in between
    republishes it: consumers deduplicate on dedup_key.
    """
    repo = OutboxRepository(session)
    batch = await repo.claim_batch(limit=limit)
    published = 0
    for ev in batch:
        try:
            envelope = ev.envelope()
            await bus.publish(topic=ev.topic, key=ev.dedup_key, value={
                **envelope,
                "org_id": str(ev.org_id),
                "subject": {"type": ev.subject_type, "id": ev.subject_id},
                "occurred_at": ev.occurred_at.isoformat(),
                "outbox_id": str(ev.id),
            })
            if hub is not None:
                hub.publish(ev.topic, {**envelope, "org_id": str(ev.org_id)})
            await repo.mark_sent(ev)
            published += 1
        except Exception as ex:  # noqa
            log.exception("Publish failed")
            await repo.mark_failed(ev, error=str(ex))
    await session.commit()
    return published

async def run_outbox_relay(session_factory: async_sessionmaker, bus: EventBusPort, hub: TopicHub | None = None,
                           poll_interval_seconds: float = 1.0):
    log.info("Outbox relay started with bus=%s", bus.__class__.__name__)
    try:
        while True:
            # claim and publish in small batches
            async with session_factory() as session:
                try:
                    published = await relay_once(session, bus, hub)
                except Exception:
                    log.exception("Outbox relay iteration failed")
                    await session.rollback()
                    published = 0
            if not published:
                await asyncio.sleep(poll_interval_seconds)
            else:
                await asyncio.sleep(0)  # yield
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
