import json
import asyncio
from datetime import datetime
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.db import get_session
from clubreach.core.security import get_principal, require_scopes, Principal
from clubreach.modules.events.outbox import OutboxRepository
from clubreach.platform.provider_registry import registry

router = APIRouter()

KEEPALIVE_SECONDS = 15.0

def sse_frame(envelope: dict) -> str:
    return f"event: {envelope['kind']}\ndata: {json.dumps(envelope, default=str)}\n\n"

@router.get("/topics/{topic}/stream", dependencies=[Depends(require_scopes("realtime:read"))])
async def stream_topic(topic: str, principal: Principal = Depends(get_principal), s: AsyncSession = Depends(get_session),
                       after: datetime | None = None):
    """Server-sent events for one topic (``event.<id>``, ``operators``, ``inbox.<handle>``).

    With ``after``, outbox rows newer than that instant are replayed first.
    """
    # subscribe before reading the replay so nothing falls in between
    sub = registry.hub().subscribe(topic)
    org = str(principal.org_id)
    replay = []
    if after is not None:
        rows = await OutboxRepository(s).list_for_topic_after(principal.org_id, topic, after)
        replay = [r.envelope() for r in rows]

    async def event_stream():
        try:
            for envelope in replay:
                if sub.accept(envelope):
                    yield sse_frame(envelope)
            while True:
                try:
                    envelope = await asyncio.wait_for(sub.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if envelope.get("org_id", org) != org:
                    continue
                yield sse_frame(envelope)
        finally:
            sub.close()

    return StreamingResponse(event_stream(), media_type="text/event-stream")
