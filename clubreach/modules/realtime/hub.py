"""
In-process publish/subscribe topics for live viewers.

Delivery is at-least-once: the outbox relay may publish the same envelope
more than once (a crash between publish and mark_sent, an SSE replay that
overlaps live traffic). Subscribers therefore drop envelopes whose
``dedup_key`` they have already seen.
"""
import asyncio
import logging
from collections import OrderedDict, defaultdict

log = logging.getLogger("realtime.hub")

def make_envelope(kind: str, topic: str, dedup_key: str, payload: dict) -> dict:
    return {"kind": kind, "topic": topic, "dedup_key": dedup_key, "payload": payload}

class Subscription:
    def __init__(self, hub: "TopicHub", topic: str, max_queue: int = 1000, remember: int = 4096):
        self.hub = hub
        self.topic = topic
        self.queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=max_queue)
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._remember = remember

    def offer(self, envelope: dict) -> bool:
        try:
            self.queue.put_nowait(envelope)
            return True
        except asyncio.QueueFull:
            log.warning(f"Subscriber queue full on {self.topic}; dropping {envelope.get('dedup_key')}")
            return False

    def accept(self, envelope: dict) -> bool:
        """True the first time a dedup_key is seen, False for redeliveries."""
        key = envelope.get("dedup_key")
        if key is None:
            return True
        if key in self._seen:
            self._seen.move_to_end(key)
            return False
        self._seen[key] = None
        if len(self._seen) > self._remember:
            self._seen.popitem(last=False)
        return True

    async def get(self) -> dict:
        while True:
            envelope = await self.queue.get()
            if self.accept(envelope):
                return envelope

    def close(self):
        self.hub.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        return await self.get()

class TopicHub:
    def __init__(self):
        self._subs: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, topic: str) -> Subscription:
        sub = Subscription(self, topic)
        self._subs[topic].add(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        subs = self._subs.get(sub.topic)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subs[sub.topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subs.get(topic, ()))

    def publish(self, topic: str, envelope: dict) -> int:
        delivered = 0
        for sub in list(self._subs.get(topic, ())):
            if sub.offer(envelope):
                delivered += 1
        return delivered
