"""Tests for topic fan-out: subscriber dedup and the outbox relay."""

import asyncio
import unittest

from sqlalchemy import select

from clubreach.modules.events.outbox import EventOutbox, OutboxService, relay_once
from clubreach.modules.messaging.repository import DeliveryLedger
from clubreach.modules.realtime.fanout import KIND_MESSAGE, NotificationFanout, event_topic
from clubreach.modules.realtime.hub import TopicHub, make_envelope

from tests.support import ORG_ID, make_db


class RecordingBus:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []

    async def publish(self, topic, key, value, headers=None):
        if self.fail:
            raise ConnectionError("bus down")
        self.published.append((topic, key, value))


class TestHub(unittest.TestCase):
    def test_subscriber_drops_redelivered_envelopes(self):
        async def run():
            hub = TopicHub()
            sub = hub.subscribe("event.evt-1")
            first = make_envelope("delivery_status", "event.evt-1", "rec-1:sent", {"status": "sent"})
            again = make_envelope("delivery_status", "event.evt-1", "rec-1:sent", {"status": "sent"})
            later = make_envelope("delivery_status", "event.evt-1", "rec-1:delivered", {"status": "delivered"})
            for env in (first, again, later):
                self.assertEqual(hub.publish("event.evt-1", env), 1)

            self.assertEqual((await sub.get())["dedup_key"], "rec-1:sent")
            self.assertEqual((await sub.get())["dedup_key"], "rec-1:delivered")
            self.assertTrue(sub.queue.empty())

        asyncio.run(run())

    def test_topics_are_isolated_and_unsubscribe_cleans_up(self):
        async def run():
            hub = TopicHub()
            sub = hub.subscribe("event.a")
            self.assertEqual(hub.publish("event.b", make_envelope("message", "event.b", "m1", {})), 0)
            self.assertEqual(hub.subscriber_count("event.a"), 1)
            sub.close()
            self.assertEqual(hub.subscriber_count("event.a"), 0)
            self.assertEqual(hub.publish("event.a", make_envelope("message", "event.a", "m2", {})), 0)

        asyncio.run(run())


class TestRelay(unittest.TestCase):
    def test_relay_publishes_then_marks_sent(self):
        async def run():
            engine, factory = await make_db()
            hub = TopicHub()
            sub = hub.subscribe(event_topic("evt-1"))
            bus = RecordingBus()
            async with factory() as s:
                msg = await DeliveryLedger(s).append_message(ORG_ID, template_id="chat", rendered_text="Bring water", event_id="evt-1")
                await NotificationFanout(s).message(msg)
                await s.commit()

            async with factory() as s:
                self.assertEqual(await relay_once(s, bus, hub), 1)
            async with factory() as s:
                self.assertEqual(await relay_once(s, bus, hub), 0)
                row = (await s.execute(select(EventOutbox))).scalar_one()
                self.assertEqual(row.status, "sent")

            topic, key, value = bus.published[0]
            self.assertEqual((topic, key), ("event.evt-1", str(msg.id)))
            self.assertEqual(value["kind"], KIND_MESSAGE)
            envelope = await sub.get()
            self.assertEqual(envelope["payload"]["text"], "Bring water")
            self.assertEqual(envelope["org_id"], str(ORG_ID))
            await engine.dispose()

        asyncio.run(run())

    def test_failed_publish_stays_pending_with_backoff(self):
        async def run():
            engine, factory = await make_db()
            async with factory() as s:
                await OutboxService(s).enqueue(ORG_ID, "operators", "OUTREACH_ESCALATED", "invitation", "inv-1", {"reason": "x"})
                await s.commit()
            async with factory() as s:
                self.assertEqual(await relay_once(s, RecordingBus(fail=True)), 0)
            async with factory() as s:
                row = (await s.execute(select(EventOutbox))).scalar_one()
                self.assertEqual(row.status, "pending")
                self.assertEqual(row.attempts, 1)
                self.assertIn("bus down", row.last_error)
                # not due again until the backoff elapses
                self.assertEqual(await relay_once(s, RecordingBus()), 0)
            await engine.dispose()

        asyncio.run(run())


if __name__ == "__main__":
    unittest.main()
