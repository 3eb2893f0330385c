"""HTTP-level tests: routes, status codes and error mapping over a throwaway sqlite file."""

import asyncio
import tempfile
import unittest
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from clubreach.api.router import api_router
from clubreach.core.base import Base
from clubreach.core.channels import Channel
from clubreach.core.config import settings
from clubreach.core.db import get_session, import_models
from clubreach.modules.outreach.links import issue_response_token
from clubreach.modules.outreach.router import get_scheduler
from clubreach.modules.outreach.scheduler import OutreachScheduler

from tests.support import EVENT_CONTEXT, add_contact

P = settings.API_PREFIX


class TestApi(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        db_file = tempfile.NamedTemporaryFile(suffix=".sqlite", delete=False)
        db_file.close()
        # a new connection per session, so each TestClient request loop gets its own
        cls.engine = create_async_engine(f"sqlite+aiosqlite:///{db_file.name}", poolclass=NullPool)
        cls.factory = async_sessionmaker(cls.engine, expire_on_commit=False, class_=AsyncSession)

        async def create_tables():
            import_models()
            async with cls.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        asyncio.run(create_tables())

        async def session_override():
            async with cls.factory() as s:
                yield s

        scheduler = OutreachScheduler(cls.factory)
        app = FastAPI()
        app.include_router(api_router, prefix=P)
        app.dependency_overrides[get_session] = session_override
        app.dependency_overrides[get_scheduler] = lambda: scheduler
        cls.client = TestClient(app)

    def contact(self, name: str, channel: Channel = Channel.SMS, **extra):
        return asyncio.run(add_contact(self.factory, name, channel, **extra))

    def initiate(self, event_id: str, *contacts, **overrides):
        body = {"event_id": event_id, "recipient_ids": [str(c.id) for c in contacts], "context": EVENT_CONTEXT}
        body.update(overrides)
        return self.client.post(f"{P}/outreach/campaigns", json=body)

    def status(self, event_id: str) -> dict:
        r = self.client.get(f"{P}/outreach/events/{event_id}/status")
        self.assertEqual(r.status_code, 200, r.text)
        return r.json()

    def test_health(self):
        self.assertEqual(self.client.get(f"{P}/health").json(), {"status": "ok"})

    def test_initiate_status_and_conflict(self):
        a = self.contact("Ana Lima")
        b = self.contact("Ben Cho", Channel.EMAIL)
        r = self.initiate("api-evt-1", a, b)
        self.assertEqual(r.status_code, 201, r.text)
        out = r.json()
        self.assertEqual((out["invited"], out["sent"], out["partial"]), (2, 2, False))

        st = self.status("api-evt-1")
        self.assertFalse(st["closed"])
        self.assertEqual({i["channel_label"] for i in st["invitations"]}, {"SMS", "Email"})
        self.assertTrue(all(i["state"] == "pending" and i["reminders_sent"] == 0 for i in st["invitations"]))

        self.assertEqual(self.initiate("api-evt-1", a).status_code, 409)

        deliveries = self.client.get(f"{P}/outreach/campaigns/{out['campaign_id']}/deliveries").json()
        self.assertEqual(len(deliveries), 2)
        self.assertTrue(all(d["status"] == "sent" for d in deliveries))

    def test_validation_errors_map_to_422(self):
        a = self.contact("Cy Diaz")
        bad = self.initiate("api-evt-2", a, config={"reminder_offsets_days": [3, 1], "handoff_after_days": 7})
        self.assertEqual(bad.status_code, 422)
        self.assertIn("increasing", bad.json()["detail"])
        nobody = self.client.post(f"{P}/outreach/campaigns", json={
            "event_id": "api-evt-2", "recipient_ids": ["00000000-0000-0000-0000-00000000beef"],
        })
        self.assertEqual(nobody.status_code, 422)

    def test_submit_response_and_magic_link(self):
        a = self.contact("Dee Fox")
        b = self.contact("Eli Gray")
        campaign_id = self.initiate("api-evt-3", a, b).json()["campaign_id"]

        r = self.client.post(f"{P}/outreach/responses", json={"event_id": "api-evt-3", "recipient_id": str(a.id), "response": "accept"})
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["response"], "accept")
        self.assertEqual(self.client.post(f"{P}/outreach/responses", json={
            "event_id": "api-evt-missing", "recipient_id": str(a.id), "response": "accept"}).status_code, 404)

        token = issue_response_token(campaign_id, b.id)
        link = self.client.get(f"{P}/outreach/respond", params={"token": token, "response": "decline"})
        self.assertEqual(link.status_code, 200)
        self.assertIn("declined", link.text)
        # clicking twice is harmless
        self.assertEqual(self.client.get(f"{P}/outreach/respond", params={"token": token, "response": "decline"}).status_code, 200)
        self.assertEqual(self.client.get(f"{P}/outreach/respond", params={"token": "garbage", "response": "accept"}).status_code, 400)

        st = self.status("api-evt-3")
        self.assertTrue(st["closed"])
        self.assertEqual(sorted(i["state"] for i in st["invitations"]), ["accepted", "declined"])

    def test_twilio_inbound_reply(self):
        a = self.contact("Fay Hart")
        self.initiate("api-evt-4", a)
        r = self.client.post(f"{P}/webhooks/twilio/inbound", data={
            "MessageSid": "SMinbound1", "From": a.phone, "To": "+15550000000", "Body": "Yes, I'm in",
        })
        self.assertEqual(r.status_code, 200)
        self.assertIn("<Response></Response>", r.text)
        self.assertEqual(self.status("api-evt-4")["invitations"][0]["state"], "accepted")

    def test_unmatched_inbound_is_acknowledged(self):
        r = self.client.post(f"{P}/webhooks/inbound", json={
            "channel": "sms", "address": "+19999999999", "text": "yes", "provider_token": "x-1",
        })
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"matched": False, "response": None})

    def test_delivery_confirmation(self):
        a = self.contact("Gus Ives")
        campaign_id = self.initiate("api-evt-5", a).json()["campaign_id"]
        (record,) = self.client.get(f"{P}/outreach/campaigns/{campaign_id}/deliveries").json()
        r = self.client.post(f"{P}/webhooks/delivery-status", json={
            "provider_message_id": record["provider_message_id"], "status": "delivered",
        })
        self.assertEqual(r.json(), {"matched": True, "status": "delivered"})
        unknown = self.client.post(f"{P}/webhooks/delivery-status", json={"provider_message_id": "nope", "status": "delivered"})
        self.assertEqual(unknown.json(), {"matched": False, "status": None})

    def test_escalate_cancel_and_tick(self):
        a = self.contact("Hal Jun")
        b = self.contact("Ivy Kerr")
        self.initiate("api-evt-6", a, b)
        r = self.client.post(f"{P}/outreach/events/api-evt-6/escalate", json={"recipient_id": str(a.id), "reason": "Injured"})
        self.assertEqual(r.json(), {"escalated": 1})
        self.assertEqual(self.client.post(f"{P}/outreach/events/api-evt-6/cancel").json(), {"escalated": 1})
        self.assertEqual(self.client.post(f"{P}/outreach/events/api-evt-unknown/cancel").status_code, 404)

        tick = self.client.post(f"{P}/outreach/ticks")
        self.assertEqual(tick.status_code, 200)
        self.assertFalse(tick.json()["skipped"])

    def test_chat_broadcast(self):
        a = self.contact("Jo Lane", Channel.CHAT)
        r = self.client.post(f"{P}/messaging/chat", json={"event_id": "api-evt-7", "recipient_ids": [str(a.id)], "text": "Gym opens 5:30"})
        self.assertEqual(r.status_code, 201, r.text)
        out = r.json()
        self.assertEqual(out["failed"], 0)
        self.assertEqual(out["records"][0]["channel"], "chat")
        listed = self.client.get(f"{P}/messaging/messages/{out['message_id']}/deliveries").json()
        self.assertEqual(len(listed), 1)
        self.assertEqual(self.client.get(f"{P}/messaging/messages/00000000-0000-0000-0000-000000000000/deliveries").status_code, 404)

    def test_rank_coaches(self):
        window = [{"start": "2030-06-01T09:00:00+00:00", "end": "2030-06-01T12:00:00+00:00"}]
        strong = self.contact("Kim Moss", specialties=["rank-setting", "rank-serving"], availability=window, ratings=[5])
        self.contact("Lou Nash", specialties=["rank-setting"])
        self.contact("Parent Pat", role="parent", specialties=["rank-setting", "rank-serving"])
        r = self.client.post(f"{P}/matching/rank", json={
            "required_skills": ["rank-setting", "rank-serving"],
            "start": datetime(2030, 6, 1, 10, tzinfo=timezone.utc).isoformat(),
            "end": datetime(2030, 6, 1, 11, tzinfo=timezone.utc).isoformat(),
            "limit": 2,
        })
        self.assertEqual(r.status_code, 200, r.text)
        ranked = r.json()
        self.assertEqual(ranked[0]["recipient_id"], str(strong.id))
        self.assertAlmostEqual(ranked[0]["score"], 13.0)
        self.assertNotIn("Parent Pat", [x["display_name"] for x in ranked])


if __name__ == "__main__":
    unittest.main()
