"""Tests for provider gateway adapters; no network, providers are mocked at the client boundary."""

import asyncio
import json
import unittest
from types import SimpleNamespace

import httpx
from twilio.base.exceptions import TwilioRestException

from clubreach.core.channels import Channel
from clubreach.modules.realtime.hub import TopicHub
from clubreach.platform.adapters.gateway_chat import InAppChatGateway, inbox_topic
from clubreach.platform.adapters.gateway_log import LoggingGateway
from clubreach.platform.adapters.gateway_sendgrid import SENDGRID_SEND_URL, SendGridEmailGateway
from clubreach.platform.adapters.gateway_twilio import TwilioSmsGateway
from clubreach.platform.ports.gateway import GatewayPort


class FakeTwilioMessages:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(sid="SM0001")


class TestTwilio(unittest.TestCase):
    def test_submit_returns_sid(self):
        messages = FakeTwilioMessages()
        gw = TwilioSmsGateway("AC1", "tok", "+15550000000", status_callback="http://cb", client=SimpleNamespace(messages=messages))
        result = asyncio.run(gw.submit("hello", "+15551112222"))
        self.assertEqual(result.provider_message_id, "SM0001")
        self.assertTrue(result.ok)
        self.assertEqual(messages.calls[0]["to"], "+15551112222")
        self.assertEqual(messages.calls[0]["status_callback"], "http://cb")

    def test_provider_error_becomes_result(self):
        err = TwilioRestException(400, "https://api.twilio.com", msg="invalid To number")
        gw = TwilioSmsGateway("AC1", "tok", "+15550000000", client=SimpleNamespace(messages=FakeTwilioMessages(err)))
        result = asyncio.run(gw.submit("hello", "nope"))
        self.assertFalse(result.ok)
        self.assertIn("invalid To number", result.error)


class TestSendGrid(unittest.TestCase):
    def test_submit_reads_message_id_header(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, headers={"X-Message-Id": "sg-abc"})

        gw = SendGridEmailGateway("key", "club@test", transport=httpx.MockTransport(handler))
        result = asyncio.run(gw.submit("body", "dana@club.test", subject="Coaching opportunity"))
        self.assertEqual(result.provider_message_id, "sg-abc")
        self.assertEqual(str(seen[0].url), SENDGRID_SEND_URL)
        body = json.loads(seen[0].content)
        self.assertEqual(body["personalizations"][0]["to"][0]["email"], "dana@club.test")
        self.assertEqual(body["subject"], "Coaching opportunity")

    def test_rejection_and_transport_errors_become_results(self):
        rejected = SendGridEmailGateway("key", "club@test", transport=httpx.MockTransport(lambda r: httpx.Response(400, text="bad")))
        self.assertIn("sendgrid 400", asyncio.run(rejected.submit("b", "x@y")).error)

        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        unreachable = SendGridEmailGateway("key", "club@test", transport=httpx.MockTransport(boom))
        self.assertIn("transport error", asyncio.run(unreachable.submit("b", "x@y")).error)


class TestInAppChat(unittest.TestCase):
    def test_pushes_to_inbox_topic(self):
        async def run():
            hub = TopicHub()
            sub = hub.subscribe(inbox_topic("dana"))
            result = await InAppChatGateway(hub).submit("see you at 6", "dana")
            envelope = await sub.get()
            self.assertEqual(envelope["dedup_key"], result.provider_message_id)
            self.assertEqual(envelope["payload"]["text"], "see you at 6")

        asyncio.run(run())


class TestPort(unittest.TestCase):
    def test_adapters_satisfy_port(self):
        self.assertIsInstance(LoggingGateway(Channel.SMS), GatewayPort)
        self.assertIsInstance(InAppChatGateway(TopicHub()), GatewayPort)
        self.assertTrue(asyncio.run(LoggingGateway(Channel.EMAIL).submit("x", "y")).provider_message_id.startswith("log-"))


if __name__ == "__main__":
    unittest.main()
