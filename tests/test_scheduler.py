"""Tests for the outreach scheduler loop: isolation, no overlap, catch-up on start."""

import asyncio
import unittest

from clubreach.modules.outreach.repository import InvitationRepository
from clubreach.modules.outreach.scheduler import OutreachScheduler

from tests.support import EVENT_CONTEXT, T0, add_contact, config, day, fake_gateways, make_db, principal, service_for


async def launch(factory, gws, contact, event_id, cfg=None):
    async with factory() as s:
        result = await service_for(s, gws).initiate(principal(), event_id, [contact.id], cfg or config(), EVENT_CONTEXT, now=T0)
    return result.campaign


async def reminders_sent(factory, campaign_id, recipient_id):
    async with factory() as s:
        return (await InvitationRepository(s).get_for_recipient(campaign_id, recipient_id)).reminders_sent


class TestTick(unittest.TestCase):
    def test_one_broken_invitation_does_not_stop_the_tick(self):
        async def run():
            engine, factory = await make_db()
            gws = fake_gateways()
            a = await add_contact(factory, "Dana Reyes")
            b = await add_contact(factory, "Lee Park")
            broken = await launch(factory, gws, a, "evt-1", config(reminder="Hi {{coachName}}, bring {{jerseyColor}}"))
            healthy = await launch(factory, gws, b, "evt-2")

            scheduler = OutreachScheduler(factory, service_factory=lambda s: service_for(s, gws))
            report = await scheduler.tick(now=day(1))
            self.assertEqual((report.errors, report.reminded, report.evaluated), (1, 1, 1))
            self.assertEqual(await reminders_sent(factory, broken.id, a.id), 0)
            self.assertEqual(await reminders_sent(factory, healthy.id, b.id), 1)
            await engine.dispose()

        asyncio.run(run())

    def test_overlapping_tick_is_skipped(self):
        async def run():
            engine, factory = await make_db()
            gws = fake_gateways()
            a = await add_contact(factory, "Dana Reyes")
            campaign = await launch(factory, gws, a, "evt-1")
            scheduler = OutreachScheduler(factory, service_factory=lambda s: service_for(s, gws))

            first, second = await asyncio.gather(scheduler.tick(now=day(1)), scheduler.tick(now=day(1)))
            self.assertFalse(first.skipped)
            self.assertTrue(second.skipped)
            self.assertEqual(await reminders_sent(factory, campaign.id, a.id), 1)
            await engine.dispose()

        asyncio.run(run())

    def test_repeated_ticks_are_idempotent(self):
        async def run():
            engine, factory = await make_db()
            gws = fake_gateways()
            a = await add_contact(factory, "Dana Reyes")
            campaign = await launch(factory, gws, a, "evt-1")
            scheduler = OutreachScheduler(factory, service_factory=lambda s: service_for(s, gws))
            for _ in range(3):
                await scheduler.tick(now=day(1.5))
            self.assertEqual(await reminders_sent(factory, campaign.id, a.id), 1)
            await engine.dispose()

        asyncio.run(run())


class TestRunForever(unittest.TestCase):
    def test_catches_up_immediately_on_start(self):
        async def run():
            engine, factory = await make_db()
            gws = fake_gateways()
            a = await add_contact(factory, "Dana Reyes")
            campaign = await launch(factory, gws, a, "evt-1")  # invited long ago

            reports = []

            class RecordingScheduler(OutreachScheduler):
                async def tick(self, now=None):
                    report = await super().tick(now)
                    reports.append(report)
                    return report

            scheduler = RecordingScheduler(factory, interval_seconds=3600, service_factory=lambda s: service_for(s, gws))
            task = asyncio.create_task(scheduler.run_forever())
            for _ in range(200):
                if reports:
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

            self.assertEqual(len(reports), 1)
            self.assertEqual(reports[0].escalated, 1)
            async with factory() as s:
                inv = await InvitationRepository(s).get_for_recipient(campaign.id, a.id)
            self.assertEqual(inv.state, "escalated")
            await engine.dispose()

        asyncio.run(run())


if __name__ == "__main__":
    unittest.main()
