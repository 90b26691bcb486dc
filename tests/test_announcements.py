import asyncio
import unittest
from datetime import datetime, timezone

from campusdesk.core.announcements import (
    AnnouncementChannel,
    AudienceProfile,
    is_live,
    matches_audience,
    sort_for_display,
)


class AudienceTests(unittest.TestCase):
    def test_all_reaches_everyone(self):
        self.assertTrue(matches_audience({"target_audience": "All"}, AudienceProfile()))

    def test_targeted(self):
        by_year = {"target_audience": "Specific Year", "target_year": 2}
        by_dept = {"target_audience": "Specific Department", "target_department": "CSE"}
        self.assertTrue(matches_audience(by_year, AudienceProfile(year=2)))
        self.assertFalse(matches_audience(by_year, AudienceProfile(year=3)))
        self.assertFalse(matches_audience(by_year, AudienceProfile()))
        self.assertTrue(matches_audience(by_dept, AudienceProfile(department="CSE")))
        self.assertFalse(matches_audience(by_dept, AudienceProfile(semester=4)))

    def test_expiry(self):
        now = datetime(2026, 10, 19, tzinfo=timezone.utc)
        self.assertTrue(is_live({}, now))
        self.assertTrue(is_live({"expires_at": "2026-10-20T00:00:00Z"}, now))
        self.assertFalse(is_live({"expires_at": "2026-10-18T00:00:00+00:00"}, now))
        self.assertFalse(is_live({"is_active": False}, now))

    def test_priority_then_newest(self):
        items = [
            {"id": "a", "priority": "Low", "created_at": "2026-10-19T10:00:00+00:00"},
            {"id": "b", "priority": "Critical", "created_at": "2026-10-01T10:00:00+00:00"},
            {"id": "c", "priority": "Low", "created_at": "2026-10-19T11:00:00+00:00"},
            {"id": "d", "priority": "High", "created_at": "2026-10-05T10:00:00+00:00"},
        ]
        self.assertEqual([item["id"] for item in sort_for_display(items)], ["b", "d", "c", "a"])


class ChannelTests(unittest.TestCase):
    def setUp(self):
        self.loop = asyncio.new_event_loop()
        self.addCleanup(self.loop.close)

    def _drain(self):
        self.loop.run_until_complete(asyncio.sleep(0))

    def test_publish_reaches_matching_subscribers(self):
        channel = AnnouncementChannel()
        year_two = channel.subscribe(AudienceProfile(year=2), self.loop)
        year_three = channel.subscribe(AudienceProfile(year=3), self.loop)

        delivered = channel.publish({"id": "n1", "target_audience": "Specific Year", "target_year": 2})
        self._drain()

        self.assertEqual(delivered, 1)
        self.assertEqual(year_two.queue.get_nowait()["id"], "n1")
        self.assertTrue(year_three.queue.empty())

    def test_full_queue_drops(self):
        channel = AnnouncementChannel(queue_size=1)
        subscription = channel.subscribe(AudienceProfile(), self.loop)

        channel.publish({"id": "n1"})
        channel.publish({"id": "n2"})
        self._drain()

        self.assertEqual(subscription.queue.qsize(), 1)
        self.assertEqual(subscription.dropped, 1)
        self.assertEqual(subscription.queue.get_nowait()["id"], "n1")

    def test_unsubscribe(self):
        channel = AnnouncementChannel()
        subscription = channel.subscribe(AudienceProfile(), self.loop)
        channel.unsubscribe(subscription)
        self.assertEqual(channel.subscriber_count, 0)
        self.assertEqual(channel.publish({"id": "n1"}), 0)


if __name__ == "__main__":
    unittest.main()
