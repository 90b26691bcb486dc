import unittest
from datetime import datetime, timedelta, timezone

from campusdesk.core.timestamps import stamp_new, touch


class TimestampTests(unittest.TestCase):
    def setUp(self):
        self.now = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)

    def test_touch_returns_copy(self):
        record = {"status": "Present"}
        stamped = touch(record, self.now)
        self.assertEqual(stamped["updated_at"], "2026-10-19T09:30:00+00:00")
        self.assertNotIn("updated_at", record)

    def test_naive_clock_is_treated_as_utc(self):
        stamped = touch({}, datetime(2026, 10, 19, 9, 30))
        self.assertEqual(stamped["updated_at"], "2026-10-19T09:30:00+00:00")

    def test_stamp_new_keeps_existing_created_at(self):
        created = stamp_new({}, self.now)
        self.assertEqual(created["created_at"], created["updated_at"])

        later = stamp_new(created, self.now + timedelta(hours=1))
        self.assertEqual(later["created_at"], "2026-10-19T09:30:00+00:00")
        self.assertEqual(later["updated_at"], "2026-10-19T10:30:00+00:00")


if __name__ == "__main__":
    unittest.main()
