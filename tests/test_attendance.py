import unittest
from types import SimpleNamespace

from campusdesk.core.attendance import InvalidStatusError, summarize, summarize_by


class AttendanceSummaryTests(unittest.TestCase):
    def test_empty(self):
        summary = summarize([])
        self.assertEqual(
            summary.as_dict(),
            {"present": 0, "absent": 0, "leave": 0, "total": 0, "percentage": 0},
        )

    def test_leave_counts_in_total_only(self):
        summary = summarize(["Present", "Present", "Absent", "Leave"])
        self.assertEqual((summary.present, summary.absent, summary.leave, summary.total), (2, 1, 1, 4))
        self.assertAlmostEqual(summary.percentage, 50.0)

    def test_accepts_mappings_and_objects(self):
        records = [{"status": "Present"}, SimpleNamespace(status="Absent"), {"status": "Present"}]
        summary = summarize(records)
        self.assertEqual(summary.total, 3)
        self.assertAlmostEqual(summary.percentage, 200 / 3)

    def test_full_precision_with_display_rounding(self):
        summary = summarize(["Present", "Absent", "Absent"])
        self.assertAlmostEqual(summary.percentage, 100 / 3, places=10)
        self.assertEqual(summary.as_dict()["percentage"], 33.3)

    def test_unknown_status_fails(self):
        with self.assertRaises(InvalidStatusError) as ctx:
            summarize([{"status": "Present"}, {"status": "Tardy"}])
        self.assertEqual(ctx.exception.status, "Tardy")

    def test_status_is_case_sensitive(self):
        with self.assertRaises(InvalidStatusError):
            summarize(["present"])

    def test_missing_status_fails(self):
        with self.assertRaises(InvalidStatusError):
            summarize([{}])

    def test_summarize_by_student(self):
        records = [
            {"student_id": "s1", "status": "Present"},
            {"student_id": "s1", "status": "Absent"},
            {"student_id": "s2", "status": "Leave"},
        ]
        groups = summarize_by(records, "student_id")
        self.assertEqual(set(groups), {"s1", "s2"})
        self.assertAlmostEqual(groups["s1"].percentage, 50.0)
        self.assertEqual(groups["s2"].leave, 1)
        self.assertEqual(groups["s2"].percentage, 0.0)


if __name__ == "__main__":
    unittest.main()
