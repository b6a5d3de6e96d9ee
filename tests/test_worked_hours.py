from __future__ import annotations

from datetime import date
from decimal import Decimal
import unittest

from app.services.halo_records import TimesheetDay
from app.services.worked_hours import build_daily_worked_map


class DailyWorkedMapTests(unittest.TestCase):
    def test_rows_for_same_agent_and_day_are_summed(self) -> None:
        worked = build_daily_worked_map(
            [
                TimesheetDay(agent_id="12", day=date(2024, 9, 15), work_hours=Decimal("4")),
                TimesheetDay(agent_id=" 12 ", day=date(2024, 9, 15), work_hours=Decimal("3.5")),
                TimesheetDay(agent_id="12", day=date(2024, 9, 16), work_hours=Decimal("8")),
            ]
        )

        self.assertEqual(worked[("12", date(2024, 9, 15))], Decimal("7.5"))
        self.assertEqual(worked[("12", date(2024, 9, 16))], Decimal("8"))

    def test_rows_without_agent_or_date_are_skipped(self) -> None:
        worked = build_daily_worked_map(
            [
                TimesheetDay(agent_id="", day=date(2024, 9, 15), work_hours=Decimal("4")),
                TimesheetDay(agent_id="12", day=None, work_hours=Decimal("4")),
            ]
        )

        self.assertEqual(worked, {})


if __name__ == "__main__":
    unittest.main()
