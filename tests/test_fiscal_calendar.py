from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import unittest

from app.errors import ConfigurationError
from app.services.fiscal import (
    current_fiscal_year_parts,
    derive_fiscal_window,
    fiscal_label,
    fiscal_month_index,
    fiscal_month_labels,
)


@dataclass
class _FiscalYear:
    label: str
    start_date: date | None = None
    end_date: date | None = None


class FiscalCalendarTests(unittest.TestCase):
    def test_every_calendar_month_maps_to_expected_index(self) -> None:
        expected = {9: 0, 10: 1, 11: 2, 12: 3, 1: 4, 2: 5, 3: 6, 4: 7, 5: 8, 6: 9, 7: 10, 8: 11}
        for month, index in expected.items():
            with self.subTest(month=month):
                self.assertEqual(fiscal_month_index(date(2025, month, 15)), index)

    def test_index_is_stable_across_years(self) -> None:
        self.assertEqual(fiscal_month_index(date(2024, 12, 1)), 3)
        self.assertEqual(fiscal_month_index(date(2025, 12, 31)), 3)

    def test_accepts_iso_strings_and_datetimes(self) -> None:
        self.assertEqual(fiscal_month_index("2024-09-15"), 0)
        self.assertEqual(fiscal_month_index("2025-08-31T23:00:00Z"), 11)
        self.assertEqual(fiscal_month_index(datetime(2025, 1, 2, 8, 0, tzinfo=timezone.utc)), 4)

    def test_window_derived_from_label_when_dates_missing(self) -> None:
        start, end = derive_fiscal_window(_FiscalYear(label="2024/2025"))

        self.assertEqual(start, date(2024, 9, 1))
        self.assertEqual(end, date(2025, 8, 31))

    def test_explicit_window_wins_over_label(self) -> None:
        fiscal_year = _FiscalYear(
            label="2024/2025",
            start_date=date(2024, 10, 1),
            end_date=date(2025, 6, 30),
        )

        self.assertEqual(derive_fiscal_window(fiscal_year), (date(2024, 10, 1), date(2025, 6, 30)))

    def test_half_set_window_falls_back_to_label(self) -> None:
        fiscal_year = _FiscalYear(label="2023/2024", start_date=date(2023, 10, 1))

        self.assertEqual(derive_fiscal_window(fiscal_year), (date(2023, 9, 1), date(2024, 8, 31)))

    def test_invalid_label_raises_configuration_error(self) -> None:
        for label in ("", "2024", "2024/2026", "abcd/efgh"):
            with self.subTest(label=label):
                with self.assertRaises(ConfigurationError):
                    derive_fiscal_window(_FiscalYear(label=label))

    def test_current_fiscal_year_parts(self) -> None:
        september = current_fiscal_year_parts(datetime(2025, 9, 1, tzinfo=timezone.utc))
        august = current_fiscal_year_parts(datetime(2025, 8, 31, tzinfo=timezone.utc))

        self.assertEqual(fiscal_label(september), "2025/2026")
        self.assertEqual(fiscal_label(august), "2024/2025")

    def test_month_labels_start_in_september(self) -> None:
        labels = fiscal_month_labels()

        self.assertEqual(len(labels), 12)
        self.assertEqual(labels[0], {"label": "Sep", "index": 0})
        self.assertEqual(labels[-1], {"label": "Aug", "index": 11})


if __name__ == "__main__":
    unittest.main()
