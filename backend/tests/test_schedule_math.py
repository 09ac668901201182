import unittest
from datetime import date, datetime

from backend.schedule_math import (
    add_months,
    clamp_day,
    elapsed_periods,
    installment_amount,
    month_bounds,
    parse_iso_date,
    round_currency,
)


class ScheduleMathTests(unittest.TestCase):
    def test_add_months_clamps_to_month_end(self) -> None:
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2023, 1, 31), 1), date(2023, 2, 28))
        self.assertEqual(add_months(date(2024, 1, 31), 2), date(2024, 3, 31))

    def test_add_months_wraps_years(self) -> None:
        self.assertEqual(add_months(date(2024, 11, 10), 3), date(2025, 2, 10))
        self.assertEqual(add_months(date(2024, 1, 10), 0), date(2024, 1, 10))

    def test_clamp_day_in_short_month(self) -> None:
        self.assertEqual(clamp_day(2024, 4, 31), date(2024, 4, 30))
        self.assertEqual(clamp_day(2024, 5, 31), date(2024, 5, 31))

    def test_month_bounds(self) -> None:
        self.assertEqual(month_bounds(2024, 2), (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(month_bounds(2023, 12), (date(2023, 12, 1), date(2023, 12, 31)))

    def test_elapsed_periods_uses_thirty_day_buckets(self) -> None:
        start = date(2024, 1, 1)
        self.assertEqual(elapsed_periods(start, date(2024, 1, 30)), 0)
        self.assertEqual(elapsed_periods(start, date(2024, 1, 31)), 1)
        self.assertEqual(elapsed_periods(start, date(2024, 3, 31)), 3)
        self.assertLess(elapsed_periods(start, date(2023, 12, 1)), 0)

    def test_installment_amount_is_plain_division(self) -> None:
        self.assertAlmostEqual(installment_amount(100.0, 3), 33.333333, places=5)

    def test_round_currency_rounds_binary_value_half_up(self) -> None:
        self.assertEqual(round_currency(0.125), 0.13)
        self.assertEqual(round_currency(-0.125), -0.13)
        self.assertEqual(round_currency(2.675), 2.67)
        self.assertEqual(round_currency(1.005), 1.0)
        self.assertEqual(round_currency(-1.005), -1.0)
        self.assertEqual(round_currency(150.0), 150.0)

    def test_parse_iso_date_accepts_dates_and_strings(self) -> None:
        self.assertEqual(parse_iso_date(date(2024, 3, 15)), date(2024, 3, 15))
        self.assertEqual(parse_iso_date(datetime(2024, 3, 15, 10, 30)), date(2024, 3, 15))
        self.assertEqual(parse_iso_date("2024-03-15"), date(2024, 3, 15))
        self.assertEqual(parse_iso_date("2024-03-15T08:00:00.000Z"), date(2024, 3, 15))

    def test_parse_iso_date_rejects_garbage(self) -> None:
        self.assertIsNone(parse_iso_date(None))
        self.assertIsNone(parse_iso_date(""))
        self.assertIsNone(parse_iso_date("not a date"))
        self.assertIsNone(parse_iso_date(20240315))


if __name__ == "__main__":
    unittest.main()
