from __future__ import annotations

import unittest
from datetime import date, datetime

from app.models import MetricFrequency
from app.services.notification_settings import (
    ReminderConfig,
    build_reminder_config,
)
from app.services.reminder_windows import (
    days_until_quarter_end,
    days_until_year_end,
    due_frequencies,
    js_weekday,
    period_window,
    quarter_bounds,
)


class ReminderConfigTests(unittest.TestCase):
    def test_missing_settings_use_defaults(self) -> None:
        config = build_reminder_config({})

        self.assertEqual(config, ReminderConfig())
        self.assertEqual(config.daily.reminder_hour, 18)
        self.assertEqual(config.weekly.reminder_day, 1)
        self.assertEqual(config.weekly.reminder_hour, 9)
        self.assertEqual(config.monthly.deadline_day, 25)
        self.assertEqual(config.monthly.reminder_days, (3, 5, 7))
        self.assertEqual(config.quarterly.reminder_days_before, (7, 15, 30))
        self.assertEqual(config.yearly.reminder_days_before, (15, 30, 60))

    def test_partial_override_keeps_other_default_fields(self) -> None:
        config = build_reminder_config(
            {
                "monthly_reminder": {"deadline_day": 20},
                "weekly_reminder": {"reminder_hour": 14},
                "daily_reminder": None,
            }
        )

        self.assertEqual(config.monthly.deadline_day, 20)
        self.assertEqual(config.monthly.reminder_days, (3, 5, 7))
        self.assertEqual(config.weekly.reminder_day, 1)
        self.assertEqual(config.weekly.reminder_hour, 14)
        self.assertEqual(config.daily.reminder_hour, 18)

    def test_malformed_values_fall_back_per_field(self) -> None:
        config = build_reminder_config(
            {
                "daily_reminder": {"reminder_hour": "nine"},
                "quarterly_reminder": {"reminder_days_before": "7,15"},
                "yearly_reminder": {"reminder_days_before": [10, "20"]},
                "monthly_reminder": ["not", "an", "object"],
            }
        )

        self.assertEqual(config.daily.reminder_hour, 18)
        self.assertEqual(config.quarterly.reminder_days_before, (7, 15, 30))
        self.assertEqual(config.yearly.reminder_days_before, (10, 20))
        self.assertEqual(config.monthly.deadline_day, 25)


class PeriodWindowTests(unittest.TestCase):
    def test_weekly_window_starts_on_monday_and_may_cross_month(self) -> None:
        window = period_window(MetricFrequency.WEEKLY, date(2026, 4, 2))  # Thursday

        self.assertEqual(window.start, date(2026, 3, 30))
        self.assertEqual(window.end, date(2026, 4, 5))
        self.assertEqual(window.label, "desta semana")
        self.assertTrue(window.contains(date(2026, 3, 31)))
        self.assertFalse(window.contains(date(2026, 3, 29)))

    def test_monthly_window_covers_whole_month(self) -> None:
        window = period_window(MetricFrequency.MONTHLY, date(2028, 2, 10))

        self.assertEqual(window.start, date(2028, 2, 1))
        self.assertEqual(window.end, date(2028, 2, 29))

    def test_quarter_bounds(self) -> None:
        self.assertEqual(quarter_bounds(date(2026, 1, 15)), (date(2026, 1, 1), date(2026, 3, 31)))
        self.assertEqual(quarter_bounds(date(2026, 5, 1)), (date(2026, 4, 1), date(2026, 6, 30)))
        self.assertEqual(quarter_bounds(date(2026, 9, 30)), (date(2026, 7, 1), date(2026, 9, 30)))
        self.assertEqual(quarter_bounds(date(2026, 12, 31)), (date(2026, 10, 1), date(2026, 12, 31)))

    def test_daily_and_yearly_windows(self) -> None:
        daily = period_window(MetricFrequency.DAILY, date(2026, 6, 10))
        yearly = period_window(MetricFrequency.YEARLY, date(2026, 6, 10))

        self.assertEqual((daily.start, daily.end, daily.label), (date(2026, 6, 10), date(2026, 6, 10), "hoje"))
        self.assertEqual((yearly.start, yearly.end), (date(2026, 1, 1), date(2026, 12, 31)))
        self.assertEqual(yearly.label, "deste ano")

    def test_days_until_period_end(self) -> None:
        self.assertEqual(days_until_quarter_end(date(2026, 3, 24)), 7)
        self.assertEqual(days_until_year_end(date(2026, 12, 1)), 30)
        self.assertEqual(js_weekday(date(2026, 10, 18)), 0)  # Sunday
        self.assertEqual(js_weekday(date(2026, 10, 19)), 1)  # Monday


class DueFrequencyTests(unittest.TestCase):
    def test_monthly_fires_five_days_before_deadline(self) -> None:
        due = due_frequencies(datetime(2026, 3, 20, 12, 0), ReminderConfig())

        self.assertEqual(due, [MetricFrequency.MONTHLY])

    def test_daily_and_weekly_fire_on_their_hours(self) -> None:
        config = ReminderConfig()

        self.assertIn(MetricFrequency.DAILY, due_frequencies(datetime(2026, 10, 14, 18, 30), config))
        self.assertNotIn(MetricFrequency.DAILY, due_frequencies(datetime(2026, 10, 14, 17, 59), config))
        self.assertIn(MetricFrequency.WEEKLY, due_frequencies(datetime(2026, 10, 19, 9, 0), config))
        self.assertNotIn(MetricFrequency.WEEKLY, due_frequencies(datetime(2026, 10, 20, 9, 0), config))

    def test_quarterly_and_yearly_can_fire_together(self) -> None:
        due = due_frequencies(datetime(2026, 12, 1, 10, 0), ReminderConfig())

        self.assertIn(MetricFrequency.QUARTERLY, due)
        self.assertIn(MetricFrequency.YEARLY, due)

    def test_nothing_due_outside_every_rule(self) -> None:
        self.assertEqual(due_frequencies(datetime(2026, 2, 10, 11, 0), ReminderConfig()), [])


if __name__ == "__main__":
    unittest.main()
