import unittest
from datetime import date, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import patch

from recurrence import anchor_reached, is_due, normalize_rule


def _task(anchor, rule, recurring=True):
    return SimpleNamespace(date=anchor, recurrence_rule=rule, recurring=recurring)


class TestRecurrence(unittest.TestCase):
    def test_future_anchor_is_never_due(self) -> None:
        day = date(2024, 5, 10)
        for rule in ("daily", "weekly", "monthly", "yearly", "custom"):
            with self.subTest(rule=rule):
                self.assertFalse(is_due(_task("2024-05-11", rule), day))

    def test_daily_due_every_day_from_anchor(self) -> None:
        t = _task("2024-01-01", "daily")
        for offset in (0, 1, 30, 400):
            self.assertTrue(is_due(t, date(2024, 1, 1) + timedelta(days=offset)))

    def test_weekly_matches_weekday_only(self) -> None:
        t = _task("2024-01-01", "weekly")  # Monday
        self.assertTrue(is_due(t, "2024-01-08"))
        self.assertFalse(is_due(t, "2024-01-03"))
        for offset in range(0, 21):
            d = date(2024, 1, 1) + timedelta(days=offset)
            self.assertEqual(is_due(t, d), d.weekday() == 0)

    def test_monthly_does_not_clamp_short_months(self) -> None:
        t = _task("2024-01-31", "monthly")
        self.assertTrue(is_due(t, "2024-03-31"))
        self.assertFalse(is_due(t, "2024-04-30"))
        self.assertFalse(is_due(t, "2024-02-29"))

    def test_yearly_needs_month_and_day(self) -> None:
        t = _task("2020-07-04", "yearly")
        self.assertTrue(is_due(t, "2024-07-04"))
        self.assertFalse(is_due(t, "2024-08-04"))
        self.assertFalse(is_due(t, "2024-07-05"))

    def test_custom_and_unknown_rules_are_due_after_anchor(self) -> None:
        self.assertTrue(is_due(_task("2024-01-01", "custom"), "2024-02-17"))
        self.assertTrue(is_due(_task("2024-01-01", "Fortnightly"), "2024-02-17"))

    def test_non_recurring_or_ruleless_is_never_due(self) -> None:
        self.assertFalse(is_due(_task("2024-01-01", "daily", recurring=False), "2024-01-01"))
        self.assertFalse(is_due(_task("2024-01-01", None), "2024-01-01"))

    def test_time_of_day_is_ignored(self) -> None:
        t = _task(datetime(2024, 1, 1, 23, 59), "weekly")
        self.assertTrue(is_due(t, datetime(2024, 1, 8, 0, 1)))
        self.assertTrue(is_due(_task("2024-01-01T18:00:00", "daily"), "2024-01-01"))

    def test_defaults_to_today(self) -> None:
        with patch("recurrence.today", return_value=date(2024, 1, 15)):
            self.assertTrue(is_due(_task("2024-01-01", "weekly")))
            self.assertFalse(is_due(_task("2024-01-02", "weekly")))
            self.assertTrue(anchor_reached(_task("2024-01-15", "daily")))

    def test_normalize_rule(self) -> None:
        self.assertEqual(normalize_rule("WEEKLY"), "weekly")
        self.assertEqual(normalize_rule(" daily "), "daily")
        self.assertEqual(normalize_rule("every-other-tuesday"), "custom")
        self.assertIsNone(normalize_rule(""))
        self.assertIsNone(normalize_rule(None))


if __name__ == "__main__":
    unittest.main(verbosity=2)
