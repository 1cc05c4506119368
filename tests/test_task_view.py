import json
import unittest
from datetime import date

from task_view import materialize, parse_completed_dates

TODAY = date(2024, 3, 6)  # Wednesday


def _record(**overrides):
    rec = {
        "id": "t1",
        "profile_id": 1,
        "title": "enc:Water plants",
        "description": None,
        "date": "2024-03-01",
        "time": "09:00",
        "type": "task",
        "priority": 2,
        "recurring": False,
        "recurrence_rule": None,
        "completed_dates": None,
        "completed": False,
        "created_at": "2024-03-01T08:00:00Z",
    }
    rec.update(overrides)
    return rec


def _decrypt(value: str) -> str:
    if not value.startswith("enc:"):
        raise ValueError("not a token")
    return value[4:]


class TestTaskView(unittest.TestCase):
    def test_decrypts_text_fields(self) -> None:
        task = materialize(_record(description="enc:Balcony too"), _decrypt, TODAY)
        self.assertEqual(task.title, "Water plants")
        self.assertEqual(task.description, "Balcony too")

    def test_decrypt_failure_keeps_raw_value(self) -> None:
        task = materialize(_record(title="plain legacy title"), _decrypt, TODAY)
        self.assertEqual(task.title, "plain legacy title")
        task = materialize(_record(), None, TODAY)
        self.assertEqual(task.title, "enc:Water plants")

    def test_future_one_off_task_is_visible_with_persisted_completion(self) -> None:
        task = materialize(_record(date="2099-01-01", completed=True), _decrypt, TODAY)
        self.assertIsNotNone(task)
        self.assertTrue(task.completed)
        self.assertEqual(task.date, date(2099, 1, 1))

    def test_daily_completion_for_today(self) -> None:
        rec = _record(recurring=True, recurrence_rule="daily", completed_dates=json.dumps(["2024-03-05", "2024-03-06"]))
        self.assertTrue(materialize(rec, _decrypt, TODAY).completed)
        rec = _record(recurring=True, recurrence_rule="daily", completed_dates=["2024-03-05"], completed=True)
        self.assertFalse(materialize(rec, _decrypt, TODAY).completed)

    def test_weekly_not_due_today_is_dropped(self) -> None:
        rec = _record(recurring=True, recurrence_rule="weekly", date="2024-03-04")  # Monday
        self.assertIsNone(materialize(rec, _decrypt, TODAY))
        rec = _record(recurring=True, recurrence_rule="weekly", date="2024-02-28", completed_dates=["2024-03-06"])
        self.assertTrue(materialize(rec, _decrypt, TODAY).completed)

    def test_recurring_anchored_in_future_is_dropped(self) -> None:
        rec = _record(recurring=True, recurrence_rule="daily", date="2024-03-07")
        self.assertIsNone(materialize(rec, _decrypt, TODAY))

    def test_legacy_rule_normalized_to_custom(self) -> None:
        task = materialize(_record(recurring=True, recurrence_rule="BiWeekly"), _decrypt, TODAY)
        self.assertEqual(task.recurrence_rule, "custom")

    def test_materialize_is_idempotent(self) -> None:
        rec = _record(recurring=True, recurrence_rule="daily", completed_dates=["2024-03-06"])
        self.assertEqual(materialize(rec, _decrypt, TODAY), materialize(rec, _decrypt, TODAY))

    def test_malformed_record_is_skipped(self) -> None:
        self.assertIsNone(materialize(_record(date="not-a-date"), _decrypt, TODAY))
        self.assertIsNone(materialize({"title": "no id"}, _decrypt, TODAY))

    def test_parse_completed_dates(self) -> None:
        self.assertEqual(parse_completed_dates('["2024-01-02", "2024-01-01", "2024-01-02"]'), ["2024-01-01", "2024-01-02"])
        self.assertEqual(parse_completed_dates("garbage"), [])
        self.assertEqual(parse_completed_dates(None), [])
        self.assertEqual(parse_completed_dates(["2024-01-01", "nope"]), ["2024-01-01"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
