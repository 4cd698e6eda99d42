import unittest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from rental_desk.schemas.orders import CreateRecurringOrdersDto
from rental_desk.services.errors import EmptyCart, InvalidRecurrence, InvalidWindow
from rental_desk.services.recurrence_service import build_line_items, expand, occurrence_windows


def _request(**overrides):
    payload = {
        "startDate": "2024-03-29T10:00:00Z",
        "endDate": "2024-03-29T12:00:00Z",
        "notes": "Lab session",
        "cartItems": [{"id": "item-a"}, {"id": "item-b"}],
        "isRecurring": True,
        "recurrenceCount": 3,
        "recurrenceInterval": "week",
    }
    payload.update(overrides)
    return CreateRecurringOrdersDto.model_validate(payload)


class RecurrenceExpansionTests(unittest.TestCase):
    def test_weekly_occurrences_keep_weekday_and_duration(self):
        orders = expand(_request(), "user-1", "wh-1")

        self.assertEqual(len(orders), 3)
        self.assertEqual(
            [order.requested_start_date for order in orders],
            [
                datetime(2024, 3, 29, 10, tzinfo=timezone.utc),
                datetime(2024, 4, 5, 10, tzinfo=timezone.utc),
                datetime(2024, 4, 12, 10, tzinfo=timezone.utc),
            ],
        )
        for order in orders:
            self.assertEqual(order.requested_start_date.weekday(), 4)
            self.assertEqual(order.requested_end_date - order.requested_start_date, timedelta(hours=2))

    def test_metadata_is_copied_to_every_occurrence(self):
        orders = expand(_request(notes="Bring badge"), "user-1", "wh-1")
        for order in orders:
            self.assertEqual(order.user_id, "user-1")
            self.assertEqual(order.warehouse_id, "wh-1")
            self.assertEqual(order.notes, "Bring badge")
            self.assertTrue(order.is_recurring)
            self.assertEqual(order.recurrence_count, 3)
            self.assertEqual(order.recurrence_interval, "week")

    def test_daily_occurrences_are_consecutive(self):
        orders = expand(_request(recurrenceInterval="day", recurrenceCount=4), "user-1", None)
        starts = [order.requested_start_date for order in orders]
        self.assertEqual([b - a for a, b in zip(starts, starts[1:])], [timedelta(days=1)] * 3)

    def test_monthly_occurrences_clamp_to_month_end_without_drift(self):
        windows = occurrence_windows(
            datetime(2024, 1, 31, 9, 0),
            datetime(2024, 1, 31, 11, 0),
            3,
            "month",
        )
        self.assertEqual(
            [start for start, _ in windows],
            [datetime(2024, 1, 31, 9, 0), datetime(2024, 2, 29, 9, 0), datetime(2024, 3, 31, 9, 0)],
        )
        self.assertTrue(all(end - start == timedelta(hours=2) for start, end in windows))

    def test_non_recurring_request_yields_single_occurrence(self):
        orders = expand(_request(isRecurring=False, recurrenceCount=12), "user-1", "wh-1")
        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0].requested_start_date, datetime(2024, 3, 29, 10, tzinfo=timezone.utc))
        self.assertFalse(orders[0].is_recurring)

    def test_non_recurring_request_ignores_interval(self):
        orders = expand(_request(isRecurring=False, recurrenceInterval="fortnight"), "user-1", None)
        self.assertEqual(len(orders), 1)

    def test_count_bounds_are_enforced(self):
        for count in (0, 31, -1):
            with self.subTest(count=count):
                with self.assertRaises(InvalidRecurrence):
                    expand(_request(recurrenceCount=count), "user-1", None)
        self.assertEqual(len(expand(_request(recurrenceCount=30), "user-1", None)), 30)

    def test_unknown_interval_is_rejected(self):
        with self.assertRaises(InvalidRecurrence):
            expand(_request(recurrenceInterval="year"), "user-1", None)

    def test_interval_longer_than_column_is_rejected_even_when_not_recurring(self):
        with self.assertRaises(ValidationError):
            _request(isRecurring=False, recurrenceInterval="fortnightly")

    def test_end_must_follow_start(self):
        with self.assertRaises(InvalidWindow):
            expand(_request(endDate="2024-03-29T10:00:00Z"), "user-1", None)
        with self.assertRaises(InvalidWindow):
            expand(_request(endDate="2024-03-29T09:00:00Z"), "user-1", None)

    def test_mixed_offset_awareness_is_rejected(self):
        with self.assertRaises(InvalidWindow):
            expand(_request(endDate="2024-03-29T12:00:00"), "user-1", None)

    def test_empty_cart_is_rejected(self):
        with self.assertRaises(EmptyCart):
            expand(_request(cartItems=[]), "user-1", None)


class LineItemTests(unittest.TestCase):
    def test_every_order_gets_every_cart_item(self):
        request = _request()
        rows = build_line_items(["o1", "o2", "o3"], request.cartItems)
        self.assertEqual(len(rows), 6)
        self.assertEqual(
            rows[:2],
            [{"order_id": "o1", "item_id": "item-a"}, {"order_id": "o1", "item_id": "item-b"}],
        )
        self.assertEqual({row["order_id"] for row in rows}, {"o1", "o2", "o3"})

    def test_no_orders_means_no_line_items(self):
        self.assertEqual(build_line_items([], _request().cartItems), [])


if __name__ == "__main__":
    unittest.main()
