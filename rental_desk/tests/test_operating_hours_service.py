import unittest
from types import SimpleNamespace

from rental_desk.services.operating_hours_service import (
    SLOT_STARTS,
    GridState,
    diff,
    serialize_grid,
    slot_end_for,
    slot_index,
)


def _row(row_id, day, slot_start, closed):
    return SimpleNamespace(id=row_id, day_of_week=day, slot_start=slot_start, is_closed=closed)


class SlotLayoutTests(unittest.TestCase):
    def test_sixteen_half_hour_slots_between_nine_and_five(self):
        self.assertEqual(len(SLOT_STARTS), 16)
        self.assertEqual(SLOT_STARTS[0], "09:00")
        self.assertEqual(SLOT_STARTS[-1], "16:30")
        self.assertEqual(slot_end_for("16:30"), "17:00")

    def test_unknown_slot_start_raises(self):
        with self.assertRaises(ValueError):
            slot_index("08:30")

    def test_default_grid_closes_friday_and_saturday(self):
        grid = GridState()
        for day in range(5):
            self.assertEqual(grid.day_values(day), [False] * 16)
        self.assertEqual(grid.day_values(5), [True] * 16)
        self.assertEqual(grid.day_values(6), [True] * 16)


class DiffTests(unittest.TestCase):
    def test_default_grid_without_rows_has_empty_diff(self):
        self.assertTrue(diff([], GridState(), "wh-1").is_empty())

    def test_opening_a_friday_slot_inserts_one_row(self):
        grid = GridState()
        self.assertFalse(grid.toggle(5, "09:00"))

        result = diff([], grid, "wh-1")

        self.assertEqual(len(result.to_insert), 1)
        row = result.to_insert[0]
        self.assertEqual((row.warehouse_id, row.day_of_week, row.slot_start, row.slot_end, row.is_closed),
                         ("wh-1", 5, "09:00", "09:30", False))
        self.assertEqual(result.to_update, [])
        self.assertEqual(result.to_delete, [])

    def test_closing_a_weekday_slot_inserts_closed_row(self):
        grid = GridState()
        grid.set_closed(1, "16:30", True)
        result = diff([], grid, "wh-1")
        self.assertEqual([(r.day_of_week, r.slot_start, r.is_closed) for r in result.to_insert], [(1, "16:30", True)])

    def test_reverting_to_default_deletes_the_override(self):
        persisted = [_row("slot-1", 2, "12:00", True)]
        grid = GridState.from_persisted(persisted)
        self.assertTrue(grid.is_closed(2, "12:00"))

        grid.set_closed(2, "12:00", False)
        result = diff(persisted, grid, "wh-1")

        self.assertEqual(result.to_delete, ["slot-1"])
        self.assertEqual(result.to_insert, [])
        self.assertEqual(result.to_update, [])

    def test_differing_override_is_updated_in_place(self):
        # Open override on Friday (default closed) whose stored flag disagrees with the grid.
        persisted = [_row("slot-2", 5, "10:00", True)]
        grid = GridState()
        grid.set_closed(5, "10:00", False)

        result = diff(persisted, grid, "wh-1")

        self.assertEqual([(u.id, u.is_closed) for u in result.to_update], [("slot-2", False)])
        self.assertEqual(result.to_insert, [])
        self.assertEqual(result.to_delete, [])

    def test_unchanged_override_produces_no_work(self):
        persisted = [_row("slot-3", 0, "14:30", True)]
        self.assertTrue(diff(persisted, GridState.from_persisted(persisted), "wh-1").is_empty())

    def test_saturday_open_override_is_preserved(self):
        persisted = [_row("slot-4", 6, "11:00", False)]
        grid = GridState.from_persisted(persisted)
        self.assertFalse(grid.is_closed(6, "11:00"))
        self.assertTrue(diff(persisted, grid, "wh-1").is_empty())

    def test_diff_is_idempotent_after_applying(self):
        grid = GridState()
        grid.set_closed(1, "09:00", True)
        grid.set_closed(5, "16:30", False)
        first = diff([], grid, "wh-1")

        stored = [
            _row(f"new-{index}", row.day_of_week, row.slot_start, row.is_closed)
            for index, row in enumerate(first.to_insert)
        ]
        second = diff(stored, grid, "wh-1")

        self.assertEqual(len(first.to_insert), 2)
        self.assertTrue(second.is_empty())

    def test_only_deviations_from_defaults_are_stored(self):
        grid = GridState()
        for day in range(7):
            for slot_start in SLOT_STARTS:
                grid.set_closed(day, slot_start, day in (3, 5, 6))
        result = diff([], grid, "wh-1")
        self.assertEqual(len(result.to_insert), 16)
        self.assertTrue(all(row.day_of_week == 3 and row.is_closed for row in result.to_insert))


class ToggleTests(unittest.TestCase):
    def test_single_toggle_flips_and_returns_new_value(self):
        grid = GridState()
        self.assertTrue(grid.toggle(0, "09:00"))
        self.assertTrue(grid.is_closed(0, "09:00"))
        self.assertFalse(grid.toggle(0, "09:00"))

    def test_saturday_is_locked(self):
        grid = GridState()
        self.assertTrue(grid.toggle(6, "10:00"))
        self.assertTrue(grid.is_closed(6, "10:00"))
        self.assertTrue(grid.toggle(6, "10:00", shift=True))

    def test_shift_click_fills_range_in_either_direction(self):
        for first, second in ((3, 7), (7, 3)):
            with self.subTest(first=first, second=second):
                grid = GridState()
                grid.toggle(1, SLOT_STARTS[first])
                grid.toggle(1, SLOT_STARTS[second], shift=True)
                values = grid.day_values(1)
                self.assertEqual([i for i, closed in enumerate(values) if closed], [3, 4, 5, 6, 7])

    def test_shift_click_on_other_day_toggles_single_cell(self):
        grid = GridState()
        grid.toggle(1, SLOT_STARTS[2])
        grid.toggle(2, SLOT_STARTS[6], shift=True)
        self.assertEqual([i for i, closed in enumerate(grid.day_values(2)) if closed], [6])

    def test_serialized_grid_marks_overrides(self):
        persisted = [_row("slot-5", 0, "09:00", True)]
        body = serialize_grid(GridState.from_persisted(persisted), persisted)
        sunday = body["days"][0]
        self.assertTrue(sunday["cells"][0]["isClosed"])
        self.assertTrue(sunday["cells"][0]["isOverride"])
        self.assertFalse(sunday["cells"][1]["isOverride"])
        self.assertTrue(body["days"][6]["isLocked"])
        self.assertEqual(len(body["slotStarts"]), 16)


if __name__ == "__main__":
    unittest.main()
