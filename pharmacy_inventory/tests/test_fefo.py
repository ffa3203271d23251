"""
Tests for first-expired-first-out allocation.
"""
import unittest
from datetime import date
from types import SimpleNamespace

from pharmacy_inventory.core.fefo import (
    allocate_fefo,
    calculate_shortfall,
    get_available_batches,
    has_enough_stock,
    total_available_stock
)

TODAY = date(2024, 11, 1)


def make_batch(batch_id, expiry_date, quantity):
    return SimpleNamespace(id=batch_id, expiry_date=expiry_date, quantity=quantity)


class TestFefoAllocation(unittest.TestCase):
    def setUp(self):
        self.b1 = make_batch('b1', date(2025, 1, 1), 5)
        self.b2 = make_batch('b2', date(2025, 6, 1), 10)

    def test_allocates_earliest_expiry_first(self):
        allocations = allocate_fefo([self.b2, self.b1], 8, TODAY)

        self.assertEqual(allocations, [(self.b1, 5), (self.b2, 3)])
        self.assertEqual(calculate_shortfall(allocations, 8), 0)

    def test_allocation_does_not_modify_batches(self):
        allocate_fefo([self.b1, self.b2], 8, TODAY)

        self.assertEqual(self.b1.quantity, 5)
        self.assertEqual(self.b2.quantity, 10)

    def test_partial_allocation_reports_shortfall(self):
        allocations = allocate_fefo([self.b1, self.b2], 20, TODAY)

        self.assertEqual(sum(quantity for _, quantity in allocations), 15)
        self.assertEqual(calculate_shortfall(allocations, 20), 5)

    def test_skips_ineligible_batches(self):
        near_expiry = make_batch('near', date(2024, 11, 20), 100)
        expired = make_batch('expired', date(2024, 10, 1), 100)
        empty = make_batch('empty', date(2024, 12, 15), 0)

        allocations = allocate_fefo([near_expiry, expired, empty, self.b1], 3, TODAY)

        self.assertEqual(allocations, [(self.b1, 3)])
        self.assertEqual(get_available_batches([near_expiry, expired, empty, self.b1], TODAY), [self.b1])

    def test_ties_broken_by_batch_id(self):
        first = make_batch('a-batch', date(2025, 3, 1), 4)
        second = make_batch('b-batch', date(2025, 3, 1), 4)

        allocations = allocate_fefo([second, first], 6, TODAY)

        self.assertEqual(allocations, [(first, 4), (second, 2)])

    def test_nothing_eligible(self):
        near_expiry = make_batch('near', date(2024, 11, 20), 100)

        allocations = allocate_fefo([near_expiry], 5, TODAY)

        self.assertEqual(allocations, [])
        self.assertEqual(calculate_shortfall(allocations, 5), 5)

    def test_stock_sufficiency(self):
        batches = [self.b1, self.b2, make_batch('near', date(2024, 11, 20), 100)]

        self.assertEqual(total_available_stock(batches, TODAY), 15)
        self.assertTrue(has_enough_stock(batches, 15, TODAY))
        self.assertFalse(has_enough_stock(batches, 16, TODAY))


if __name__ == '__main__':
    unittest.main()
