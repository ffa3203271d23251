"""
Tests for reorder suggestions.
"""
import unittest
from datetime import date
from unittest.mock import patch

from pharmacy_inventory.models import (
    Priority, PurchaseOrder, PurchaseOrderStatus, ReorderSuggestion, SuggestionStatus
)
from pharmacy_inventory.services.reorder_service import ReorderService, SupplierHistoryPolicy
from pharmacy_inventory.tests.helpers import DatabaseTestCase

RULES = {'tax_rate': 10.0, 'default_delivery_days': 7}


class ReorderTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.add_supplier('sup-good', name='PT Andalan')
        self.add_supplier('sup-slow', name='CV Lambat')
        self.add_supplier('sup-off', name='PT Tutup', is_active=False)

        self.add_medication('med-a', name='Amlodipine 5mg', minimum_stock=10)
        self.add_medication('med-b', name='Metformin 500mg', minimum_stock=10)
        self.add_medication('med-c', name='Vitamin C', minimum_stock=10)
        self.add_medication('med-d', name='Salbutamol', minimum_stock=None)
        self.add_medication('med-e', name='Sample', minimum_stock=0)

        self.stock_in('med-a', 2)
        self.stock_in('med-b', 6)
        self.stock_in('med-c', 20)
        self.stock_in('med-d', 5)

        # Reliable supplier: on time, fully delivered
        self.add_purchase_order(
            'po-good', 'sup-good',
            [('med-a', 100, 100, 1200.0), ('med-b', 50, 50, 800.0), ('med-d', 20, 20, 15000.0)],
            expected=date(2024, 9, 5), actual=date(2024, 9, 5), total=1000.0
        )
        # Late and short
        self.add_purchase_order(
            'po-slow', 'sup-slow', [('med-a', 100, 50, 1100.0)],
            expected=date(2024, 9, 5), actual=date(2024, 9, 25), total=500.0
        )
        # Inactive suppliers are never recommended
        self.add_purchase_order(
            'po-off', 'sup-off', [('med-b', 10, 10, 700.0)],
            expected=date(2024, 9, 5), actual=date(2024, 9, 5)
        )

    def service(self, **kwargs):
        kwargs.setdefault('clock', self.clock)
        kwargs.setdefault('low_stock_threshold', 10)
        kwargs.setdefault('history_policy', SupplierHistoryPolicy.SKIP)
        kwargs.setdefault('reorder_rules', RULES)
        return ReorderService(self.session, **kwargs)


class TestGenerateSuggestions(ReorderTestCase):
    def test_low_stock_medications(self):
        medications = self.service().get_low_stock_medications()

        self.assertEqual([med.id for med in medications], ['med-a', 'med-d', 'med-b'])

    def test_suggestions_sorted_by_priority_then_ratio(self):
        suggestions = self.service().generate_suggestions()

        self.assertEqual([s.medication_id for s in suggestions], ['med-a', 'med-d', 'med-b'])
        self.assertEqual([s.priority for s in suggestions], [Priority.HIGH, Priority.MEDIUM, Priority.MEDIUM])
        self.assertTrue(all(s.status == SuggestionStatus.PENDING for s in suggestions))

    def test_suggested_quantity_and_threshold_fallback(self):
        suggestions = {s.medication_id: s for s in self.service().generate_suggestions()}

        self.assertEqual(suggestions['med-a'].suggested_quantity, 20)
        self.assertEqual(suggestions['med-d'].minimum_stock, 10)
        self.assertEqual(suggestions['med-d'].current_stock, 5)

    def test_best_supplier_wins(self):
        suggestion = self.service().generate_suggestions()[0]

        self.assertEqual(suggestion.supplier_id, 'sup-good')
        self.assertEqual(suggestion.supplier_name, 'PT Andalan')
        self.assertEqual(suggestion.last_price, 1200.0)
        self.assertEqual(suggestion.quality_score, 5)
        self.assertEqual(suggestion.average_delivery_time, 0)
        self.assertEqual(suggestion.recommended_supplier['supplier_id'], 'sup-good')

    def test_inactive_supplier_ignored(self):
        suggestions = {s.medication_id: s for s in self.service().generate_suggestions()}

        self.assertEqual(suggestions['med-b'].supplier_id, 'sup-good')

    def test_tie_goes_to_lowest_supplier_id(self):
        self.add_medication('med-f', name='Loratadine', minimum_stock=10)
        self.add_supplier('sup-z', name='Zeta')
        self.add_supplier('sup-y', name='Yota')
        self.add_batch('f-1', medication_id='med-f', supplier_id='sup-z')
        self.add_batch('f-2', medication_id='med-f', supplier_id='sup-y')

        suggestions = {s.medication_id: s for s in self.service().generate_suggestions()}

        self.assertEqual(suggestions['med-f'].supplier_id, 'sup-y')
        self.assertEqual(suggestions['med-f'].last_price, 1000.0)

    @patch('pharmacy_inventory.services.reorder_service.logger')
    def test_skip_without_supplier_history(self, mock_logger):
        self.add_medication('med-new', name='New Product', minimum_stock=10)

        suggestions = self.service().generate_suggestions()

        self.assertNotIn('med-new', [s.medication_id for s in suggestions])
        mock_logger.info.assert_any_call("No supplier history for med-new (New Product); no suggestion")

    def test_include_without_supplier_history(self):
        self.add_medication('med-new', name='New Product', minimum_stock=10)

        suggestions = self.service(history_policy=SupplierHistoryPolicy.INCLUDE).generate_suggestions()

        suggestion = [s for s in suggestions if s.medication_id == 'med-new'][0]
        self.assertIsNone(suggestion.supplier_id)
        self.assertIsNone(suggestion.recommended_supplier)
        self.assertEqual(suggestion.priority, Priority.HIGH)

    def test_archived_and_zero_minimum_never_suggested(self):
        self.add_medication('med-arch', name='Archived', minimum_stock=10, is_archived=True)

        ids = [s.medication_id for s in self.service(history_policy=SupplierHistoryPolicy.INCLUDE).generate_suggestions()]

        self.assertNotIn('med-arch', ids)
        self.assertNotIn('med-e', ids)
        self.assertNotIn('med-c', ids)


class TestRefreshSuggestions(ReorderTestCase):
    def test_refresh_is_idempotent(self):
        first = self.service().refresh_suggestions()
        second = self.service().refresh_suggestions()

        self.assertEqual(first['created'], 3)
        self.assertEqual(second['created'], 0)
        self.assertEqual(second['updated'], 3)
        self.assertEqual(self.session.query(ReorderSuggestion).count(), 3)
        self.assertEqual(
            [s.id for s in first['suggestions']],
            [s.id for s in second['suggestions']]
        )

    def test_dismissed_suggestion_is_preserved(self):
        self.service().refresh_suggestions()
        suggestion = self.session.query(ReorderSuggestion).filter_by(medication_id='med-a').one()

        self.assertTrue(self.service().dismiss_suggestion(suggestion.id)['success'])
        result = self.service().refresh_suggestions()

        self.assertEqual(result['preserved'], 1)
        self.assertEqual(self.session.query(ReorderSuggestion).count(), 3)
        self.assertEqual(self.session.get(ReorderSuggestion, suggestion.id).status, SuggestionStatus.DISMISSED)

    def test_pending_suggestion_updated_in_place(self):
        self.service().refresh_suggestions()
        suggestion = self.session.query(ReorderSuggestion).filter_by(medication_id='med-b').one()

        self.ledger().apply_movement('med-b', 4, 'out', 'Sale', self.actor)
        self.service().refresh_suggestions()

        refreshed = self.session.get(ReorderSuggestion, suggestion.id)
        self.assertEqual(refreshed.current_stock, 2)
        self.assertEqual(refreshed.priority, Priority.HIGH)

    def test_recovered_medication_is_dropped(self):
        self.service().refresh_suggestions()

        self.stock_in('med-b', 30)
        result = self.service().refresh_suggestions()

        self.assertEqual(result['removed'], 1)
        ids = [s.medication_id for s in self.session.query(ReorderSuggestion).all()]
        self.assertNotIn('med-b', ids)

    def test_dismiss_twice(self):
        self.service().refresh_suggestions()
        suggestion = self.session.query(ReorderSuggestion).filter_by(medication_id='med-a').one()
        self.service().dismiss_suggestion(suggestion.id)

        self.assertEqual(self.service().dismiss_suggestion(suggestion.id)['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.service().dismiss_suggestion('reorder-404')['code'], 'NOT_FOUND')


class TestPurchaseOrdersFromSuggestions(ReorderTestCase):
    def test_orders_grouped_by_supplier_with_tax(self):
        result = self.service().refresh_suggestions()
        ids = [s.id for s in result['suggestions']]

        created = self.service().create_purchase_orders(ids, self.actor)

        self.assertTrue(created['success'])
        self.assertEqual(len(created['purchase_orders']), 1)
        order = created['purchase_orders'][0]
        self.assertEqual(order.supplier_id, 'sup-good')
        self.assertEqual(order.status, PurchaseOrderStatus.PENDING)
        self.assertEqual(order.expected_delivery_date, date(2024, 11, 8))
        self.assertEqual(len(order.items), 3)

        expected_subtotal = 20 * 1200.0 + 20 * 800.0 + 20 * 15000.0
        self.assertAlmostEqual(order.subtotal, expected_subtotal)
        self.assertAlmostEqual(order.tax, expected_subtotal * 0.1)
        self.assertAlmostEqual(order.total, expected_subtotal * 1.1)

        for suggestion_id in ids:
            suggestion = self.session.get(ReorderSuggestion, suggestion_id)
            self.assertEqual(suggestion.status, SuggestionStatus.ORDERED)
            self.assertEqual(suggestion.purchase_order_id, order.id)

    def test_ordered_suggestion_survives_refresh(self):
        result = self.service().refresh_suggestions()
        suggestion = [s for s in result['suggestions'] if s.medication_id == 'med-a'][0]
        self.service().create_purchase_orders([suggestion.id], self.actor)

        refreshed = self.service().refresh_suggestions()

        self.assertEqual(refreshed['preserved'], 1)
        self.assertEqual(self.session.get(ReorderSuggestion, suggestion.id).status, SuggestionStatus.ORDERED)

    def test_rejects_suggestion_without_supplier(self):
        self.add_medication('med-new', name='New Product', minimum_stock=10)
        result = self.service(history_policy=SupplierHistoryPolicy.INCLUDE).refresh_suggestions()
        orphan = [s for s in result['suggestions'] if s.medication_id == 'med-new'][0]
        before = self.session.query(PurchaseOrder).count()

        created = self.service().create_purchase_orders([orphan.id], self.actor)

        self.assertFalse(created['success'])
        self.assertEqual(created['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.session.query(PurchaseOrder).count(), before)

    def test_requires_selection(self):
        self.assertEqual(self.service().create_purchase_orders([], self.actor)['code'], 'VALIDATION_ERROR')


if __name__ == '__main__':
    unittest.main()
