"""
Tests for the purchase-order lifecycle and receipt into stock.
"""
import unittest
from datetime import date

from pharmacy_inventory.models import Batch, PurchaseOrderStatus, StockMovement
from pharmacy_inventory.services.purchase_order_service import PurchaseOrderService
from pharmacy_inventory.services.supplier_service import SupplierService
from pharmacy_inventory.tests.helpers import DatabaseTestCase

RULES = {'tax_rate': 11.0, 'default_delivery_days': 5}


class TestPurchaseOrderService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.add_medication('med-a', name='Amoxicillin 500mg', purchase_price=900.0)
        self.add_medication('med-b', name='Ibuprofen 400mg', purchase_price=600.0)
        self.add_supplier('sup-1', name='PT Kimia Farma')
        self.service = PurchaseOrderService(
            self.session, clock=self.clock,
            ledger_service=self.ledger(autocommit=False),
            reorder_rules=RULES
        )

    def create_order(self, **kwargs):
        result = self.service.create_purchase_order(
            'sup-1',
            [
                {'medication_id': 'med-a', 'quantity': 100, 'unit_price': 1000.0},
                {'medication_id': 'med-b', 'quantity': 50}
            ],
            self.actor,
            **kwargs
        )
        self.assertTrue(result['success'], result)
        return result['purchase_order']

    def lot_details(self, order, expiry_b=date(2026, 3, 1), received_b=50):
        items = {item.medication_id: item for item in order.items}
        return {
            items['med-a'].id: {'received_quantity': 100, 'batch_number': 'AMX-01', 'expiry_date': date(2026, 1, 1)},
            items['med-b'].id: {'received_quantity': received_b, 'batch_number': 'IBU-01', 'expiry_date': expiry_b}
        }

    def test_create_purchase_order(self):
        order = self.create_order()

        self.assertEqual(order.status, PurchaseOrderStatus.DRAFT)
        self.assertEqual(order.supplier_name, 'PT Kimia Farma')
        self.assertEqual(order.expected_delivery_date, date(2024, 11, 6))
        self.assertEqual(order.created_by, 'Apoteker Rina')
        self.assertTrue(order.po_number.startswith('PO202411'))
        # Missing unit price falls back to the medication's purchase price
        self.assertEqual({item.medication_id: item.unit_price for item in order.items},
                         {'med-a': 1000.0, 'med-b': 600.0})
        self.assertAlmostEqual(order.subtotal, 130000.0)
        self.assertAlmostEqual(order.tax, 14300.0)
        self.assertAlmostEqual(order.total, 144300.0)

    def test_create_rejects_bad_input(self):
        unknown_supplier = self.service.create_purchase_order(
            'sup-404', [{'medication_id': 'med-a', 'quantity': 1}], self.actor
        )
        unknown_medication = self.service.create_purchase_order(
            'sup-1', [{'medication_id': 'med-404', 'quantity': 1}], self.actor
        )
        no_items = self.service.create_purchase_order('sup-1', [], self.actor)
        bad_quantity = self.service.create_purchase_order(
            'sup-1', [{'medication_id': 'med-a', 'quantity': 0}], self.actor
        )
        received = self.service.create_purchase_order(
            'sup-1', [{'medication_id': 'med-a', 'quantity': 1}], self.actor,
            status=PurchaseOrderStatus.RECEIVED
        )

        self.assertEqual(unknown_supplier['code'], 'UNKNOWN_SUPPLIER')
        self.assertEqual(unknown_medication['code'], 'UNKNOWN_MEDICATION')
        self.assertEqual(no_items['code'], 'VALIDATION_ERROR')
        self.assertIn('items', no_items['details'])
        self.assertEqual(bad_quantity['code'], 'VALIDATION_ERROR')
        self.assertEqual(received['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.service.get_purchase_orders(), [])

    def test_approve_receive_updates_stock_and_performance(self):
        order = self.create_order(expected_delivery_date=date(2024, 11, 4))
        self.assertTrue(self.service.approve_purchase_order(order.id, self.actor)['success'])

        self.clock.advance(days=4)
        result = self.service.receive_purchase_order(order.id, self.actor, self.lot_details(order, received_b=40))

        self.assertTrue(result['success'], result)
        self.assertEqual(result['purchase_order'].status, PurchaseOrderStatus.RECEIVED)
        self.assertEqual(result['purchase_order'].actual_delivery_date, date(2024, 11, 5))
        self.assertEqual(result['purchase_order'].received_by, 'Apoteker Rina')
        self.assertEqual(len(result['batches']), 2)
        self.assertEqual(sorted(m.quantity for m in result['movements']), [40, 100])

        self.assertEqual(self.ledger().get_medication('med-a').current_stock, 100)
        self.assertEqual(self.ledger().get_medication('med-b').current_stock, 40)

        batch = self.session.query(Batch).filter(Batch.batch_number == 'AMX-01').one()
        self.assertEqual(batch.supplier_id, 'sup-1')
        self.assertEqual(batch.purchase_price, 1000.0)
        self.assertEqual(batch.expiry_date, date(2026, 1, 1))

        movement = self.ledger().get_movements('med-b')[0]
        self.assertEqual(movement.reference_id, order.id)
        self.assertEqual(movement.batch_id, result['batches'][1].id)

        performance = SupplierService(self.session).calculate_performance('sup-1')
        self.assertEqual(performance['completed_orders'], 1)
        self.assertEqual(performance['average_delivery_deviation'], 1)
        # 140 of 150 units
        self.assertEqual(performance['order_fulfillment_rate'], 93)
        self.assertTrue(self.ledger().reconcile('med-b')['ledger_consistent'])

    def test_missing_expiry_rolls_back_whole_receipt(self):
        order = self.create_order(status=PurchaseOrderStatus.PENDING)
        lots = self.lot_details(order)
        lots[[item.id for item in order.items if item.medication_id == 'med-b'][0]]['expiry_date'] = None

        result = self.service.receive_purchase_order(order.id, self.actor, lots)

        self.assertFalse(result['success'])
        self.assertEqual(result['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.session.query(Batch).count(), 0)
        self.assertEqual(self.session.query(StockMovement).count(), 0)
        self.assertEqual(self.ledger().get_medication('med-a').current_stock, 0)
        self.assertEqual(self.service.get_purchase_order(order.id).status, PurchaseOrderStatus.PENDING)

    def test_draft_cannot_be_received(self):
        order = self.create_order()

        result = self.service.receive_purchase_order(order.id, self.actor, self.lot_details(order))

        self.assertEqual(result['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.session.query(Batch).count(), 0)

    def test_zero_quantity_line_is_skipped(self):
        order = self.create_order(status=PurchaseOrderStatus.PENDING)

        result = self.service.receive_purchase_order(order.id, self.actor, self.lot_details(order, received_b=0))

        self.assertTrue(result['success'], result)
        self.assertEqual(len(result['batches']), 1)
        self.assertEqual(self.ledger().get_medication('med-b').current_stock, 0)

    def test_cancel(self):
        order = self.create_order(status=PurchaseOrderStatus.PENDING)

        self.assertTrue(self.service.cancel_purchase_order(order.id, self.actor)['success'])
        self.assertEqual(self.service.approve_purchase_order(order.id, self.actor)['code'], 'VALIDATION_ERROR')
        self.assertEqual(
            self.service.get_purchase_orders(status=PurchaseOrderStatus.CANCELLED)[0].id, order.id
        )

    def test_received_order_cannot_be_cancelled(self):
        order = self.create_order(status=PurchaseOrderStatus.PENDING)
        self.service.receive_purchase_order(order.id, self.actor, self.lot_details(order))

        result = self.service.cancel_purchase_order(order.id, self.actor)

        self.assertFalse(result['success'])
        self.assertEqual(result['code'], 'VALIDATION_ERROR')
        self.assertEqual(self.service.get_purchase_order(order.id).status, PurchaseOrderStatus.RECEIVED)

    def test_unknown_order(self):
        self.assertEqual(self.service.approve_purchase_order('po-404', self.actor)['code'], 'NOT_FOUND')
        self.assertEqual(self.service.receive_purchase_order('po-404', self.actor)['code'], 'NOT_FOUND')


if __name__ == '__main__':
    unittest.main()
