"""
Shared fixtures for tests running against an in-memory SQLite database.
"""
import unittest
from datetime import date, datetime

from sqlalchemy.orm import sessionmaker

from pharmacy_inventory.db import build_engine
from pharmacy_inventory.models import (
    Base, Medication, Supplier, Batch, PurchaseOrder, PurchaseOrderItem,
    BatchStatus, PurchaseOrderStatus
)
from pharmacy_inventory.services.ledger_service import LedgerService
from pharmacy_inventory.utils.date_utils import FixedClock
from pharmacy_inventory.utils.locks import KeyedLock

TODAY = date(2024, 11, 1)
ACTOR = {'id': 'user-1', 'name': 'Apoteker Rina'}


class DatabaseTestCase(unittest.TestCase):
    """TestCase with a fresh schema, a session and a frozen clock per test."""

    def setUp(self):
        self.engine = build_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        self.session = sessionmaker(bind=self.engine, expire_on_commit=False)()
        self.clock = FixedClock(datetime(2024, 11, 1, 9, 0))
        self.actor = dict(ACTOR)
        self.locks = KeyedLock()

    def tearDown(self):
        self.session.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def ledger(self, **kwargs) -> LedgerService:
        kwargs.setdefault('clock', self.clock)
        kwargs.setdefault('locks', self.locks)
        kwargs.setdefault('warning_days', 30)
        return LedgerService(self.session, **kwargs)

    def add_medication(self, medication_id='med-1', name='Paracetamol 500mg', minimum_stock=10,
                       purchase_price=1000.0, sale_price=1500.0, **fields) -> Medication:
        medication = Medication(
            id=medication_id,
            name=name,
            minimum_stock=minimum_stock,
            current_stock=0,
            purchase_price=purchase_price,
            sale_price=sale_price,
            is_archived=fields.pop('is_archived', False),
            created_at=self.clock.now(),
            updated_at=self.clock.now(),
            **fields
        )
        self.session.add(medication)
        self.session.commit()
        return medication

    def add_supplier(self, supplier_id='sup-1', name='PT Kimia Farma', is_active=True) -> Supplier:
        supplier = Supplier(
            id=supplier_id,
            name=name,
            is_active=is_active,
            created_at=self.clock.now(),
            updated_at=self.clock.now()
        )
        self.session.add(supplier)
        self.session.commit()
        return supplier

    def add_batch(self, batch_id, medication_id='med-1', expiry_date=date(2025, 6, 1), quantity=10,
                  batch_number=None, supplier_id=None, purchase_price=1000.0) -> Batch:
        """Insert a batch row directly, bypassing the ledger."""
        batch = Batch(
            id=batch_id,
            medication_id=medication_id,
            batch_number=batch_number or batch_id.upper(),
            expiry_date=expiry_date,
            quantity=quantity,
            purchase_price=purchase_price,
            received_date=TODAY,
            supplier_id=supplier_id,
            status=BatchStatus.ACTIVE,
            created_at=self.clock.now(),
            updated_at=self.clock.now()
        )
        self.session.add(batch)
        self.session.commit()
        return batch

    def stock_in(self, medication_id, quantity):
        result = self.ledger().apply_movement(medication_id, quantity, 'in', 'Opening stock', self.actor)
        self.assertTrue(result['success'], result)
        return result['movement']

    def receive(self, medication_id, quantity, expiry_date, batch_number, supplier_id=None):
        result = self.ledger().receive_stock(
            medication_id, quantity, batch_number, expiry_date, self.actor, supplier_id=supplier_id
        )
        self.assertTrue(result['success'], result)
        return result['batch']

    def add_purchase_order(self, order_id, supplier_id, items, status=PurchaseOrderStatus.RECEIVED,
                           order_date=datetime(2024, 9, 1), expected=None, actual=None, total=0.0):
        """Insert a historical purchase order.

        Args:
            items: (medication_id, ordered_quantity, received_quantity, unit_price) tuples
        """
        order = PurchaseOrder(
            id=order_id,
            po_number=order_id.upper(),
            supplier_id=supplier_id,
            order_date=order_date,
            expected_delivery_date=expected,
            actual_delivery_date=actual,
            status=status,
            total=total
        )
        for index, (medication_id, ordered, received, unit_price) in enumerate(items):
            order.items.append(PurchaseOrderItem(
                id=f"{order_id}-item-{index}",
                medication_id=medication_id,
                ordered_quantity=ordered,
                received_quantity=received,
                unit_price=unit_price,
                subtotal=ordered * unit_price
            ))
        self.session.add(order)
        self.session.commit()
        return order
