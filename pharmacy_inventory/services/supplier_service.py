# pharmacy_inventory/services/supplier_service.py
from typing import Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from pharmacy_inventory.models import (
    Supplier, Medication, Batch, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
)
from pharmacy_inventory.core.supplier_scoring import calculate_performance, rank_performance
from pharmacy_inventory.exceptions import UnknownSupplierError

logger = logging.getLogger(__name__)

class SupplierService:
    """Service for supplier lookups and performance scoring."""

    def __init__(self, session: Session):
        """Initialize the supplier service.

        Args:
            session: Database session
        """
        self.session = session

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        """Get a supplier by ID.

        Args:
            supplier_id: Supplier ID

        Returns:
            Supplier object or None if not found
        """
        return self.session.get(Supplier, supplier_id)

    def get_all_suppliers(self, active_only: bool = False) -> List[Supplier]:
        """Get all suppliers.

        Args:
            active_only: Leave out deactivated suppliers

        Returns:
            List of supplier objects ordered by name
        """
        query = self.session.query(Supplier)
        if active_only:
            query = query.filter(Supplier.is_active.is_(True))
        return query.order_by(Supplier.name, Supplier.id).all()

    def get_purchase_orders(self, supplier_id: str) -> List[PurchaseOrder]:
        """Get the purchase-order history of a supplier, oldest first."""
        return (
            self.session.query(PurchaseOrder)
            .filter(PurchaseOrder.supplier_id == supplier_id)
            .order_by(PurchaseOrder.order_date, PurchaseOrder.id)
            .all()
        )

    def calculate_performance(self, supplier_id: str) -> Dict:
        """Calculate a supplier's performance from its purchase orders.

        Args:
            supplier_id: Supplier ID

        Returns:
            Performance dictionary (see core.supplier_scoring)

        Raises:
            UnknownSupplierError if the supplier does not exist
        """
        supplier = self.get_supplier(supplier_id)
        if supplier is None:
            raise UnknownSupplierError(
                f"Supplier {supplier_id} not found",
                details={'supplier_id': supplier_id}
            )

        return calculate_performance(supplier.id, supplier.name, self.get_purchase_orders(supplier.id))

    def get_all_performance(self, active_only: bool = True) -> List[Dict]:
        """Performance of every supplier, best quality score first."""
        performances = [
            self.calculate_performance(supplier.id)
            for supplier in self.get_all_suppliers(active_only=active_only)
        ]
        return rank_performance(performances)

    def get_suppliers_for_medication(self, medication_id: str) -> List[Supplier]:
        """Active suppliers with history for a medication.

        History is either a purchase-order line (any status) or a batch
        received from the supplier.

        Returns:
            Suppliers ordered by ID
        """
        ordered_ids = (
            self.session.query(PurchaseOrder.supplier_id)
            .join(PurchaseOrderItem, PurchaseOrderItem.purchase_order_id == PurchaseOrder.id)
            .filter(PurchaseOrderItem.medication_id == medication_id)
        )
        received_ids = (
            self.session.query(Batch.supplier_id)
            .filter(Batch.medication_id == medication_id)
            .filter(Batch.supplier_id.isnot(None))
        )
        supplier_ids = {row[0] for row in ordered_ids.all()}
        supplier_ids.update(row[0] for row in received_ids.all())

        if not supplier_ids:
            return []

        return (
            self.session.query(Supplier)
            .filter(Supplier.id.in_(supplier_ids))
            .filter(Supplier.is_active.is_(True))
            .order_by(Supplier.id)
            .all()
        )

    def get_last_price(self, supplier_id: str, medication_id: str) -> Optional[float]:
        """Unit price on the supplier's most recent order line for a medication.

        Falls back to the purchase price of the latest batch received from the
        supplier; None without any history.
        """
        item = (
            self.session.query(PurchaseOrderItem)
            .join(PurchaseOrder, PurchaseOrderItem.purchase_order_id == PurchaseOrder.id)
            .filter(PurchaseOrder.supplier_id == supplier_id)
            .filter(PurchaseOrderItem.medication_id == medication_id)
            .order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc())
            .first()
        )
        if item is not None:
            return item.unit_price

        batch = (
            self.session.query(Batch)
            .filter(Batch.supplier_id == supplier_id)
            .filter(Batch.medication_id == medication_id)
            .order_by(Batch.received_date.desc(), Batch.id.desc())
            .first()
        )
        if batch is not None:
            return batch.purchase_price

        return None

    def get_supplied_medications(self, supplier_id: str, limit: int = 10) -> List[Dict]:
        """Medications most often received from a supplier.

        Counts lines of received purchase orders.

        Args:
            supplier_id: Supplier ID
            limit: Maximum number of entries

        Returns:
            List of dictionaries with medication_id, medication_name,
            frequency, total_quantity and last_price, most frequent first

        Raises:
            UnknownSupplierError if the supplier does not exist
        """
        if self.get_supplier(supplier_id) is None:
            raise UnknownSupplierError(
                f"Supplier {supplier_id} not found",
                details={'supplier_id': supplier_id}
            )

        orders = (
            self.session.query(PurchaseOrder)
            .filter(PurchaseOrder.supplier_id == supplier_id)
            .filter(PurchaseOrder.status == PurchaseOrderStatus.RECEIVED)
            .order_by(PurchaseOrder.order_date, PurchaseOrder.id)
            .all()
        )

        supplied = {}
        for order in orders:
            for item in order.items:
                entry = supplied.setdefault(item.medication_id, {
                    'medication_id': item.medication_id,
                    'medication_name': item.medication_name,
                    'frequency': 0,
                    'total_quantity': 0,
                    'last_price': None
                })
                entry['frequency'] += 1
                entry['total_quantity'] += item.received_quantity or 0
                # Orders are iterated oldest first
                entry['last_price'] = item.unit_price

        for entry in supplied.values():
            if not entry['medication_name']:
                medication = self.session.get(Medication, entry['medication_id'])
                entry['medication_name'] = medication.name if medication else None

        ranked = sorted(
            supplied.values(),
            key=lambda entry: (-entry['frequency'], str(entry['medication_id']))
        )
        return ranked[:limit]
