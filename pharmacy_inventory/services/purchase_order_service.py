# pharmacy_inventory/services/purchase_order_service.py
from datetime import date
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.config import config
from pharmacy_inventory.models import (
    Medication, Supplier, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
)
from pharmacy_inventory.exceptions import (
    InventoryError, DatabaseError, UnknownMedicationError, UnknownSupplierError,
    UnknownRecordError, ValidationError
)
from pharmacy_inventory.services.ledger_service import LedgerService
from pharmacy_inventory.utils.date_utils import SystemClock, add_days, convert_to_date
from pharmacy_inventory.utils.identifiers import generate_id, generate_po_number, generate_batch_number
from pharmacy_inventory.utils.validation import resolve_actor, validate_purchase_order

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = (PurchaseOrderStatus.PENDING, PurchaseOrderStatus.APPROVED)
APPROVABLE_STATUSES = (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING)


class PurchaseOrderService:
    """Service for the purchase-order lifecycle: create, approve, cancel, receive."""

    def __init__(
        self,
        session: Session,
        clock=None,
        ledger_service: Optional[LedgerService] = None,
        reorder_rules: Optional[Dict] = None
    ):
        """Initialize the purchase order service.

        Args:
            session: Database session
            clock: Clock providing now() and today()
            ledger_service: Ledger used on receipt; must not autocommit
            reorder_rules: Overrides for the REORDER settings
        """
        self.session = session
        self.clock = clock or SystemClock()
        # Receipt spans several medications and commits once
        self.ledger_service = ledger_service or LedgerService(session, clock=self.clock, autocommit=False)

        rules = dict(config.reorder_rules)
        rules.update(reorder_rules or {})
        self.tax_rate = rules['tax_rate']
        self.default_delivery_days = rules['default_delivery_days']

    def get_purchase_order(self, order_id: str) -> Optional[PurchaseOrder]:
        return self.session.get(PurchaseOrder, order_id)

    def get_purchase_orders(
        self,
        supplier_id: Optional[str] = None,
        status: Optional[PurchaseOrderStatus] = None
    ) -> List[PurchaseOrder]:
        """Get purchase orders, newest first.

        Args:
            supplier_id: Optional supplier filter
            status: Optional status filter

        Returns:
            List of purchase orders
        """
        query = self.session.query(PurchaseOrder)
        if supplier_id is not None:
            query = query.filter(PurchaseOrder.supplier_id == supplier_id)
        if status is not None:
            query = query.filter(PurchaseOrder.status == status)
        return query.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id).all()

    def create_purchase_order(
        self,
        supplier_id: str,
        items: List[Dict],
        actor: Any,
        expected_delivery_date: Optional[date] = None,
        notes: Optional[str] = None,
        status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    ) -> Dict:
        """Create a purchase order.

        Args:
            supplier_id: Supplier ID
            items: Dictionaries with medication_id, quantity and optionally
                unit_price (defaults to the medication's purchase price)
            actor: Mapping or object with id and name
            expected_delivery_date: Defaults to today plus the configured
                delivery days
            notes: Free text
            status: Initial status, draft or pending

        Returns:
            Dictionary with the purchase order or a failure result
        """
        try:
            actor_id, actor_name = resolve_actor(actor)
            if status not in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING):
                raise ValidationError(f"A purchase order cannot be created as {status.value}")

            supplier = self.session.get(Supplier, supplier_id)
            if supplier is None:
                raise UnknownSupplierError(
                    f"Supplier {supplier_id} not found", details={'supplier_id': supplier_id}
                )

            now = self.clock.now()
            order = PurchaseOrder(
                id=generate_id('po'),
                po_number=generate_po_number(now),
                supplier_id=supplier.id,
                supplier_name=supplier.name,
                order_date=now,
                expected_delivery_date=convert_to_date(expected_delivery_date) or add_days(
                    self.clock.today(), self.default_delivery_days
                ),
                status=status,
                notes=notes,
                created_by=actor_name or actor_id,
                created_at=now,
                updated_at=now
            )

            for line in items:
                medication = self.session.get(Medication, line.get('medication_id'))
                if medication is None:
                    raise UnknownMedicationError(
                        f"Medication {line.get('medication_id')} not found",
                        details={'medication_id': line.get('medication_id')}
                    )
                quantity = line.get('quantity')
                unit_price = line.get('unit_price')
                if unit_price is None:
                    unit_price = medication.purchase_price or 0.0
                order.items.append(PurchaseOrderItem(
                    id=generate_id('poi'),
                    medication_id=medication.id,
                    medication_name=medication.name,
                    ordered_quantity=quantity,
                    received_quantity=0,
                    unit_price=unit_price,
                    subtotal=unit_price * (quantity or 0)
                ))

            errors = validate_purchase_order(order)
            if errors:
                raise ValidationError("Validation failed", details=errors)

            self._update_totals(order)
            self.session.add(order)
            self.session.commit()
        except InventoryError as e:
            self.session.rollback()
            logger.warning(f"Purchase order for supplier {supplier_id} rejected: {e}")
            return e.to_result()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error creating purchase order: {str(e)}")
            return DatabaseError(f"Error creating purchase order: {str(e)}").to_result()

        logger.info(f"Created purchase order {order.po_number} for supplier {supplier_id}")
        return {'success': True, 'purchase_order': order}

    def approve_purchase_order(self, order_id: str, actor: Any) -> Dict:
        """Approve a draft or pending purchase order."""
        return self._transition(order_id, actor, APPROVABLE_STATUSES, PurchaseOrderStatus.APPROVED)

    def cancel_purchase_order(self, order_id: str, actor: Any) -> Dict:
        """Cancel a purchase order that has not been received."""
        return self._transition(
            order_id, actor,
            (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING, PurchaseOrderStatus.APPROVED),
            PurchaseOrderStatus.CANCELLED
        )

    def receive_purchase_order(
        self,
        order_id: str,
        actor: Any,
        received_items: Optional[Dict[str, Dict]] = None,
        actual_delivery_date: Optional[date] = None
    ) -> Dict:
        """Receive a purchase order into stock.

        Each received line becomes a batch and an 'in' movement through the
        ledger. The whole receipt commits or rolls back as one transaction.

        Args:
            order_id: Purchase order ID
            actor: Mapping or object with id and name
            received_items: Per item id, a dictionary with received_quantity,
                batch_number and expiry_date. Lines without an entry are
                received in full with the lot details already on the line.
            actual_delivery_date: Defaults to today

        Returns:
            Dictionary with the order, created batches and movements, or a
            failure result
        """
        received_items = received_items or {}

        order = self.get_purchase_order(order_id)
        if order is None:
            return UnknownRecordError(
                f"Purchase order {order_id} not found", details={'purchase_order_id': order_id}
            ).to_result()

        try:
            actor_id, actor_name = resolve_actor(actor)
            if order.status not in RECEIVABLE_STATUSES:
                raise ValidationError(
                    f"Purchase order {order.po_number} is {order.status.value} and cannot be received",
                    details={'purchase_order_id': order_id, 'status': order.status.value}
                )
        except InventoryError as e:
            return e.to_result()

        now = self.clock.now()
        batches = []
        movements = []

        with self.ledger_service.hold_medications(item.medication_id for item in order.items):
            try:
                for item in order.items:
                    entry = received_items.get(item.id, {})
                    quantity = entry.get('received_quantity', item.ordered_quantity)

                    if quantity is None or isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
                        raise ValidationError(
                            f"Received quantity for {item.medication_name} must be a non-negative integer",
                            details={'item_id': item.id, 'received_quantity': repr(quantity)}
                        )

                    item.received_quantity = quantity
                    item.batch_number = entry.get('batch_number') or item.batch_number or generate_batch_number(now)
                    item.expiry_date = convert_to_date(entry.get('expiry_date')) or item.expiry_date

                    if quantity == 0:
                        continue

                    result = self.ledger_service.receive_stock(
                        item.medication_id,
                        quantity,
                        item.batch_number,
                        item.expiry_date,
                        {'id': actor_id, 'name': actor_name},
                        purchase_price=item.unit_price,
                        supplier_id=order.supplier_id,
                        received_date=convert_to_date(actual_delivery_date) or self.clock.today(),
                        reason=f"Received on purchase order {order.po_number}",
                        reference_id=order.id
                    )
                    if not result['success']:
                        # The ledger has rolled the whole receipt back
                        logger.warning(f"Receipt of {order.po_number} failed: {result.get('message')}")
                        return result

                    batches.append(result['batch'])
                    movements.append(result['movement'])

                order.status = PurchaseOrderStatus.RECEIVED
                order.actual_delivery_date = convert_to_date(actual_delivery_date) or self.clock.today()
                order.received_by = actor_name or actor_id
                order.updated_at = now

                self.session.commit()
            except InventoryError as e:
                self.session.rollback()
                logger.warning(f"Receipt of {order_id} rejected: {e}")
                return e.to_result()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"Error receiving purchase order {order_id}: {str(e)}")
                return DatabaseError(f"Error receiving purchase order: {str(e)}").to_result()

        logger.info(
            f"Received purchase order {order.po_number}: {len(batches)} batch(es), "
            f"{sum(movement.quantity for movement in movements)} unit(s)"
        )
        return {'success': True, 'purchase_order': order, 'batches': batches, 'movements': movements}

    def _transition(self, order_id: str, actor: Any, allowed: tuple, target: PurchaseOrderStatus) -> Dict:
        order = self.get_purchase_order(order_id)
        if order is None:
            return UnknownRecordError(
                f"Purchase order {order_id} not found", details={'purchase_order_id': order_id}
            ).to_result()

        try:
            actor_id, actor_name = resolve_actor(actor)
            if order.status not in allowed:
                raise ValidationError(
                    f"Purchase order {order.po_number} is {order.status.value}; cannot move to {target.value}",
                    details={'purchase_order_id': order_id, 'status': order.status.value}
                )

            order.status = target
            order.updated_at = self.clock.now()
            self.session.commit()
        except InventoryError as e:
            self.session.rollback()
            return e.to_result()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error updating purchase order {order_id}: {str(e)}")
            return DatabaseError(f"Error updating purchase order: {str(e)}").to_result()

        logger.info(f"Purchase order {order.po_number} {target.value} by {actor_name or actor_id}")
        return {'success': True, 'purchase_order': order}

    def _update_totals(self, order: PurchaseOrder) -> None:
        order.subtotal = sum(item.subtotal or 0.0 for item in order.items)
        order.tax = order.subtotal * self.tax_rate / 100
        order.total = order.subtotal + order.tax
