# pharmacy_inventory/services/reorder_service.py
from datetime import date
from typing import Any, Dict, List, Optional
import enum
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.config import config
from pharmacy_inventory.models import (
    Medication, ReorderSuggestion, PurchaseOrder, PurchaseOrderItem,
    SuggestionStatus, PurchaseOrderStatus
)
from pharmacy_inventory.core.reorder import (
    effective_minimum_stock, stock_ratio, is_low_stock,
    calculate_suggested_quantity, reorder_priority, select_best_supplier
)
from pharmacy_inventory.exceptions import (
    InventoryError, DatabaseError, UnknownRecordError, ValidationError
)
from pharmacy_inventory.services.supplier_service import SupplierService
from pharmacy_inventory.utils.date_utils import SystemClock, add_days, convert_to_date
from pharmacy_inventory.utils.identifiers import generate_id, generate_po_number
from pharmacy_inventory.utils.validation import resolve_actor

logger = logging.getLogger(__name__)


class SupplierHistoryPolicy(enum.Enum):
    """What to do with a low-stock medication no active supplier has history for."""
    SKIP = 'skip'
    INCLUDE = 'include'

    @classmethod
    def from_config(cls) -> 'SupplierHistoryPolicy':
        if config.reorder_rules['skip_without_supplier_history']:
            return cls.SKIP
        return cls.INCLUDE


class ReorderService:
    """Service for low-stock detection and reorder suggestions."""

    def __init__(
        self,
        session: Session,
        clock=None,
        supplier_service: Optional[SupplierService] = None,
        low_stock_threshold: Optional[int] = None,
        history_policy: Optional[SupplierHistoryPolicy] = None,
        reorder_rules: Optional[Dict] = None
    ):
        """Initialize the reorder service.

        Args:
            session: Database session
            clock: Clock providing now() and today()
            supplier_service: Supplier lookups and scoring
            low_stock_threshold: Minimum used for medications without one
            history_policy: Handling of medications without supplier history
            reorder_rules: Overrides for the REORDER settings
        """
        self.session = session
        self.clock = clock or SystemClock()
        self.supplier_service = supplier_service or SupplierService(session)

        if low_stock_threshold is None:
            low_stock_threshold = config.inventory_rules['low_stock_threshold']
        self.low_stock_threshold = low_stock_threshold
        self.history_policy = history_policy or SupplierHistoryPolicy.from_config()

        rules = dict(config.reorder_rules)
        rules.update(reorder_rules or {})
        self.tax_rate = rules['tax_rate']
        self.default_delivery_days = rules['default_delivery_days']

    def get_low_stock_medications(self) -> List[Medication]:
        """Get non-archived medications at or below their minimum, lowest ratio first."""
        medications = (
            self.session.query(Medication)
            .filter(Medication.is_archived.is_(False))
            .all()
        )

        low_stock = []
        for medication in medications:
            minimum = effective_minimum_stock(medication, self.low_stock_threshold)
            if is_low_stock(medication.current_stock or 0, minimum):
                low_stock.append(medication)

        return sorted(
            low_stock,
            key=lambda med: (
                stock_ratio(med.current_stock or 0, effective_minimum_stock(med, self.low_stock_threshold)),
                str(med.id)
            )
        )

    def recommend_supplier(self, medication: Medication, performance_cache: Optional[Dict] = None) -> Optional[Dict]:
        """Pick the best-scoring active supplier with history for a medication.

        Args:
            medication: Medication to reorder
            performance_cache: supplier_id -> performance, shared within a run

        Returns:
            Dictionary with supplier_id, supplier_name, last_price,
            average_delivery_time and quality_score, or None without history
        """
        if performance_cache is None:
            performance_cache = {}

        candidates = []
        for supplier in self.supplier_service.get_suppliers_for_medication(medication.id):
            if supplier.id not in performance_cache:
                performance_cache[supplier.id] = self.supplier_service.calculate_performance(supplier.id)
            candidates.append({
                'supplier_id': supplier.id,
                'supplier_name': supplier.name,
                'performance': performance_cache[supplier.id]
            })

        best = select_best_supplier(candidates)
        if best is None:
            return None

        last_price = self.supplier_service.get_last_price(best['supplier_id'], medication.id)
        return {
            'supplier_id': best['supplier_id'],
            'supplier_name': best['supplier_name'],
            'last_price': medication.purchase_price if last_price is None else last_price,
            'average_delivery_time': best['performance']['average_delivery_deviation'],
            'quality_score': best['performance']['quality_score']
        }

    def generate_suggestions(self) -> List[ReorderSuggestion]:
        """Build reorder suggestions for every low-stock medication.

        Suggestions are not added to the session.

        Returns:
            Suggestions sorted by priority, then stock ratio
        """
        now = self.clock.now()
        performance_cache = {}
        suggestions = []

        for medication in self.get_low_stock_medications():
            current = medication.current_stock or 0
            minimum = effective_minimum_stock(medication, self.low_stock_threshold)
            supplier = self.recommend_supplier(medication, performance_cache)

            if supplier is None and self.history_policy == SupplierHistoryPolicy.SKIP:
                logger.info(f"No supplier history for {medication.id} ({medication.name}); no suggestion")
                continue

            supplier = supplier or {}
            suggestions.append(ReorderSuggestion(
                id=generate_id('reorder'),
                medication_id=medication.id,
                medication_name=medication.name,
                current_stock=current,
                minimum_stock=minimum,
                suggested_quantity=calculate_suggested_quantity(current, minimum),
                supplier_id=supplier.get('supplier_id'),
                supplier_name=supplier.get('supplier_name'),
                last_price=supplier.get('last_price'),
                average_delivery_time=supplier.get('average_delivery_time'),
                quality_score=supplier.get('quality_score'),
                priority=reorder_priority(current, minimum),
                status=SuggestionStatus.PENDING,
                created_at=now,
                updated_at=now
            ))

        # Candidates are already in ratio order and sorted() is stable
        return sorted(suggestions, key=lambda suggestion: suggestion.priority.rank)

    def refresh_suggestions(self) -> Dict:
        """Persist freshly generated suggestions, merged by medication id.

        Ordered and dismissed suggestions are left untouched, pending ones are
        updated in place, and suggestions for medications that are no longer
        low on stock are removed.

        Returns:
            Dictionary with the merged suggestions and created, updated,
            preserved and removed counts
        """
        generated = self.generate_suggestions()
        generated_ids = {suggestion.medication_id for suggestion in generated}
        existing = {
            suggestion.medication_id: suggestion
            for suggestion in self.session.query(ReorderSuggestion).all()
        }
        now = self.clock.now()

        merged = []
        created = updated = preserved = removed = 0

        try:
            for suggestion in generated:
                stored = existing.get(suggestion.medication_id)

                if stored is None:
                    self.session.add(suggestion)
                    merged.append(suggestion)
                    created += 1
                elif stored.status != SuggestionStatus.PENDING:
                    merged.append(stored)
                    preserved += 1
                else:
                    for field in (
                        'medication_name', 'current_stock', 'minimum_stock', 'suggested_quantity',
                        'supplier_id', 'supplier_name', 'last_price', 'average_delivery_time',
                        'quality_score', 'priority'
                    ):
                        setattr(stored, field, getattr(suggestion, field))
                    stored.updated_at = now
                    merged.append(stored)
                    updated += 1

            for medication_id, stored in existing.items():
                if medication_id not in generated_ids:
                    self.session.delete(stored)
                    removed += 1

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error refreshing reorder suggestions: {str(e)}")
            return DatabaseError(f"Error refreshing reorder suggestions: {str(e)}").to_result()

        logger.info(
            f"Reorder suggestions refreshed: {created} created, {updated} updated, "
            f"{preserved} preserved, {removed} removed"
        )

        return {
            'success': True,
            'suggestions': merged,
            'created': created,
            'updated': updated,
            'preserved': preserved,
            'removed': removed
        }

    def get_suggestions(self, status: Optional[SuggestionStatus] = None) -> List[ReorderSuggestion]:
        """Get stored suggestions, highest priority first."""
        query = self.session.query(ReorderSuggestion)
        if status is not None:
            query = query.filter(ReorderSuggestion.status == status)
        return sorted(
            query.all(),
            key=lambda suggestion: (
                suggestion.priority.rank,
                stock_ratio(suggestion.current_stock or 0, suggestion.minimum_stock or 0),
                str(suggestion.medication_id)
            )
        )

    def dismiss_suggestion(self, suggestion_id: str) -> Dict:
        """Dismiss a pending suggestion; later refreshes leave it alone."""
        suggestion = self.session.get(ReorderSuggestion, suggestion_id)
        if suggestion is None:
            return UnknownRecordError(
                f"Reorder suggestion {suggestion_id} not found",
                details={'suggestion_id': suggestion_id}
            ).to_result()

        if suggestion.status != SuggestionStatus.PENDING:
            return ValidationError(
                f"Reorder suggestion {suggestion_id} is already {suggestion.status.value}",
                details={'suggestion_id': suggestion_id, 'status': suggestion.status.value}
            ).to_result()

        try:
            suggestion.status = SuggestionStatus.DISMISSED
            suggestion.updated_at = self.clock.now()
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error dismissing suggestion {suggestion_id}: {str(e)}")
            return DatabaseError(f"Error dismissing suggestion: {str(e)}").to_result()

        return {'success': True, 'suggestion': suggestion}

    def create_purchase_orders(
        self,
        suggestion_ids: List[str],
        actor: Any,
        expected_delivery_date: Optional[date] = None
    ) -> Dict:
        """Turn pending suggestions into purchase orders, one per supplier.

        Lines are priced at the recommended supplier's last price and the
        configured tax rate is added. Orders start as pending and the
        suggestions are marked ordered.

        Args:
            suggestion_ids: Suggestions to order
            actor: Mapping or object with id and name
            expected_delivery_date: Defaults to today plus the configured
                delivery days

        Returns:
            Dictionary with the created purchase orders or a failure result
        """
        try:
            actor_id, actor_name = resolve_actor(actor)
            if not suggestion_ids:
                raise ValidationError("No reorder suggestions selected")

            suggestions = []
            for suggestion_id in suggestion_ids:
                suggestion = self.session.get(ReorderSuggestion, suggestion_id)
                if suggestion is None:
                    raise UnknownRecordError(
                        f"Reorder suggestion {suggestion_id} not found",
                        details={'suggestion_id': suggestion_id}
                    )
                if suggestion.status != SuggestionStatus.PENDING:
                    raise ValidationError(
                        f"Reorder suggestion {suggestion_id} is {suggestion.status.value}",
                        details={'suggestion_id': suggestion_id, 'status': suggestion.status.value}
                    )
                if not suggestion.supplier_id:
                    raise ValidationError(
                        f"Reorder suggestion {suggestion_id} has no recommended supplier",
                        details={'suggestion_id': suggestion_id}
                    )
                suggestions.append(suggestion)

            grouped = {}
            for suggestion in suggestions:
                grouped.setdefault(suggestion.supplier_id, []).append(suggestion)

            now = self.clock.now()
            expected = convert_to_date(expected_delivery_date) or add_days(
                self.clock.today(), self.default_delivery_days
            )

            orders = []
            for supplier_id in sorted(grouped):
                group = grouped[supplier_id]
                order = PurchaseOrder(
                    id=generate_id('po'),
                    po_number=generate_po_number(now),
                    supplier_id=supplier_id,
                    supplier_name=group[0].supplier_name,
                    order_date=now,
                    expected_delivery_date=expected,
                    status=PurchaseOrderStatus.PENDING,
                    notes="Created from reorder suggestions",
                    created_by=actor_name or actor_id,
                    created_at=now,
                    updated_at=now
                )

                for suggestion in group:
                    unit_price = suggestion.last_price or 0.0
                    order.items.append(PurchaseOrderItem(
                        id=generate_id('poi'),
                        medication_id=suggestion.medication_id,
                        medication_name=suggestion.medication_name,
                        ordered_quantity=suggestion.suggested_quantity,
                        received_quantity=0,
                        unit_price=unit_price,
                        subtotal=unit_price * suggestion.suggested_quantity
                    ))
                    suggestion.status = SuggestionStatus.ORDERED
                    suggestion.purchase_order_id = order.id
                    suggestion.updated_at = now

                order.subtotal = sum(item.subtotal for item in order.items)
                order.tax = order.subtotal * self.tax_rate / 100
                order.total = order.subtotal + order.tax

                self.session.add(order)
                orders.append(order)

            self.session.commit()
        except InventoryError as e:
            self.session.rollback()
            logger.warning(f"Purchase orders from suggestions rejected: {e}")
            return e.to_result()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error creating purchase orders from suggestions: {str(e)}")
            return DatabaseError(f"Error creating purchase orders: {str(e)}").to_result()

        logger.info(f"Created {len(orders)} purchase order(s) from {len(suggestions)} suggestion(s)")
        return {'success': True, 'purchase_orders': orders}
