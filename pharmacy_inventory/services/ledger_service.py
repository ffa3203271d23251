# pharmacy_inventory/services/ledger_service.py
from contextlib import contextmanager, ExitStack
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.config import config
from pharmacy_inventory.models import (
    Medication, Batch, StockMovement, Supplier, MovementKind, BatchStatus
)
from pharmacy_inventory.core.expiry import classify_batch, days_until_expiry
from pharmacy_inventory.core.fefo import allocate_fefo, allocated_quantity
from pharmacy_inventory.core.ledger import (
    calculate_stock_after, replay_movements, verify_movement_chain
)
from pharmacy_inventory.exceptions import (
    InventoryError, DatabaseError, InsufficientStockError, NoEligibleBatchesError,
    UnknownMedicationError, UnknownSupplierError, UnknownRecordError, ValidationError
)
from pharmacy_inventory.utils.date_utils import SystemClock, convert_to_date
from pharmacy_inventory.utils.identifiers import generate_id
from pharmacy_inventory.utils.locks import KeyedLock, medication_locks
from pharmacy_inventory.utils.validation import validate_quantity, resolve_actor

logger = logging.getLogger(__name__)

class LedgerService:
    """Append-only stock ledger and the only writer of Medication.current_stock.

    Every mutating call runs read, validate, write and commit while holding the
    medication's lock, and reports failures as result dictionaries after
    rolling the session back.
    """

    def __init__(
        self,
        session: Session,
        clock=None,
        locks: Optional[KeyedLock] = None,
        warning_days: Optional[int] = None,
        autocommit: bool = True
    ):
        """Initialize the ledger service.

        Args:
            session: Database session
            clock: Clock providing now() and today()
            locks: Per-medication lock registry (process-wide by default)
            warning_days: Near-expiry window used for batch eligibility
            autocommit: Commit after each successful operation; when False the
                caller owns the transaction and must hold the locks
        """
        self.session = session
        self.clock = clock or SystemClock()
        self.locks = locks or medication_locks
        if warning_days is None:
            warning_days = config.inventory_rules['expiry_warning_days']
        self.warning_days = warning_days
        self.autocommit = autocommit

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_medication(self, medication_id: str) -> Optional[Medication]:
        return self.session.get(Medication, medication_id)

    def get_movements(self, medication_id: str) -> List[StockMovement]:
        """Get the ledger of a medication in write order."""
        return (
            self.session.query(StockMovement)
            .filter(StockMovement.medication_id == medication_id)
            .order_by(StockMovement.sequence)
            .all()
        )

    def reconcile(self, medication_id: str) -> Dict:
        """Compare the denormalized stock with the ledger and the batches.

        Returns:
            Dictionary with current, ledger and batch stock and consistency flags
        """
        medication = self.get_medication(medication_id)
        if medication is None:
            return UnknownMedicationError(
                f"Medication {medication_id} not found",
                details={'medication_id': medication_id}
            ).to_result()

        movements = self.get_movements(medication_id)
        ledger_stock = replay_movements(movements)
        problems = verify_movement_chain(movements)

        today = self.clock.today()
        batches = self.session.query(Batch).filter(Batch.medication_id == medication_id).all()
        batch_stock = sum(
            batch.quantity for batch in batches
            if days_until_expiry(batch.expiry_date, today) >= 0
        )

        ledger_consistent = medication.current_stock == ledger_stock and not problems
        batch_consistent = medication.current_stock == batch_stock

        if not ledger_consistent:
            logger.warning(
                f"Ledger mismatch for {medication_id}: current_stock={medication.current_stock}, "
                f"ledger={ledger_stock}, problems={len(problems)}"
            )

        return {
            'success': True,
            'medication_id': medication_id,
            'current_stock': medication.current_stock,
            'ledger_stock': ledger_stock,
            'batch_stock': batch_stock,
            'movement_count': len(movements),
            'ledger_consistent': ledger_consistent,
            'batch_consistent': batch_consistent,
            'problems': problems
        }

    # ------------------------------------------------------------------
    # Locking and transactions
    # ------------------------------------------------------------------

    @contextmanager
    def hold_medications(self, medication_ids: Iterable[str]):
        """Hold the locks of several medications, acquired in sorted order."""
        with ExitStack() as stack:
            for medication_id in sorted(set(medication_ids)):
                stack.enter_context(self.locks.hold(medication_id))
            yield

    def _run_locked(self, medication_id: str, operation: str, work: Callable[[], Dict]) -> Dict:
        with self.locks.hold(medication_id):
            try:
                result = work()
                if self.autocommit:
                    self.session.commit()
                else:
                    self.session.flush()
                return result
            except InventoryError as e:
                self.session.rollback()
                logger.warning(f"{operation} rejected for medication {medication_id}: {e}")
                return e.to_result()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"{operation} failed for medication {medication_id}: {str(e)}")
                return DatabaseError(f"{operation} failed: {str(e)}").to_result()

    def _load_for_update(self, medication_id: str) -> Medication:
        # populate_existing discards identity-map state read before the lock
        medication = (
            self.session.query(Medication)
            .filter(Medication.id == medication_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if medication is None:
            raise UnknownMedicationError(
                f"Medication {medication_id} not found",
                details={'medication_id': medication_id}
            )
        return medication

    def _load_batches_for_update(self, medication_id: str) -> List[Batch]:
        return (
            self.session.query(Batch)
            .filter(Batch.medication_id == medication_id)
            .populate_existing()
            .with_for_update()
            .all()
        )

    def _next_sequence(self, medication_id: str) -> int:
        last = (
            self.session.query(func.max(StockMovement.sequence))
            .filter(StockMovement.medication_id == medication_id)
            .scalar()
        )
        return (last or 0) + 1

    def _write_movement(
        self,
        medication: Medication,
        kind: MovementKind,
        quantity: int,
        reason: Optional[str],
        actor: Any,
        reference_id: Optional[str] = None,
        direction: Optional[int] = None,
        batch_id: Optional[str] = None,
        allocations: Optional[List[Dict]] = None
    ) -> StockMovement:
        actor_id, actor_name = resolve_actor(actor)
        validate_quantity(quantity)

        stock_before = medication.current_stock or 0
        stock_after = calculate_stock_after(stock_before, quantity, kind, direction)
        now = self.clock.now()

        movement = StockMovement(
            id=generate_id('mov'),
            medication_id=medication.id,
            medication_name=medication.name,
            sequence=self._next_sequence(medication.id),
            kind=kind,
            quantity=quantity,
            stock_before=stock_before,
            stock_after=stock_after,
            timestamp=now,
            actor_id=actor_id,
            actor_name=actor_name,
            reason=reason,
            reference_id=reference_id,
            batch_id=batch_id,
            allocations=allocations
        )

        medication.current_stock = stock_after
        medication.updated_at = now
        self.session.add(movement)

        logger.info(
            f"Stock movement {kind.value} x{quantity} for {medication.id}: "
            f"{stock_before} -> {stock_after} by {actor_id}"
        )
        return movement

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_movement(
        self,
        medication_id: str,
        quantity: int,
        kind: Union[MovementKind, str],
        reason: Optional[str],
        actor: Any,
        reference_id: Optional[str] = None,
        direction: Optional[int] = None
    ) -> Dict:
        """Apply one stock movement.

        Args:
            medication_id: Medication ID
            quantity: Positive quantity
            kind: in, out, transfer, return or adjustment
            reason: Free-text reason
            actor: Mapping or object with id and name
            reference_id: Optional order/session causing the movement
            direction: +1 or -1 for adjustments

        Returns:
            {'success': True, 'movement': StockMovement} or a failure result
            with code INSUFFICIENT_STOCK, UNKNOWN_MEDICATION or VALIDATION_ERROR
        """
        def work():
            movement_kind = MovementKind.from_string(kind)
            medication = self._load_for_update(medication_id)
            movement = self._write_movement(
                medication, movement_kind, quantity, reason, actor,
                reference_id=reference_id, direction=direction
            )
            return {'success': True, 'movement': movement}

        return self._run_locked(medication_id, 'apply_movement', work)

    def receive_stock(
        self,
        medication_id: str,
        quantity: int,
        batch_number: str,
        expiry_date: Union[str, date],
        actor: Any,
        purchase_price: Optional[float] = None,
        supplier_id: Optional[str] = None,
        received_date: Optional[date] = None,
        reason: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> Dict:
        """Receive stock into a new batch and record an 'in' movement.

        Returns:
            {'success': True, 'movement': ..., 'batch': ...} or a failure result
        """
        def work():
            medication = self._load_for_update(medication_id)
            validate_quantity(quantity)

            if not batch_number:
                raise ValidationError("Batch number is required")

            try:
                expiry = convert_to_date(expiry_date)
            except ValueError:
                raise ValidationError(f"Invalid expiry date: {expiry_date!r}")
            if expiry is None:
                raise ValidationError("Expiry date is required")

            today = self.clock.today()
            status = classify_batch(expiry, today, self.warning_days)
            if status == BatchStatus.EXPIRED:
                raise ValidationError(
                    f"Batch {batch_number} expired on {expiry.isoformat()}",
                    details={'batch_number': batch_number, 'expiry_date': expiry.isoformat()}
                )

            if supplier_id is not None and self.session.get(Supplier, supplier_id) is None:
                raise UnknownSupplierError(
                    f"Supplier {supplier_id} not found",
                    details={'supplier_id': supplier_id}
                )

            now = self.clock.now()
            batch = Batch(
                id=generate_id('batch'),
                medication_id=medication.id,
                batch_number=batch_number,
                expiry_date=expiry,
                quantity=quantity,
                purchase_price=medication.purchase_price if purchase_price is None else purchase_price,
                received_date=convert_to_date(received_date) or today,
                supplier_id=supplier_id,
                status=status,
                created_at=now,
                updated_at=now
            )
            self.session.add(batch)

            movement = self._write_movement(
                medication, MovementKind.IN, quantity,
                reason or f"Received batch {batch_number}", actor,
                reference_id=reference_id, batch_id=batch.id
            )
            return {'success': True, 'movement': movement, 'batch': batch}

        return self._run_locked(medication_id, 'receive_stock', work)

    def apply_allocation(
        self,
        medication_id: str,
        quantity: int,
        actor: Any,
        reason: Optional[str] = None,
        kind: Union[MovementKind, str] = MovementKind.OUT,
        reference_id: Optional[str] = None,
        allow_partial: bool = False
    ) -> Dict:
        """Take stock out of a medication's batches, first expired first out.

        Each allocated batch is decremented and a single movement records the
        aggregate quantity.

        Args:
            medication_id: Medication ID
            quantity: Requested quantity
            actor: Mapping or object with id and name
            reason: Free-text reason
            kind: out or transfer
            reference_id: Optional sale/transfer reference
            allow_partial: Accept an allocation short of the request

        Returns:
            Result with movement, allocations, requested, allocated and
            shortfall, or a failure result (INSUFFICIENT_STOCK,
            NO_ELIGIBLE_BATCHES, UNKNOWN_MEDICATION, VALIDATION_ERROR)
        """
        def work():
            movement_kind = MovementKind.from_string(kind)
            if not movement_kind.is_outbound:
                raise ValidationError(
                    f"Allocations apply to out or transfer movements, not {movement_kind.value}"
                )
            validate_quantity(quantity)

            medication = self._load_for_update(medication_id)
            batches = self._load_batches_for_update(medication_id)
            today = self.clock.today()

            allocations = allocate_fefo(batches, quantity, today, self.warning_days)
            allocated = allocated_quantity(allocations)
            shortfall = quantity - allocated

            if allocated == 0:
                raise NoEligibleBatchesError(
                    f"No eligible batches for medication {medication_id}",
                    details={'medication_id': medication_id, 'requested': quantity}
                )

            if shortfall > 0 and not allow_partial:
                raise InsufficientStockError(
                    f"Requested {quantity} but only {allocated} available in eligible batches",
                    details={
                        'medication_id': medication_id,
                        'requested': quantity,
                        'available': allocated,
                        'shortfall': shortfall
                    }
                )

            now = self.clock.now()
            allocation_records = []
            for batch, take in allocations:
                batch.quantity -= take
                batch.status = classify_batch(batch.expiry_date, today, self.warning_days)
                batch.updated_at = now
                allocation_records.append({
                    'batch_id': batch.id,
                    'batch_number': batch.batch_number,
                    'quantity': take
                })

            movement = self._write_movement(
                medication, movement_kind, allocated,
                reason or f"FEFO {movement_kind.value} of {allocated}", actor,
                reference_id=reference_id, allocations=allocation_records
            )

            return {
                'success': True,
                'movement': movement,
                'allocations': allocations,
                'requested': quantity,
                'allocated': allocated,
                'shortfall': shortfall
            }

        return self._run_locked(medication_id, 'apply_allocation', work)

    def return_stock(
        self,
        medication_id: str,
        quantity: int,
        actor: Any,
        reason: Optional[str] = None,
        batch_id: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> Dict:
        """Record a customer return, optionally restocking a specific batch."""
        def work():
            medication = self._load_for_update(medication_id)
            validate_quantity(quantity)

            if batch_id is not None:
                batch = self.session.get(Batch, batch_id)
                if batch is None or batch.medication_id != medication_id:
                    raise UnknownRecordError(
                        f"Batch {batch_id} not found for medication {medication_id}",
                        details={'batch_id': batch_id, 'medication_id': medication_id}
                    )
                batch.quantity += quantity
                batch.updated_at = self.clock.now()

            movement = self._write_movement(
                medication, MovementKind.RETURN, quantity,
                reason or "Customer return", actor,
                reference_id=reference_id, batch_id=batch_id
            )
            return {'success': True, 'movement': movement}

        return self._run_locked(medication_id, 'return_stock', work)

    def record_stock_count(
        self,
        medication_id: str,
        counted_quantity: int,
        actor: Any,
        reason: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> Dict:
        """Adjust stock to a physically counted quantity (stock opname).

        Returns:
            Result with the adjustment movement (None when the count matches)
            and the signed difference
        """
        def work():
            if isinstance(counted_quantity, bool) or not isinstance(counted_quantity, int) or counted_quantity < 0:
                raise ValidationError(f"Counted quantity must be a non-negative integer, got {counted_quantity!r}")

            medication = self._load_for_update(medication_id)
            difference = counted_quantity - (medication.current_stock or 0)

            if difference == 0:
                return {'success': True, 'movement': None, 'difference': 0}

            movement = self._write_movement(
                medication, MovementKind.ADJUSTMENT, abs(difference),
                reason or "Stock count adjustment", actor,
                reference_id=reference_id, direction=1 if difference > 0 else -1
            )
            return {'success': True, 'movement': movement, 'difference': difference}

        return self._run_locked(medication_id, 'record_stock_count', work)

    def dispose_expired_batches(
        self,
        medication_id: str,
        actor: Any,
        reason: Optional[str] = None,
        reference_id: Optional[str] = None
    ) -> Dict:
        """Write off every expired batch that still holds stock.

        One decreasing adjustment is recorded per disposed batch.
        """
        def work():
            medication = self._load_for_update(medication_id)
            today = self.clock.today()
            now = self.clock.now()

            movements = []
            disposed = 0
            for batch in sorted(self._load_batches_for_update(medication_id), key=lambda b: (b.expiry_date, b.id)):
                if batch.quantity <= 0:
                    continue
                if classify_batch(batch.expiry_date, today, self.warning_days) != BatchStatus.EXPIRED:
                    continue

                quantity = batch.quantity
                movements.append(self._write_movement(
                    medication, MovementKind.ADJUSTMENT, quantity,
                    reason or f"Disposal of expired batch {batch.batch_number}", actor,
                    reference_id=reference_id, direction=-1, batch_id=batch.id
                ))
                batch.quantity = 0
                batch.status = BatchStatus.EXPIRED
                batch.updated_at = now
                disposed += quantity

            return {'success': True, 'movements': movements, 'disposed_quantity': disposed}

        return self._run_locked(medication_id, 'dispose_expired_batches', work)
