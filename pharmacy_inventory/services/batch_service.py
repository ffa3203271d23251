# pharmacy_inventory/services/batch_service.py
from typing import Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.config import config
from pharmacy_inventory.models import Medication, Batch, BatchStatus
from pharmacy_inventory.core.expiry import classify_batch
from pharmacy_inventory.core.fefo import (
    allocate_fefo, allocated_quantity, get_available_batches,
    sort_batches_fefo, total_available_stock
)
from pharmacy_inventory.exceptions import (
    InventoryError, DatabaseError, NoEligibleBatchesError, UnknownMedicationError
)
from pharmacy_inventory.utils.date_utils import SystemClock
from pharmacy_inventory.utils.validation import validate_quantity

logger = logging.getLogger(__name__)

class BatchService:
    """Service for batch lookups, expiry classification and FEFO allocation."""

    def __init__(self, session: Session, clock=None, warning_days: Optional[int] = None):
        """Initialize the batch service.

        Args:
            session: Database session
            clock: Clock providing today()
            warning_days: Near-expiry window in days
        """
        self.session = session
        self.clock = clock or SystemClock()
        if warning_days is None:
            warning_days = config.inventory_rules['expiry_warning_days']
        self.warning_days = warning_days

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        return self.session.get(Batch, batch_id)

    def batch_status(self, batch: Batch) -> BatchStatus:
        """Current status of a batch, computed from its expiry date.

        The stored status column is left alone; refresh_batch_statuses()
        writes it.
        """
        return classify_batch(batch.expiry_date, self.clock.today(), self.warning_days)

    def get_batches(self, medication_id: str) -> List[Batch]:
        """Get every batch of a medication in FEFO order.

        Read only. Use batch_status() for the current status; the stored
        status is only a cache.

        Raises:
            UnknownMedicationError if the medication does not exist
        """
        if self.session.get(Medication, medication_id) is None:
            raise UnknownMedicationError(
                f"Medication {medication_id} not found",
                details={'medication_id': medication_id}
            )

        batches = self.session.query(Batch).filter(Batch.medication_id == medication_id).all()
        return sort_batches_fefo(batches)

    def get_available_batches(self, medication_id: str) -> List[Batch]:
        """Get the allocatable batches of a medication in FEFO order."""
        return get_available_batches(
            self.get_batches(medication_id), self.clock.today(), self.warning_days
        )

    def get_total_available_stock(self, medication_id: str) -> int:
        return total_available_stock(
            self.get_batches(medication_id), self.clock.today(), self.warning_days
        )

    def has_enough_stock(self, medication_id: str, quantity: int) -> bool:
        """Check whether allocatable batches cover the quantity."""
        return self.get_total_available_stock(medication_id) >= quantity

    def allocate(self, medication_id: str, quantity: int) -> Dict:
        """Plan a FEFO allocation without touching any batch.

        Args:
            medication_id: Medication ID
            quantity: Requested quantity

        Returns:
            Dictionary with allocations as (batch, quantity) pairs, requested,
            allocated, shortfall and is_partial. When no batch is eligible the
            result fails with code NO_ELIGIBLE_BATCHES.
        """
        try:
            validate_quantity(quantity)
            batches = self.get_batches(medication_id)
        except InventoryError as e:
            return e.to_result()

        allocations = allocate_fefo(batches, quantity, self.clock.today(), self.warning_days)
        allocated = allocated_quantity(allocations)
        shortfall = quantity - allocated

        if allocated == 0:
            result = NoEligibleBatchesError(
                f"No eligible batches for medication {medication_id}",
                details={'medication_id': medication_id, 'requested': quantity}
            ).to_result()
            result.update({'allocations': [], 'requested': quantity, 'allocated': 0, 'shortfall': quantity})
            return result

        if shortfall > 0:
            logger.info(f"Partial allocation for {medication_id}: {allocated} of {quantity}")

        return {
            'success': True,
            'allocations': allocations,
            'requested': quantity,
            'allocated': allocated,
            'shortfall': shortfall,
            'is_partial': shortfall > 0
        }

    def refresh_batch_statuses(self) -> Dict:
        """Recompute and persist the cached status of every batch.

        Returns:
            Dictionary with the number of changed batches and counts per status
        """
        counts = {status.value: 0 for status in BatchStatus}
        changed = 0

        try:
            for batch in self.session.query(Batch).all():
                if self._refresh_status(batch):
                    changed += 1
                counts[batch.status.value] += 1

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error refreshing batch statuses: {str(e)}")
            return DatabaseError(f"Error refreshing batch statuses: {str(e)}").to_result()

        logger.info(f"Refreshed batch statuses: {changed} changed, {counts}")
        return {'success': True, 'changed': changed, 'counts': counts}

    def _refresh_status(self, batch: Batch) -> bool:
        status = self.batch_status(batch)
        if batch.status != status:
            batch.status = status
            return True
        return False
