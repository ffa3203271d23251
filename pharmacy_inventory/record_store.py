# pharmacy_inventory/record_store.py
from typing import Dict, Iterable, List
import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.models import (
    Medication, Batch, StockMovement, ExpiryAlert, ReorderSuggestion,
    PurchaseOrder, PurchaseOrderItem, Supplier, Notification
)
from pharmacy_inventory.exceptions import InventoryError, StoreError

logger = logging.getLogger(__name__)

COLLECTIONS = {
    'medications': Medication,
    'batches': Batch,
    'movements': StockMovement,
    'alerts': ExpiryAlert,
    'reorder-suggestions': ReorderSuggestion,
    'purchase-orders': PurchaseOrder,
    'suppliers': Supplier,
    'notifications': Notification,
}

# Referenced collections first
IMPORT_ORDER = (
    'suppliers', 'medications', 'batches', 'movements', 'purchase-orders',
    'alerts', 'reorder-suggestions', 'notifications'
)

# Stable ordering for exports
ORDER_BY = {
    'movements': (StockMovement.medication_id, StockMovement.sequence),
}


class RecordStore:
    """Whole-collection access to persisted records.

    Records are plain JSON-serializable dictionaries keyed by column name.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def model_for(name: str):
        """Model class stored under a collection name.

        Raises:
            StoreError for unknown collection names
        """
        model = COLLECTIONS.get(name)
        if model is None:
            raise StoreError(
                f"Unknown collection: {name}",
                details={'collection': name, 'known': sorted(COLLECTIONS)}
            )
        return model

    def get_collection(self, name: str) -> List[Dict]:
        """Read every record of a collection.

        Args:
            name: Collection name

        Returns:
            List of record dictionaries (empty when nothing is stored)
        """
        model = self.model_for(name)
        order_by = ORDER_BY.get(name, (model.id,))
        return [row.to_dict() for row in self.session.query(model).order_by(*order_by).all()]

    def put_collection(self, name: str, records: Iterable[Dict]) -> bool:
        """Replace a whole collection in one transaction.

        Args:
            name: Collection name
            records: Record dictionaries

        Returns:
            True on success, False when the write was rolled back
        """
        try:
            model = self.model_for(name)

            # Bulk deletes skip ORM cascades; stock movements reject updates
            if model is PurchaseOrder:
                self.session.query(PurchaseOrderItem).delete(synchronize_session='fetch')
            self.session.query(model).delete(synchronize_session='fetch')
            self.session.expire_all()

            count = 0
            for record in records:
                self.session.add(model.from_dict(record))
                count += 1

            self.session.commit()
        except (InventoryError, SQLAlchemyError, ValueError, TypeError, KeyError) as e:
            self.session.rollback()
            logger.error(f"Error writing collection {name}: {str(e)}")
            return False

        logger.info(f"Stored {count} record(s) in collection {name}")
        return True

    def export_all(self) -> Dict[str, List[Dict]]:
        """Snapshot of every collection."""
        return {name: self.get_collection(name) for name in IMPORT_ORDER}

    def import_all(self, data: Dict[str, List[Dict]]) -> Dict[str, bool]:
        """Replace every collection present in data.

        Returns:
            Collection name -> success flag
        """
        unknown = sorted(set(data) - set(COLLECTIONS))
        if unknown:
            raise StoreError(f"Unknown collections: {', '.join(unknown)}", details={'collections': unknown})

        return {
            name: self.put_collection(name, data[name])
            for name in IMPORT_ORDER
            if name in data
        }

    def dump(self, path) -> int:
        """Write every collection to a JSON file; returns the record count."""
        data = self.export_all()
        with open(path, 'w', encoding='utf-8') as handle:
            json.dump(data, handle, indent=2)
        return sum(len(records) for records in data.values())

    def load(self, path) -> Dict[str, bool]:
        """Replace collections from a JSON file written by dump()."""
        with open(path, 'r', encoding='utf-8') as handle:
            data = json.load(handle)
        return self.import_all(data)
