# pharmacy_inventory/services/catalog_service.py
from typing import Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.models import Medication, Supplier
from pharmacy_inventory.exceptions import (
    InventoryError, DatabaseError, UnknownMedicationError, UnknownSupplierError, ValidationError
)
from pharmacy_inventory.utils.date_utils import SystemClock
from pharmacy_inventory.utils.identifiers import generate_id
from pharmacy_inventory.utils.validation import validate_medication, validate_supplier

logger = logging.getLogger(__name__)

MEDICATION_FIELDS = (
    'code', 'name', 'category', 'form', 'unit', 'description',
    'minimum_stock', 'purchase_price', 'sale_price'
)
SUPPLIER_FIELDS = ('code', 'name', 'address', 'phone', 'email', 'contact', 'notes')
# name is a positional argument on creation
CREATE_MEDICATION_FIELDS = tuple(field for field in MEDICATION_FIELDS if field != 'name') + ('id',)
CREATE_SUPPLIER_FIELDS = tuple(field for field in SUPPLIER_FIELDS if field != 'name') + ('id',)


class CatalogService:
    """Service for maintaining medications and suppliers.

    Stock levels are read only here; they change through the ledger.
    """

    def __init__(self, session: Session, clock=None):
        """Initialize the catalog service.

        Args:
            session: Database session
            clock: Clock providing now()
        """
        self.session = session
        self.clock = clock or SystemClock()

    def get_medication(self, medication_id: str) -> Optional[Medication]:
        return self.session.get(Medication, medication_id)

    def get_medications(self, include_archived: bool = False) -> List[Medication]:
        """Get medications ordered by name."""
        query = self.session.query(Medication)
        if not include_archived:
            query = query.filter(Medication.is_archived.is_(False))
        return query.order_by(Medication.name, Medication.id).all()

    def create_medication(self, name: str, **fields) -> Dict:
        """Add a medication to the catalog with zero stock.

        Args:
            name: Medication name
            **fields: Any of code, category, form, unit, description,
                minimum_stock, purchase_price, sale_price

        Returns:
            Dictionary with the new medication or a failure result
        """
        def work():
            self._check_fields(fields, CREATE_MEDICATION_FIELDS)
            now = self.clock.now()
            medication = Medication(
                id=fields.pop('id', None) or generate_id('med'),
                name=name,
                current_stock=0,
                is_archived=False,
                created_at=now,
                updated_at=now,
                **fields
            )
            self._raise_on_errors(validate_medication(medication))
            self.session.add(medication)
            return {'success': True, 'medication': medication}

        return self._commit('create_medication', work)

    def update_medication(self, medication_id: str, **fields) -> Dict:
        """Edit catalog fields of a medication."""
        def work():
            medication = self._require_medication(medication_id)
            self._check_fields(fields, MEDICATION_FIELDS)
            for key, value in fields.items():
                setattr(medication, key, value)
            self._raise_on_errors(validate_medication(medication))
            medication.updated_at = self.clock.now()
            return {'success': True, 'medication': medication}

        return self._commit('update_medication', work)

    def archive_medication(self, medication_id: str) -> Dict:
        """Soft-delete a medication; its ledger and batches stay."""
        return self._set_archived(medication_id, True)

    def restore_medication(self, medication_id: str) -> Dict:
        return self._set_archived(medication_id, False)

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        return self.session.get(Supplier, supplier_id)

    def create_supplier(self, name: str, **fields) -> Dict:
        """Register a supplier."""
        def work():
            self._check_fields(fields, CREATE_SUPPLIER_FIELDS)
            now = self.clock.now()
            supplier = Supplier(
                id=fields.pop('id', None) or generate_id('sup'),
                name=name,
                is_active=True,
                created_at=now,
                updated_at=now,
                **fields
            )
            self._raise_on_errors(validate_supplier(supplier))
            self.session.add(supplier)
            return {'success': True, 'supplier': supplier}

        return self._commit('create_supplier', work)

    def update_supplier(self, supplier_id: str, **fields) -> Dict:
        def work():
            supplier = self._require_supplier(supplier_id)
            self._check_fields(fields, SUPPLIER_FIELDS)
            for key, value in fields.items():
                setattr(supplier, key, value)
            self._raise_on_errors(validate_supplier(supplier))
            supplier.updated_at = self.clock.now()
            return {'success': True, 'supplier': supplier}

        return self._commit('update_supplier', work)

    def deactivate_supplier(self, supplier_id: str) -> Dict:
        """Deactivate a supplier; it is no longer recommended for reorders."""
        def work():
            supplier = self._require_supplier(supplier_id)
            supplier.is_active = False
            supplier.updated_at = self.clock.now()
            return {'success': True, 'supplier': supplier}

        return self._commit('deactivate_supplier', work)

    def _set_archived(self, medication_id: str, archived: bool) -> Dict:
        def work():
            medication = self._require_medication(medication_id)
            medication.is_archived = archived
            medication.updated_at = self.clock.now()
            return {'success': True, 'medication': medication}

        return self._commit('archive_medication' if archived else 'restore_medication', work)

    def _require_medication(self, medication_id: str) -> Medication:
        medication = self.get_medication(medication_id)
        if medication is None:
            raise UnknownMedicationError(
                f"Medication {medication_id} not found",
                details={'medication_id': medication_id}
            )
        return medication

    def _require_supplier(self, supplier_id: str) -> Supplier:
        supplier = self.get_supplier(supplier_id)
        if supplier is None:
            raise UnknownSupplierError(
                f"Supplier {supplier_id} not found",
                details={'supplier_id': supplier_id}
            )
        return supplier

    @staticmethod
    def _check_fields(fields: Dict, allowed: tuple) -> None:
        unknown = sorted(key for key in fields if key not in allowed)
        if 'current_stock' in unknown:
            raise ValidationError(
                "current_stock changes only through stock movements",
                details={'field': 'current_stock'}
            )
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}", details={'fields': unknown})

    @staticmethod
    def _raise_on_errors(errors: Dict[str, str]) -> None:
        if errors:
            raise ValidationError("Validation failed", details=errors)

    def _commit(self, operation: str, work) -> Dict:
        try:
            result = work()
            self.session.commit()
            return result
        except InventoryError as e:
            self.session.rollback()
            logger.warning(f"{operation} rejected: {e}")
            return e.to_result()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"{operation} failed: {str(e)}")
            return DatabaseError(f"{operation} failed: {str(e)}").to_result()
