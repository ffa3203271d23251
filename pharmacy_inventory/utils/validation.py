from typing import Any, Dict, Optional, Tuple

from pharmacy_inventory.models import Medication, Supplier, PurchaseOrder
from pharmacy_inventory.exceptions import ValidationError

def validate_medication(medication: Medication) -> Dict[str, str]:
    """Validate a medication.

    Args:
        medication: Medication to validate

    Returns:
        Dictionary with validation errors
    """
    errors = {}

    if not medication.name:
        errors['name'] = 'Medication name is required'

    if medication.minimum_stock is not None and medication.minimum_stock < 0:
        errors['minimum_stock'] = 'Minimum stock cannot be negative'

    if medication.purchase_price is not None and medication.purchase_price < 0:
        errors['purchase_price'] = 'Purchase price cannot be negative'

    if medication.sale_price is not None and medication.sale_price < 0:
        errors['sale_price'] = 'Sale price cannot be negative'

    return errors

def validate_supplier(supplier: Supplier) -> Dict[str, str]:
    """Validate a supplier.

    Args:
        supplier: Supplier to validate

    Returns:
        Dictionary with validation errors
    """
    errors = {}

    if not supplier.name:
        errors['name'] = 'Supplier name is required'

    return errors

def validate_purchase_order(order: PurchaseOrder) -> Dict[str, str]:
    """Validate a purchase order.

    Args:
        order: Purchase order to validate

    Returns:
        Dictionary with validation errors
    """
    errors = {}

    if not order.supplier_id:
        errors['supplier_id'] = 'Supplier ID is required'

    if not order.items:
        errors['items'] = 'At least one item is required'

    for index, item in enumerate(order.items or []):
        if not item.medication_id:
            errors[f'items[{index}].medication_id'] = 'Medication ID is required'
        if not item.ordered_quantity or item.ordered_quantity <= 0:
            errors[f'items[{index}].ordered_quantity'] = 'Ordered quantity must be positive'

    return errors

def validate_quantity(quantity: Any, field: str = 'quantity') -> int:
    """Check that quantity is a positive integer.

    Raises:
        ValidationError if it is not
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(
            f"{field} must be a positive integer, got {quantity!r}",
            details={'field': field, 'value': repr(quantity)}
        )
    return quantity

def resolve_actor(actor: Any) -> Tuple[str, Optional[str]]:
    """Extract (actor_id, actor_name) from a mapping or an object.

    Raises:
        ValidationError when no actor id is available
    """
    if actor is None:
        raise ValidationError("An actor is required for stock movements")

    if isinstance(actor, dict):
        actor_id = actor.get('id')
        actor_name = actor.get('name')
    else:
        actor_id = getattr(actor, 'id', None)
        actor_name = getattr(actor, 'name', None)

    if not actor_id:
        raise ValidationError("Actor id is required for stock movements")

    return str(actor_id), actor_name
