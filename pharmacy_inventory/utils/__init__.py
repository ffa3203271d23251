from .date_utils import SystemClock, FixedClock, convert_to_date, days_between
from .math_utils import round_half_up, safe_ratio
from .locks import KeyedLock, medication_locks
from .identifiers import generate_id, generate_po_number
from .validation import validate_medication, validate_supplier, validate_purchase_order

__all__ = [
    'SystemClock',
    'FixedClock',
    'convert_to_date',
    'days_between',
    'round_half_up',
    'safe_ratio',
    'KeyedLock',
    'medication_locks',
    'generate_id',
    'generate_po_number',
    'validate_medication',
    'validate_supplier',
    'validate_purchase_order'
]
