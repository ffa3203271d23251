# pharmacy_inventory/utils/identifiers.py
import random
import uuid
from datetime import datetime
from typing import Optional


def generate_id(prefix: str = 'id') -> str:
    """Generate a stable record id such as 'mov-3f2a...'."""
    return f"{prefix}-{uuid.uuid4().hex}"


def generate_po_number(moment: Optional[datetime] = None) -> str:
    """Purchase order number in the form POYYYYMMNNNN."""
    moment = moment or datetime.now()
    return f"PO{moment.year}{moment.month:02d}{random.randint(0, 9999):04d}"


def generate_batch_number(moment: Optional[datetime] = None) -> str:
    """Batch number in the form BATCH-YYYYMMDD-NNN."""
    moment = moment or datetime.now()
    return f"BATCH-{moment:%Y%m%d}-{random.randint(0, 999):03d}"
