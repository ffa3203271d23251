from .config import config
from .db import db, session_scope
from .logging_setup import logger, get_logger
from .exceptions import (
    InventoryError, InsufficientStockError, NoEligibleBatchesError,
    UnknownMedicationError, UnknownSupplierError, ValidationError
)

__all__ = [
    'config',
    'db',
    'session_scope',
    'logger',
    'get_logger',
    'InventoryError',
    'InsufficientStockError',
    'NoEligibleBatchesError',
    'UnknownMedicationError',
    'UnknownSupplierError',
    'ValidationError'
]
