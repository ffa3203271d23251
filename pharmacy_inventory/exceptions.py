class InventoryError(Exception):
    """Base exception for the Pharmacy Inventory core."""

    default_message = "An error occurred in the pharmacy inventory core"
    default_code = None

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Machine-checkable error kind
            details: Additional error details
        """
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        """String representation of the error."""
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a dictionary."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict

    def to_result(self):
        """Convert the exception to a failed operation result."""
        result = {'success': False}
        result.update(self.to_dict())
        return result


class ConfigError(InventoryError):
    """Exception raised for configuration errors."""

    default_message = "Configuration error"
    default_code = 'CONFIG_ERROR'


class DatabaseError(InventoryError):
    """Exception raised for database-related errors."""

    default_message = "Database error"
    default_code = 'DATABASE_ERROR'


class StoreError(InventoryError):
    """Exception raised by the collection record store."""

    default_message = "Record store error"
    default_code = 'STORE_ERROR'


class ValidationError(InventoryError):
    """Exception raised for data validation errors."""

    default_message = "Validation error"
    default_code = 'VALIDATION_ERROR'


class InsufficientStockError(InventoryError):
    """Raised when an outgoing movement exceeds the available stock."""

    default_message = "Insufficient stock"
    default_code = 'INSUFFICIENT_STOCK'


class NoEligibleBatchesError(InventoryError):
    """Raised when an allocation finds no allocatable batch."""

    default_message = "No eligible batches"
    default_code = 'NO_ELIGIBLE_BATCHES'


class NotFoundError(InventoryError):
    """Exception raised when a requested record is not found."""

    default_message = "Record not found"
    default_code = 'NOT_FOUND'


class UnknownMedicationError(NotFoundError):
    """Raised when a medication id is not in the catalog."""

    default_message = "Unknown medication"
    default_code = 'UNKNOWN_MEDICATION'


class UnknownSupplierError(NotFoundError):
    """Raised when a supplier id is not registered."""

    default_message = "Unknown supplier"
    default_code = 'UNKNOWN_SUPPLIER'


class UnknownRecordError(NotFoundError):
    """Raised for unknown alerts, suggestions, batches and purchase orders."""


class JobError(InventoryError):
    """Exception raised for scheduled job errors."""

    default_message = "Job error"
    default_code = 'JOB_ERROR'
