from .ledger_service import LedgerService
from .batch_service import BatchService
from .alert_service import (
    ExpiryAlertService, NotificationSink, LoggingNotificationSink, DatabaseNotificationSink
)
from .supplier_service import SupplierService
from .reorder_service import ReorderService, SupplierHistoryPolicy
from .catalog_service import CatalogService
from .purchase_order_service import PurchaseOrderService
from .reporting_service import ReportingService

__all__ = [
    'LedgerService',
    'BatchService',
    'ExpiryAlertService',
    'NotificationSink',
    'LoggingNotificationSink',
    'DatabaseNotificationSink',
    'SupplierService',
    'ReorderService',
    'SupplierHistoryPolicy',
    'CatalogService',
    'PurchaseOrderService',
    'ReportingService'
]
