from .expiry import (
    days_until_expiry, classify_batch, alert_priority, build_alert_candidates, sort_alerts
)
from .fefo import (
    is_allocatable, get_available_batches, sort_batches_fefo, allocate_fefo, allocated_quantity,
    calculate_shortfall, total_available_stock, has_enough_stock
)
from .ledger import calculate_stock_after, movement_delta, replay_movements, verify_movement_chain
from .supplier_scoring import calculate_performance, calculate_quality_score, rank_performance
from .reorder import (
    calculate_suggested_quantity, reorder_priority, supplier_selection_score, select_best_supplier
)

__all__ = [
    'days_until_expiry',
    'classify_batch',
    'alert_priority',
    'build_alert_candidates',
    'sort_alerts',
    'is_allocatable',
    'get_available_batches',
    'sort_batches_fefo',
    'allocate_fefo',
    'allocated_quantity',
    'calculate_shortfall',
    'total_available_stock',
    'has_enough_stock',
    'calculate_stock_after',
    'movement_delta',
    'replay_movements',
    'verify_movement_chain',
    'calculate_performance',
    'calculate_quality_score',
    'rank_performance',
    'calculate_suggested_quantity',
    'reorder_priority',
    'supplier_selection_score',
    'select_best_supplier'
]
