# pharmacy_inventory/core/reorder.py
from typing import Dict, List, Optional

from ..models import Priority

HIGH_PRIORITY_RATIO = 0.3
MEDIUM_PRIORITY_RATIO = 0.7


def effective_minimum_stock(medication, default_threshold: int) -> int:
    """Medication reorder threshold, falling back to the configured default."""
    if medication.minimum_stock is None:
        return default_threshold
    return medication.minimum_stock


def stock_ratio(current_stock: int, minimum_stock: int) -> float:
    """current / minimum; an unset minimum never makes a medication low."""
    if minimum_stock <= 0:
        return float('inf')
    return current_stock / minimum_stock


def is_low_stock(current_stock: int, minimum_stock: int) -> bool:
    return minimum_stock > 0 and current_stock <= minimum_stock


def calculate_suggested_quantity(current_stock: int, minimum_stock: int) -> int:
    """Order enough to restore at least twice the minimum threshold."""
    return max(2 * minimum_stock, (minimum_stock - current_stock) + minimum_stock)


def reorder_priority(current_stock: int, minimum_stock: int) -> Priority:
    ratio = stock_ratio(current_stock, minimum_stock)

    if ratio <= HIGH_PRIORITY_RATIO:
        return Priority.HIGH
    if ratio <= MEDIUM_PRIORITY_RATIO:
        return Priority.MEDIUM
    return Priority.LOW


def supplier_selection_score(performance: Dict) -> float:
    """quality x 10 + fulfillment / 10 - deviation / 2."""
    return (
        performance['quality_score'] * 10
        + performance['order_fulfillment_rate'] / 10
        - performance['average_delivery_deviation'] / 2
    )


def select_best_supplier(candidates: List[Dict]) -> Optional[Dict]:
    """Pick the highest scoring candidate.

    Args:
        candidates: Dictionaries holding at least 'supplier_id' and
            'performance'

    Returns:
        Winning candidate (ties go to the lowest supplier id) or None
    """
    if not candidates:
        return None

    return min(
        candidates,
        key=lambda candidate: (-supplier_selection_score(candidate['performance']), str(candidate['supplier_id']))
    )
