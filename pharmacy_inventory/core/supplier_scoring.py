# pharmacy_inventory/core/supplier_scoring.py
from typing import Dict, List, Optional

from ..models import PurchaseOrderStatus
from ..utils.date_utils import convert_to_date, days_between
from ..utils.math_utils import round_half_up, clamp, mean_or_zero, safe_ratio

MAX_QUALITY_SCORE = 5
MIN_QUALITY_SCORE = 1

# (threshold, penalty) pairs; each crossed threshold costs one point
FULFILLMENT_PENALTIES = ((80, 1), (60, 1))
DEVIATION_PENALTIES = ((7, 1), (14, 1))


def is_completed(order) -> bool:
    return order.status == PurchaseOrderStatus.RECEIVED


def delivery_deviation(order) -> Optional[int]:
    """Absolute days between expected and actual delivery, None if either is missing."""
    expected = convert_to_date(order.expected_delivery_date)
    actual = convert_to_date(order.actual_delivery_date)

    if expected is None or actual is None:
        return None

    return abs(days_between(expected, actual))


def calculate_average_delivery_deviation(orders: List) -> int:
    """Average delivery deviation in whole days.

    Orders without both dates are left out of the average rather than
    counted as zero.
    """
    deviations = [
        deviation for deviation in (delivery_deviation(order) for order in orders)
        if deviation is not None
    ]

    return round_half_up(mean_or_zero(deviations))


def calculate_fulfillment_rate(orders: List) -> int:
    """Received over ordered quantity across completed orders, as a whole percent."""
    ordered = 0
    received = 0

    for order in orders:
        if not is_completed(order):
            continue
        for item in order.items:
            ordered += item.ordered_quantity or 0
            received += item.received_quantity or 0

    return round_half_up(safe_ratio(received, ordered) * 100)


def calculate_quality_score(fulfillment_rate: float, average_deviation: float) -> int:
    """Deterministic 1-5 reliability score.

    Starts at 5 and loses a point for each of: fulfillment below 80%,
    below 60%, deviation above 7 days, above 14 days.
    """
    score = MAX_QUALITY_SCORE

    for threshold, penalty in FULFILLMENT_PENALTIES:
        if fulfillment_rate < threshold:
            score -= penalty

    for threshold, penalty in DEVIATION_PENALTIES:
        if average_deviation > threshold:
            score -= penalty

    return int(clamp(score, MIN_QUALITY_SCORE, MAX_QUALITY_SCORE))


def empty_performance(supplier_id: str, supplier_name: Optional[str]) -> Dict:
    """Zero-valued performance record for a supplier without orders."""
    return {
        'supplier_id': supplier_id,
        'supplier_name': supplier_name,
        'total_orders': 0,
        'completed_orders': 0,
        'average_delivery_deviation': 0,
        'order_fulfillment_rate': 0,
        'quality_score': 0,
        'total_value': 0.0,
        'last_order_date': None
    }


def calculate_performance(supplier_id: str, supplier_name: Optional[str], orders: List) -> Dict:
    """Aggregate a supplier's purchase-order history into a performance record.

    Args:
        supplier_id: Supplier id
        supplier_name: Supplier display name
        orders: Every historical purchase order of the supplier

    Returns:
        Dictionary with order counts, average delivery deviation (days),
        fulfillment rate (%), quality score (1-5), total value and last
        order date
    """
    if not orders:
        return empty_performance(supplier_id, supplier_name)

    completed = [order for order in orders if is_completed(order)]
    average_deviation = calculate_average_delivery_deviation(orders)
    fulfillment_rate = calculate_fulfillment_rate(orders)
    order_dates = [order.order_date for order in orders if order.order_date is not None]

    return {
        'supplier_id': supplier_id,
        'supplier_name': supplier_name,
        'total_orders': len(orders),
        'completed_orders': len(completed),
        'average_delivery_deviation': average_deviation,
        'order_fulfillment_rate': fulfillment_rate,
        'quality_score': calculate_quality_score(fulfillment_rate, average_deviation),
        'total_value': float(sum(order.total or 0.0 for order in orders)),
        'last_order_date': max(order_dates) if order_dates else None
    }


def rank_performance(performances: List[Dict]) -> List[Dict]:
    """Sort performance records by quality score, best first."""
    return sorted(performances, key=lambda perf: (-perf['quality_score'], str(perf['supplier_id'])))
