# pharmacy_inventory/core/fefo.py
from datetime import date
from typing import List, Tuple

from ..models import BatchStatus
from ..utils.date_utils import convert_to_date
from .expiry import classify_batch, DEFAULT_WARNING_DAYS


def is_allocatable(batch, today: date, warning_days: int = DEFAULT_WARNING_DAYS) -> bool:
    """A batch is allocatable iff it classifies as ACTIVE and holds stock."""
    if not batch.quantity or batch.quantity <= 0:
        return False
    return classify_batch(batch.expiry_date, today, warning_days) == BatchStatus.ACTIVE


def get_available_batches(
    batches: List,
    today: date,
    warning_days: int = DEFAULT_WARNING_DAYS
) -> List:
    """Filter batches down to the allocatable ones."""
    return [batch for batch in batches if is_allocatable(batch, today, warning_days)]


def sort_batches_fefo(batches: List) -> List:
    """Sort batches earliest expiry first, ties broken by batch id."""
    return sorted(batches, key=lambda batch: (convert_to_date(batch.expiry_date), str(batch.id)))


def allocate_fefo(
    batches: List,
    requested_quantity: int,
    today: date,
    warning_days: int = DEFAULT_WARNING_DAYS
) -> List[Tuple[object, int]]:
    """Allocate a quantity across batches, first expired first out.

    The allocation is a pure query: no batch is modified.

    Args:
        batches: Candidate batches (ineligible ones are ignored)
        requested_quantity: Quantity to allocate
        today: Current date for eligibility
        warning_days: Near-expiry window

    Returns:
        List of (batch, allocated_quantity) pairs. The sum can fall short of
        the request; see calculate_shortfall.
    """
    allocations = []
    remaining = requested_quantity

    for batch in sort_batches_fefo(get_available_batches(batches, today, warning_days)):
        if remaining <= 0:
            break

        take = min(batch.quantity, remaining)
        allocations.append((batch, take))
        remaining -= take

    return allocations


def allocated_quantity(allocations: List[Tuple[object, int]]) -> int:
    return sum(quantity for _, quantity in allocations)


def calculate_shortfall(allocations: List[Tuple[object, int]], requested_quantity: int) -> int:
    """Quantity of the request the allocation could not cover."""
    return max(0, requested_quantity - allocated_quantity(allocations))


def total_available_stock(
    batches: List,
    today: date,
    warning_days: int = DEFAULT_WARNING_DAYS
) -> int:
    """Sum of quantities over allocatable batches."""
    return sum(batch.quantity for batch in get_available_batches(batches, today, warning_days))


def has_enough_stock(
    batches: List,
    requested_quantity: int,
    today: date,
    warning_days: int = DEFAULT_WARNING_DAYS
) -> bool:
    """Fast pre-check before attempting an allocation."""
    return total_available_stock(batches, today, warning_days) >= requested_quantity
