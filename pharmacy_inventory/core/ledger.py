# pharmacy_inventory/core/ledger.py
from typing import Dict, Iterable, List, Optional

from ..models import MovementKind
from ..exceptions import InsufficientStockError, ValidationError


def calculate_stock_after(
    stock_before: int,
    quantity: int,
    kind: MovementKind,
    direction: Optional[int] = None
) -> int:
    """Apply one movement to a stock level.

    Args:
        stock_before: Stock before the movement
        quantity: Positive movement quantity
        kind: Movement kind
        direction: +1 or -1, only used by adjustments (default +1)

    Returns:
        Stock after the movement

    Raises:
        InsufficientStockError when an outgoing movement exceeds the stock
    """
    if kind.is_inbound:
        return stock_before + quantity

    if kind == MovementKind.ADJUSTMENT:
        direction = 1 if direction is None else direction
        if direction not in (1, -1):
            raise ValidationError(f"Adjustment direction must be +1 or -1, got {direction}")
        if direction > 0:
            return stock_before + quantity

    if stock_before < quantity:
        raise InsufficientStockError(
            f"Requested {quantity} but only {stock_before} in stock",
            details={
                'requested': quantity,
                'available': stock_before,
                'kind': kind.value
            }
        )

    return stock_before - quantity


def movement_delta(movement) -> int:
    """Signed stock change of a movement."""
    return movement.stock_after - movement.stock_before


def replay_movements(movements: Iterable, initial_stock: int = 0) -> int:
    """Reconstruct stock by replaying movements in order from initial_stock."""
    stock = initial_stock
    for movement in movements:
        stock += movement_delta(movement)
    return stock


def verify_movement_chain(movements: Iterable, initial_stock: int = 0) -> List[Dict]:
    """Check that every entry starts where the previous one ended.

    Returns:
        List of problems; empty for an intact ledger
    """
    problems = []
    running = initial_stock

    for position, movement in enumerate(movements, start=1):
        if movement.stock_before != running:
            problems.append({
                'movement_id': movement.id,
                'position': position,
                'expected_stock_before': running,
                'recorded_stock_before': movement.stock_before
            })

        if abs(movement_delta(movement)) != movement.quantity:
            problems.append({
                'movement_id': movement.id,
                'position': position,
                'quantity': movement.quantity,
                'recorded_delta': movement_delta(movement)
            })

        if movement.stock_after < 0:
            problems.append({
                'movement_id': movement.id,
                'position': position,
                'negative_stock_after': movement.stock_after
            })

        running = movement.stock_after

    return problems
