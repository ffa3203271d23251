# pharmacy_inventory/utils/math_utils.py
import math
from typing import List, Union

import numpy as np


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (6.5 -> 7)."""
    return int(math.floor(value + 0.5))


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning default when the denominator is zero."""
    if not denominator:
        return default
    return numerator / denominator


def mean_or_zero(values: List[Union[int, float]]) -> float:
    """Arithmetic mean of values, 0.0 for an empty list."""
    if not values:
        return 0.0
    return float(np.mean(values))


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))
