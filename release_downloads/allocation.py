"""
Total Allocator
Splits an integer total across days so the parts sum back to it exactly.
"""

from typing import List, Optional, Sequence

import numpy as np


def distribute_even(total: int, num_days: int) -> List[int]:
    """
    Split `total` evenly over `num_days`

    Every day gets total // num_days and the remainder (total mod num_days)
    goes one unit at a time to the earliest days. Floor semantics keep this
    exact for negative totals too.
    """
    if num_days <= 0:
        return []
    base, remainder = divmod(int(total), num_days)
    return [base + (1 if i < remainder else 0) for i in range(num_days)]


def scale_to_total(shape: Sequence[float], target: int) -> Optional[List[int]]:
    """
    Scale a non-negative shape to integers summing exactly to `target`

    Largest remainder rounding: floor every proportional share, then hand the
    missing units to the largest fractional parts (ties in index order).
    Negative weights count as zero. Returns None when the shape carries no
    weight and there is something to distribute.
    """
    target = int(target)
    if target < 0:
        raise ValueError(f"Cannot scale a shape to a negative total ({target})")

    weights = np.clip(np.asarray(shape, dtype=float), 0.0, None)
    n = len(weights)
    if n == 0:
        return []
    if target == 0:
        return [0] * n

    weight_total = weights.sum()
    if not np.isfinite(weight_total) or weight_total <= 0:
        return None

    raw = weights / weight_total * target
    floors = np.floor(raw)
    result = floors.astype(np.int64)
    remainder = target - int(result.sum())

    # Stable sort on the negated fraction: largest first, ties by position
    order = np.argsort(-(raw - floors), kind="stable")
    for idx in order[:max(remainder, 0)]:
        result[idx] += 1

    return [int(v) for v in result]
