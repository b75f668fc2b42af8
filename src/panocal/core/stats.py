from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

logger = logging.getLogger(__name__)


def calculate_average_and_std(
    values: Iterable[float] | np.ndarray,
    *,
    ignore_empty: bool = False,
    name: str | None = None,
) -> tuple[float, float]:
    """
    Mean and sample standard deviation (`n-1` denominator) of `values`.

    - a single value (or a constant set) has std 0.0
    - an empty set raises `ValueError`, unless `ignore_empty` where it yields (0.0, 0.0)
    """
    if not isinstance(values, np.ndarray):
        values = list(values)
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        if ignore_empty:
            return 0.0, 0.0
        raise ValueError("cannot compute average and std of an empty value set")

    if np.all(arr == arr[0]):
        # Exact for constant sets; np.mean may round away from the shared value.
        avg, std = float(arr[0]), 0.0
    else:
        avg = float(np.mean(arr))
        std = float(np.std(arr, ddof=1)) if arr.size > 1 else 0.0

    if name is not None:
        logger.debug("average %s: %s", name, avg)
        logger.debug("%s std: %s", name, std)
    return avg, std


def calculate_average(values: Iterable[float] | np.ndarray, *, ignore_empty: bool = False) -> float:
    avg, _std = calculate_average_and_std(values, ignore_empty=ignore_empty)
    return avg
