from __future__ import annotations

from typing import Iterable, List

import numpy as np


class PercentileAccumulator:
    """Collects samples and reports linearly interpolated percentiles.

    Samples are kept as-is; ``percentile`` sorts a copy, so querying is
    repeatable and independent of the order in which values were added.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Iterable[float] | None = None) -> None:
        self._values: List[float] = []
        if values is not None:
            self.extend(values)

    def add(self, value: float) -> None:
        self._values.append(float(value))

    def extend(self, values: Iterable[float]) -> None:
        self._values.extend(float(v) for v in values)

    def __len__(self) -> int:
        return len(self._values)

    def percentile(self, p: float) -> float:
        p = float(p)
        if not 0.0 <= p <= 1.0:
            raise ValueError(f"Percentile must be within [0, 1], got {p}")
        if not self._values:
            return float("nan")
        return float(np.quantile(np.asarray(self._values, dtype=float), p))
