from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

MeasureKind = Literal["position", "distance"]


@dataclass(frozen=True)
class Measure:
    """
    Tolerance window over one or more independent axes.

    A value vector is included iff every axis lies within its half-width of the center
    (bounds inclusive). Position windows use two axes (x, y around a candidate pixel);
    distance windows use one (a mean offset distance).
    """

    kind: MeasureKind
    center: tuple[float, ...]
    distances: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.center) != len(self.distances):
            raise ValueError("measure center and distances must have the same number of axes")
        if any(d < 0 for d in self.distances):
            raise ValueError("measure half-widths must be >= 0")

    @classmethod
    def position(cls, x: float, y: float, dx: float, dy: float) -> "Measure":
        return cls(kind="position", center=(float(x), float(y)), distances=(float(dx), float(dy)))

    @classmethod
    def distance(cls, value: float, half_width: float) -> "Measure":
        return cls(kind="distance", center=(float(value),), distances=(float(half_width),))

    @property
    def is_position(self) -> bool:
        return self.kind == "position"

    @property
    def is_distance(self) -> bool:
        return self.kind == "distance"

    def includes(self, *values: float) -> bool:
        if len(values) != len(self.center):
            raise ValueError(f"expected {len(self.center)} values, got {len(values)}")
        return all(abs(c - float(v)) <= d for c, v, d in zip(self.center, values, self.distances))

    def mask(self, *axes: np.ndarray) -> np.ndarray:
        """Vectorized `includes` over per-axis arrays of equal length."""
        if len(axes) != len(self.center):
            raise ValueError(f"expected {len(self.center)} axes, got {len(axes)}")
        arrays = [np.asarray(a, dtype=np.float64).reshape(-1) for a in axes]
        out = np.ones(arrays[0].shape, dtype=bool)
        for arr, c, d in zip(arrays, self.center, self.distances):
            out &= np.abs(c - arr) <= d
        return out

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "center": list(self.center), "distances": list(self.distances)}
