"""
Local clusters of geometrically consistent control points.

A neighborhood is computed inside one of two scopes:

- `PairScope`: candidates are one pair's (non-generated) control points. A *position*
  neighborhood keeps the points whose `(x1, y1)` falls in a window around the center
  point; its `reference` is the *distance* neighborhood of points whose offset distance
  lies within the position neighborhood's `dist_std` of the center's offset distance.
- `AggregateScope`: candidates are the similar pair-scoped neighborhoods of one
  orientation. Those whose `dist_avg` lies within the center's `dist_std` are accepted
  and the members are the union of their references' members.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, Sequence, Union

import numpy as np

from panocal.analysis.grid import Pair
from panocal.config import NeighborhoodConfig, OffsetMetric, WindowOverride
from panocal.core.measure import Measure
from panocal.core.records import ControlPoint, Orientation, unique_by_identity
from panocal.core.stats import calculate_average_and_std

# Control point fields holding (distance, x, y) of the offset, per metric.
OFFSET_FIELDS: dict[str, tuple[str, str, str]] = {
    "roll_corrected": ("prdist", "prx", "pry"),
    "planar": ("pdist", "px", "py"),
}


@dataclass(frozen=True, eq=False)
class PairScope:
    pair: Pair
    kind: Literal["pair"] = "pair"

    @property
    def orientation(self) -> Orientation:
        return self.pair.type


@dataclass(frozen=True, eq=False)
class AggregateScope:
    orientation: Orientation
    candidates: tuple["Neighborhood", ...]
    kind: Literal["aggregate"] = "aggregate"


Scope = Union[PairScope, AggregateScope]


@dataclass(frozen=True, eq=False)
class Neighborhood:
    center: Union[ControlPoint, "Neighborhood"]
    scope: Scope
    measure: Measure
    members: tuple[ControlPoint, ...]
    dist_avg: float
    dist_std: float
    x_avg: float
    x_std: float
    y_avg: float
    y_std: float
    accepted: tuple["Neighborhood", ...] = ()
    reference: "Neighborhood | None" = None

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def orientation(self) -> Orientation:
        return self.scope.orientation

    @property
    def is_position(self) -> bool:
        return self.measure.is_position

    @property
    def is_distance(self) -> bool:
        return self.measure.is_distance

    def to_dict(self) -> dict[str, float]:
        return {
            "dist_avg": self.dist_avg,
            "dist_std": self.dist_std,
            "x_avg": self.x_avg,
            "x_std": self.x_std,
            "y_avg": self.y_avg,
            "y_std": self.y_std,
            "count": float(self.count),
        }

    def info(self) -> str:
        where = (
            f"({self.center.x1},{self.center.y1})" if isinstance(self.center, ControlPoint) else f"dist {self.center.dist_avg}"
        )
        return (
            f"neighborhood {self.scope.kind}/{self.measure.kind} center {where} | count {self.count} | "
            f"dist {self.dist_avg},{self.dist_std} | x {self.x_avg},{self.x_std} | y {self.y_avg},{self.y_std}"
        )


def offset_values(control_points: Sequence[ControlPoint], metric: OffsetMetric) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    fields = OFFSET_FIELDS[metric]
    return tuple(  # type: ignore[return-value]
        np.asarray([getattr(cp, name) for cp in control_points], dtype=np.float64) for name in fields
    )


def offset_distance(cp: ControlPoint, metric: OffsetMetric) -> float:
    return float(getattr(cp, OFFSET_FIELDS[metric][0]))


def position_window(pair: Pair, config: NeighborhoodConfig) -> tuple[float, float]:
    """
    Half-widths `(dx, dy)` of the position window for `pair`.

    Horizontal pairs constrain y to a fraction of the first image's height; vertical
    pairs constrain x to a fraction of its width. The free axis uses `default_distance`.
    Orientation-specific overrides win over global ones, which win over the defaults.
    """
    first = pair.first_image
    if pair.is_horizontal:
        dx = float(config.default_distance)
        dy = float(round(config.constrained_fraction * first.h))
        specific = config.distances_horizontal
    else:
        dx = float(round(config.constrained_fraction * first.w))
        dy = float(config.default_distance)
        specific = config.distances_vertical

    for override in (config.distances, specific):
        dx, dy = _apply_override(override, dx, dy)
    return dx, dy


def _apply_override(override: WindowOverride, dx: float, dy: float) -> tuple[float, float]:
    return (
        dx if override.x is None else float(override.x),
        dy if override.y is None else float(override.y),
    )


def compute_neighborhood(
    center: Union[ControlPoint, Neighborhood],
    scope: Scope,
    measure: Measure,
    metric: OffsetMetric = "roll_corrected",
) -> Neighborhood:
    accepted: tuple[Neighborhood, ...] = ()
    if scope.kind == "pair":
        candidates = scope.pair.control_points
        if measure.is_position:
            axes = (
                np.asarray([cp.x1 for cp in candidates], dtype=np.float64),
                np.asarray([cp.y1 for cp in candidates], dtype=np.float64),
            )
        else:
            axes = (offset_values(candidates, metric)[0],)
        members = tuple(cp for cp, keep in zip(candidates, measure.mask(*axes)) if keep)
    elif scope.kind == "aggregate":
        accepted = tuple(n for n in scope.candidates if measure.includes(n.dist_avg))
        members = unique_by_identity(cp for n in accepted if n.reference is not None for cp in n.reference.members)
    else:
        raise ValueError(f"unknown neighborhood scope {scope.kind!r}")

    dist, xs, ys = offset_values(members, metric)
    dist_avg, dist_std = calculate_average_and_std(dist, ignore_empty=True)
    x_avg, x_std = calculate_average_and_std(xs, ignore_empty=True)
    y_avg, y_std = calculate_average_and_std(ys, ignore_empty=True)
    return Neighborhood(
        center=center,
        scope=scope,
        measure=measure,
        members=members,
        dist_avg=dist_avg,
        dist_std=dist_std,
        x_avg=x_avg,
        x_std=x_std,
        y_avg=y_avg,
        y_std=y_std,
        accepted=accepted,
    )


def compute_pair_neighborhoods(pair: Pair, config: NeighborhoodConfig | None = None) -> tuple[Neighborhood, ...]:
    """One position neighborhood (with its distance `reference`) per control point of `pair`."""
    config = config or NeighborhoodConfig()
    metric = config.offset_metric
    scope = PairScope(pair)
    dx, dy = position_window(pair, config)

    out: list[Neighborhood] = []
    for cp in pair.control_points:
        position = compute_neighborhood(cp, scope, Measure.position(cp.x1, cp.y1, dx, dy), metric)
        distance = compute_neighborhood(
            cp, scope, Measure.distance(offset_distance(cp, metric), position.dist_std), metric
        )
        out.append(replace(position, reference=distance))
    return tuple(out)


def aggregate_neighborhood(
    center: Neighborhood,
    candidates: Sequence[Neighborhood],
    metric: OffsetMetric = "roll_corrected",
) -> Neighborhood:
    scope = AggregateScope(orientation=center.orientation, candidates=tuple(candidates))
    return compute_neighborhood(center, scope, Measure.distance(center.dist_avg, center.dist_std), metric)

