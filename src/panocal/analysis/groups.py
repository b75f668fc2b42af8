from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from panocal.analysis.grid import Grid, Pair
from panocal.analysis.neighborhood import Neighborhood, aggregate_neighborhood, compute_pair_neighborhoods
from panocal.config import NeighborhoodConfig
from panocal.core.geometry import GeometrySnapshot
from panocal.core.records import ControlPoint, Orientation
from panocal.core.stats import calculate_average, calculate_average_and_std

logger = logging.getLogger(__name__)


class NoNeighborhoodsError(RuntimeError):
    pass


@dataclass(frozen=True, eq=False)
class NeighborhoodGroup:
    """An aggregate neighborhood: control points of every pair sharing a consistent offset distance."""

    neighborhood: Neighborhood

    @property
    def center(self) -> Neighborhood:
        return self.neighborhood.center  # type: ignore[return-value]

    @property
    def control_points(self) -> tuple[ControlPoint, ...]:
        return self.neighborhood.members

    @property
    def neighborhoods(self) -> tuple[Neighborhood, ...]:
        return self.neighborhood.accepted

    @property
    def count(self) -> int:
        return self.neighborhood.count

    @property
    def dist_avg(self) -> float:
        return self.neighborhood.dist_avg

    @property
    def dist_std(self) -> float:
        return self.neighborhood.dist_std

    @property
    def x_avg(self) -> float:
        return self.neighborhood.x_avg

    @property
    def y_avg(self) -> float:
        return self.neighborhood.y_avg

    def serialize(self) -> dict[str, float]:
        cps = self.control_points
        return {
            "dist_avg": self.dist_avg,
            "dist_std": self.dist_std,
            "x_avg": self.x_avg,
            "y_avg": self.y_avg,
            "cp_count": float(len(cps)),
            "neighborhood_count": float(len(self.neighborhoods)),
            "delta_cp_x": calculate_average([cp.x2 - cp.x1 for cp in cps], ignore_empty=True),
            "delta_cp_y": calculate_average([cp.y2 - cp.y1 for cp in cps], ignore_empty=True),
        }


@dataclass(frozen=True)
class OrientationAnalysis:
    orientation: Orientation
    pairs: tuple[Pair, ...]
    neighborhoods: tuple[Neighborhood, ...]
    similar: tuple[Neighborhood, ...]
    groups: tuple[NeighborhoodGroup, ...]
    min_count: int

    @property
    def best(self) -> NeighborhoodGroup:
        return self.groups[0]

    def top(self, n: int) -> tuple[NeighborhoodGroup, ...]:
        return self.groups[:n]

    @property
    def total_control_points(self) -> int:
        return sum(len(p.control_points) for p in self.pairs)


@dataclass(frozen=True)
class AnalysisContext:
    """Everything one analysis pass derived from a snapshot; rebuilt, never updated."""

    snapshot: GeometrySnapshot
    grid: Grid
    config: NeighborhoodConfig
    horizontal: OrientationAnalysis
    vertical: OrientationAnalysis

    def orientation(self, orientation: Orientation) -> OrientationAnalysis:
        if orientation == "horizontal":
            return self.horizontal
        if orientation == "vertical":
            return self.vertical
        raise ValueError(f"unknown orientation {orientation!r}")


def select_similar(neighborhoods: Sequence[Neighborhood], count: int) -> tuple[Neighborhood, ...]:
    """Neighborhoods whose distance reference holds at least `count` control points."""
    return tuple(n for n in neighborhoods if n.reference is not None and n.reference.count >= count)


def std_outlier_reduction(neighborhoods: Sequence[Neighborhood], passes: int = 2) -> tuple[Neighborhood, ...]:
    """
    Drop neighborhoods whose `dist_std` is more than one std away from the mean `dist_std`.

    Each pass works on the output of the previous one. Never grows the set.
    """
    kept = tuple(neighborhoods)
    for i in range(passes):
        if not kept:
            break
        avg, std = calculate_average_and_std([n.dist_std for n in kept])
        reduced = tuple(n for n in kept if abs(avg - n.dist_std) <= std)
        logger.debug("std reduction pass %d: %d -> %d neighborhoods", i + 1, len(kept), len(reduced))
        kept = reduced
    return kept


def analyze_orientation(
    pairs: Sequence[Pair],
    orientation: Orientation,
    config: NeighborhoodConfig | None = None,
) -> OrientationAnalysis:
    config = config or NeighborhoodConfig()
    pairs = tuple(p for p in pairs if p.type == orientation)
    neighborhoods = tuple(n for pair in pairs for n in compute_pair_neighborhoods(pair, config))

    min_count = config.min_count
    similar = select_similar(neighborhoods, min_count)
    if not similar and config.fallback_min_count != min_count:
        logger.warning(
            "no %s neighborhoods with at least %d control points, retrying with %d",
            orientation,
            min_count,
            config.fallback_min_count,
        )
        min_count = config.fallback_min_count
        similar = select_similar(neighborhoods, min_count)
    if not similar:
        raise NoNeighborhoodsError(
            f"no {orientation} neighborhoods found ({len(pairs)} pairs, {len(neighborhoods)} candidate neighborhoods)"
        )

    logger.debug("reducing %s neighborhood std outliers", orientation)
    reduced = std_outlier_reduction(similar, config.reduction_passes)

    aggregates = [aggregate_neighborhood(n, reduced, config.offset_metric) for n in reduced]
    groups = tuple(NeighborhoodGroup(n) for n in sorted(aggregates, key=lambda n: -n.count))
    for group in groups[: config.top_groups]:
        logger.debug(
            "%s group dist %s,%s count %d x%s y%s",
            orientation,
            group.dist_avg,
            group.dist_std,
            group.count,
            group.x_avg,
            group.y_avg,
        )

    return OrientationAnalysis(
        orientation=orientation,
        pairs=pairs,
        neighborhoods=neighborhoods,
        similar=reduced,
        groups=groups,
        min_count=min_count,
    )


def analyze(snapshot: GeometrySnapshot, config: NeighborhoodConfig | None = None) -> AnalysisContext:
    """
    Cluster both orientations of `snapshot`.

    Raises `NoNeighborhoodsError` if either orientation ends up without a group.
    """
    config = config or NeighborhoodConfig()
    grid = Grid.build(snapshot.images, snapshot.control_points)
    return AnalysisContext(
        snapshot=snapshot,
        grid=grid,
        config=config,
        horizontal=analyze_orientation(grid.horizontal, "horizontal", config),
        vertical=analyze_orientation(grid.vertical, "vertical", config),
    )
