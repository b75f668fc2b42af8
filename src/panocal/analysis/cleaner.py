from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from panocal.analysis.grid import Grid, Pair
from panocal.analysis.neighborhood import compute_pair_neighborhoods, offset_distance
from panocal.config import CalibrationConfig
from panocal.core.geometry import GeometrySnapshot
from panocal.core.records import ControlPoint, unique_by_identity
from panocal.core.stats import calculate_average

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairCleanResult:
    pair: Pair
    kept: tuple[ControlPoint, ...]
    # Most deviant first.
    discarded: tuple[ControlPoint, ...]
    deviations: tuple[float, ...]
    protected: bool = False
    reverted: bool = False
    warning: str | None = None

    @property
    def total(self) -> int:
        return len(self.pair.control_points)

    @property
    def keep_ratio(self) -> float:
        return len(self.kept) / self.total if self.total else 1.0


@dataclass(frozen=True)
class CleanResult:
    pairs: tuple[PairCleanResult, ...]
    discarded: tuple[ControlPoint, ...]
    analysed_count: int
    capped: bool = False

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(p.warning for p in self.pairs if p.warning)

    @property
    def removed_fraction(self) -> float:
        return len(self.discarded) / self.analysed_count if self.analysed_count else 0.0

    def is_discarded(self, cp: ControlPoint) -> bool:
        ids = {d.identity for d in self.discarded}
        return cp.identity in ids

    def to_dict(self) -> dict[str, float]:
        return {
            "analysed_count": float(self.analysed_count),
            "discarded_count": float(len(self.discarded)),
            "removed_fraction": self.removed_fraction,
            "reverted_pairs": float(sum(p.reverted for p in self.pairs)),
            "protected_pairs": float(sum(p.protected for p in self.pairs)),
            "capped": float(self.capped),
        }


def clean_pair(pair: Pair, config: CalibrationConfig | None = None) -> PairCleanResult:
    """
    Keep the reference members of every neighborhood of `pair` with enough inliers.

    Pairs smaller than `protect_below` are kept whole; larger pairs whose keep ratio falls
    under `min_keep_ratio` revert to keeping everything.
    """
    config = config or CalibrationConfig()
    cleaner = config.cleaner
    metric = config.neighborhood.offset_metric
    total = len(pair.control_points)

    if total < cleaner.protect_below:
        return PairCleanResult(pair=pair, kept=pair.control_points, discarded=(), deviations=(), protected=True)

    neighborhoods = compute_pair_neighborhoods(pair, config.neighborhood)
    kept = unique_by_identity(
        cp
        for n in neighborhoods
        if n.reference is not None and n.reference.count >= cleaner.min_count
        for cp in n.reference.members
    )

    if total and len(kept) / total < cleaner.min_keep_ratio:
        warning = (
            f"{pair} keeping less than {cleaner.min_keep_ratio:.0%} "
            f"({len(kept) / total * 100:.4f}%) of {total} control points. Reverting and keeping all control points"
        )
        logger.warning("%s", warning)
        return PairCleanResult(
            pair=pair, kept=pair.control_points, discarded=(), deviations=(), reverted=True, warning=warning
        )

    kept_ids = {cp.identity for cp in kept}
    center = calculate_average([offset_distance(cp, metric) for cp in kept], ignore_empty=True)
    rejected = [cp for cp in pair.control_points if cp.identity not in kept_ids]
    scored = sorted(
        ((abs(offset_distance(cp, metric) - center), cp) for cp in rejected),
        key=lambda item: -item[0],
    )
    for deviation, cp in scored:
        logger.debug("%s discarding %s (deviation %.4f)", pair, cp.to_line(), deviation)
    return PairCleanResult(
        pair=pair,
        kept=kept,
        discarded=tuple(cp for _, cp in scored),
        deviations=tuple(d for d, _ in scored),
    )


def clean_control_points(snapshot: GeometrySnapshot, config: CalibrationConfig | None = None) -> CleanResult:
    """
    Classify the control points of the snapshot as kept or discarded.

    The discarded set is every non-generated control point outside the keep-sets of
    the grid pairs, so points joining non-adjacent images (diagonals) are discarded
    too, ahead of any in-pair outlier. Generated points are never discarded.
    With `enforce_max_removal`, at most `max_removal_fraction` of the analysed points
    are discarded, the most deviant first.
    """
    config = config or CalibrationConfig()
    grid = Grid.build(snapshot.images, snapshot.control_points)
    results = tuple(clean_pair(pair, config) for pair in grid.pairs)

    paired = {cp.identity for pair in grid.pairs for cp in pair.control_points}
    unpaired = unique_by_identity(
        cp for cp in snapshot.control_points if not cp.generated and cp.identity not in paired
    )
    for cp in unpaired:
        logger.debug("discarding %s: no grid pair joins images %d and %d", cp.to_line(), cp.n1, cp.n2)
    analysed = sum(r.total for r in results) + len(unpaired)

    scored = [(math.inf, cp) for cp in unpaired]
    scored += [(d, cp) for r in results for d, cp in zip(r.deviations, r.discarded)]
    capped = False
    limit = math.floor(config.cleaner.max_removal_fraction * analysed)
    if config.cleaner.enforce_max_removal and len(scored) > limit:
        logger.warning(
            "cleaner would discard %d of %d control points; capping at %d",
            len(scored),
            analysed,
            limit,
        )
        scored.sort(key=lambda item: -item[0])
        scored = scored[:limit]
        capped = True

    discarded = unique_by_identity(cp for _, cp in scored)
    logger.debug("discarding %d of %d analysed control points", len(discarded), analysed)
    return CleanResult(pairs=results, discarded=discarded, analysed_count=analysed, capped=capped)
