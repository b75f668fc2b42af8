"""
Corrections derived from the best neighborhood groups.

- position mode: closed-form `d`/`e` correction spread symmetrically around the grid center
- roll mode: hill-climb on the shared roll (optionally seeded by a closed-form estimate)

Both take a `GeometrySnapshot` and return a new one; the input is never modified.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable, Literal

import numpy as np

from panocal.analysis.grid import Grid
from panocal.analysis.groups import AnalysisContext, analyze
from panocal.config import CalibrationConfig, OptimizerConfig
from panocal.core.geometry import GeometrySnapshot
from panocal.core.records import OptimisationVariable
from panocal.core.stats import calculate_average, calculate_average_and_std

logger = logging.getLogger(__name__)

Strategy = Literal["position", "roll"]


class RollEstimationError(RuntimeError):
    pass


@dataclass(frozen=True)
class PositionCorrection:
    """
    Per-step drift of the grid.

    `x_drift`/`y_drift` are removed per column/row away from the center, `x_skew`/`y_skew`
    are the cross terms (x per row, y per column).
    """

    x_drift: float = 0.0
    y_drift: float = 0.0
    x_skew: float = 0.0
    y_skew: float = 0.0

    @property
    def is_zero(self) -> bool:
        return self.x_drift == 0.0 and self.y_drift == 0.0 and self.x_skew == 0.0 and self.y_skew == 0.0

    def to_dict(self) -> dict[str, float]:
        return {"x_drift": self.x_drift, "y_drift": self.y_drift, "x_skew": self.x_skew, "y_skew": self.y_skew}


@dataclass(frozen=True)
class RollCorrection:
    roll: float
    initial_roll: float = math.nan
    objective: float = math.nan
    initial_objective: float = math.nan
    steps: int = 0
    method: str = "supplied"

    def to_dict(self) -> dict[str, float | str]:
        return {
            "roll": self.roll,
            "initial_roll": self.initial_roll,
            "objective": self.objective,
            "initial_objective": self.initial_objective,
            "steps": float(self.steps),
            "method": self.method,
        }


def select_strategy(variables: Iterable[OptimisationVariable]) -> Strategy:
    """Pick the optimizer from the optimisation variables: `{d, e}` -> position, `{r}` -> roll."""
    names: set[str] = set()
    for variable in variables:
        names |= variable.names
    if names == {"d", "e"}:
        return "position"
    if names == {"r"}:
        return "roll"
    raise ValueError(f"no optimization strategy for variables {sorted(names)}; expected d,e or r")


def compute_position_correction(context: AnalysisContext) -> PositionCorrection:
    horizontal = context.horizontal.best
    vertical = context.vertical.best
    return PositionCorrection(
        x_drift=horizontal.x_avg,
        y_drift=vertical.y_avg,
        x_skew=vertical.x_avg,
        y_skew=horizontal.y_avg,
    )


def apply_position_correction(snapshot: GeometrySnapshot, correction: PositionCorrection) -> GeometrySnapshot:
    """
    d' = d - x_drift*ci - x_skew*ri and e' = e - y_drift*ri - y_skew*ci, where `ci`/`ri` are
    the signed column/row distances from the grid center.
    """
    if correction.is_zero:
        return snapshot

    grid = Grid.build(snapshot.images, ())
    col_center = (grid.n_columns - 1) / 2.0
    row_center = (grid.n_rows - 1) / 2.0

    images = []
    for image in grid.images:
        ci = image.column - col_center
        ri = image.row - row_center
        d = image.d - correction.x_drift * ci - correction.x_skew * ri
        e = image.e - correction.y_drift * ri - correction.y_skew * ci
        logger.debug("image %d d,e: %s,%s -> %s,%s", image.id, image.d, image.e, d, e)
        images.append(replace(image, d=float(d), e=float(e)))
    return snapshot.with_images(images)


def optimize_positions(
    snapshot: GeometrySnapshot,
    config: CalibrationConfig | None = None,
    correction: PositionCorrection | None = None,
) -> tuple[GeometrySnapshot, PositionCorrection]:
    """Compute (unless supplied) and apply the position correction."""
    config = config or CalibrationConfig()
    if correction is None:
        correction = compute_position_correction(analyze(snapshot, config.neighborhood))
    logger.info(
        "position correction x_drift %.4f y_drift %.4f x_skew %.4f y_skew %.4f",
        correction.x_drift,
        correction.y_drift,
        correction.x_skew,
        correction.y_skew,
    )
    return apply_position_correction(snapshot, correction), correction


def roll_objective(context: AnalysisContext, groups: int = 5) -> float:
    """Mean `dist_avg` of the top `groups` groups of both orientations."""
    values = [g.dist_avg for g in context.horizontal.top(groups)] + [g.dist_avg for g in context.vertical.top(groups)]
    return calculate_average(values)


def _objective_at(snapshot: GeometrySnapshot, roll: float, config: CalibrationConfig) -> float:
    return roll_objective(analyze(snapshot.with_roll(roll), config.neighborhood), config.optimizer.objective_groups)


def search_roll(snapshot: GeometrySnapshot, config: CalibrationConfig | None = None) -> RollCorrection:
    """
    Hill-climb on the shared roll.

    Probe one step negative; if that strictly improves the objective, keep stepping while
    it strictly improves. Otherwise try the positive direction the same way. The returned
    roll is never worse than the initial one.
    """
    config = config or CalibrationConfig()
    opt = config.optimizer
    initial_roll = snapshot.roll
    initial = _objective_at(snapshot, initial_roll, config)
    logger.debug("current roll %s objective %s", initial_roll, initial)

    best_roll, best, steps = initial_roll, initial, 0
    for direction in (-1.0, 1.0):
        k = 1
        while k <= opt.max_roll_steps:
            roll = initial_roll + direction * opt.roll_step * k
            value = _objective_at(snapshot, roll, config)
            steps += 1
            logger.debug("roll %s objective %s (best %s)", roll, value, best)
            if not value < best:
                break
            best_roll, best = roll, value
            k += 1
        if best_roll != initial_roll:
            break

    return RollCorrection(
        roll=best_roll,
        initial_roll=initial_roll,
        objective=best,
        initial_objective=initial,
        steps=steps,
        method="search",
    )


def _point_rolls(context: AnalysisContext) -> np.ndarray:
    images = {image.id: image for image in context.snapshot.images}
    rolls: list[float] = []
    for pair in context.grid.pairs:
        for cp in pair.control_points:
            a, b = images[cp.n1], images[cp.n2]
            dx, dy = cp.x2 - cp.x1, cp.y2 - cp.y1
            if pair.is_horizontal:
                num, den = dy + (a.e - b.e), dx
            else:
                num, den = dx + (a.d - b.d), dy
            if abs(den) < 1e-9:
                continue
            rolls.append(math.degrees(math.atan(num / den)))
    return np.asarray(rolls, dtype=np.float64)


def estimate_roll(context: AnalysisContext, config: OptimizerConfig | None = None) -> float:
    """
    Closed-form roll: average of the per-point rolls that cancel the roll-corrected offset,
    pruned to within one std until the std drops to `estimator_tolerance` degrees.
    """
    config = config or OptimizerConfig()
    values = _point_rolls(context)
    if values.size < config.estimator_min_points:
        raise RollEstimationError(f"only {values.size} control points usable for roll estimation")

    for _ in range(config.estimator_max_iterations):
        avg, std = calculate_average_and_std(values)
        if std <= config.estimator_tolerance:
            return avg
        reduced = values[np.abs(values - avg) <= std]
        if reduced.size < config.estimator_min_points:
            raise RollEstimationError(f"roll estimate pruned down to {reduced.size} control points (std {std:.4f})")
        if reduced.size == values.size:
            raise RollEstimationError(f"roll estimate stuck at std {std:.4f} with {values.size} control points")
        values = reduced
    raise RollEstimationError(f"roll estimate did not converge in {config.estimator_max_iterations} iterations")


def optimize_roll(
    snapshot: GeometrySnapshot,
    config: CalibrationConfig | None = None,
    correction: RollCorrection | None = None,
) -> tuple[GeometrySnapshot, RollCorrection]:
    """
    Apply a computed (or supplied) shared roll to every image.

    When the roll does not move, the input snapshot comes back untouched: a search that
    finds no improvement leaves every image's own roll as it was.
    """
    config = config or CalibrationConfig()
    supplied = correction is not None
    if correction is None:
        correction = _compute_roll(snapshot, config)
    logger.info("roll %s -> %s (%s)", snapshot.roll, correction.roll, correction.method)
    uniform = all(image.r == snapshot.roll for image in snapshot.images)
    if correction.roll == snapshot.roll and (uniform or not supplied):
        return snapshot, correction
    return snapshot.with_roll(correction.roll), correction


def _compute_roll(snapshot: GeometrySnapshot, config: CalibrationConfig) -> RollCorrection:
    if not config.optimizer.use_roll_estimator:
        return search_roll(snapshot, config)

    context = analyze(snapshot, config.neighborhood)
    initial = roll_objective(context, config.optimizer.objective_groups)
    try:
        roll = estimate_roll(context, config.optimizer)
    except RollEstimationError as e:
        logger.warning("roll estimator failed (%s); falling back to search", e)
        return search_roll(snapshot, config)

    value = _objective_at(snapshot, roll, config)
    if value > initial:
        logger.warning("estimated roll %s is worse than %s (%s > %s); falling back to search", roll, snapshot.roll, value, initial)
        return search_roll(snapshot, config)
    return RollCorrection(
        roll=roll,
        initial_roll=snapshot.roll,
        objective=value,
        initial_objective=initial,
        method="estimate",
    )


def optimize(
    snapshot: GeometrySnapshot,
    strategy: Strategy,
    config: CalibrationConfig | None = None,
    correction: PositionCorrection | RollCorrection | None = None,
) -> tuple[GeometrySnapshot, PositionCorrection | RollCorrection]:
    if strategy == "position":
        if correction is not None and not isinstance(correction, PositionCorrection):
            raise ValueError("position optimization needs a PositionCorrection")
        return optimize_positions(snapshot, config, correction)
    if strategy == "roll":
        if correction is not None and not isinstance(correction, RollCorrection):
            raise ValueError("roll optimization needs a RollCorrection")
        return optimize_roll(snapshot, config, correction)
    raise ValueError(f"unknown strategy {strategy!r}")

