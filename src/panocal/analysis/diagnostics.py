from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from panocal.analysis.cleaner import CleanResult
from panocal.analysis.groups import AnalysisContext
from panocal.config import DiagnosticThresholds
from panocal.core.records import ORIENTATIONS
from panocal.core.stats import calculate_average_and_std

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticCheck:
    name: str
    value: float
    threshold: float
    bound: Literal["max", "min"]
    message: str
    recommendation: str | None = None

    @property
    def passed(self) -> bool:
        if self.bound == "max":
            return self.value <= self.threshold
        return self.value >= self.threshold

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "value": self.value,
            "threshold": self.threshold,
            "bound": self.bound,
            "passed": self.passed,
            "message": self.message,
            "recommendation": None if self.passed else self.recommendation,
        }


@dataclass(frozen=True)
class DiagnosticReport:
    checks: tuple[DiagnosticCheck, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failed(self) -> tuple[DiagnosticCheck, ...]:
        return tuple(c for c in self.checks if not c.passed)

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(c.message for c in self.failed)

    @property
    def recommendations(self) -> tuple[str, ...]:
        out: list[str] = []
        for c in self.failed:
            if c.recommendation and c.recommendation not in out:
                out.append(c.recommendation)
        return tuple(out)

    def check(self, name: str) -> DiagnosticCheck:
        for c in self.checks:
            if c.name == name:
                return c
        raise KeyError(name)

    def values(self) -> dict[str, float]:
        return {c.name: c.value for c in self.checks}

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "checks": [c.to_dict() for c in self.checks],
            "recommendations": list(self.recommendations),
        }


def _fraction(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def run_diagnostics(
    context: AnalysisContext,
    clean_result: CleanResult | None = None,
    thresholds: DiagnosticThresholds | None = None,
    min_count: int = 3,
) -> DiagnosticReport:
    """
    Ratio-based health checks of one analysis pass. Failures are reported (and logged as
    warnings), never raised.
    """
    thresholds = thresholds or DiagnosticThresholds()
    checks: list[DiagnosticCheck] = []

    if clean_result is not None:
        value = clean_result.removed_fraction
        checks.append(
            DiagnosticCheck(
                name="removed_fraction",
                value=value,
                threshold=thresholds.max_removed_fraction,
                bound="max",
                message=f"cleaner removed {value:.1%} of {clean_result.analysed_count} control points",
                recommendation="regenerate_control_points",
            )
        )

    grid = context.grid
    connected = [p for p in grid.pairs if p.connected]
    thin = grid.without_enough_control_points(count=min_count)
    value = _fraction(len(thin), len(connected))
    checks.append(
        DiagnosticCheck(
            name="pairs_without_enough_control_points_fraction",
            value=value,
            threshold=thresholds.max_pairs_without_enough_fraction,
            bound="max",
            message=f"{len(thin)} of {len(connected)} connected pairs have fewer than {min_count} control points",
            recommendation="add_control_points",
        )
    )

    cps = context.snapshot.control_points
    generated = sum(1 for cp in cps if cp.generated)
    value = _fraction(generated, len(cps))
    checks.append(
        DiagnosticCheck(
            name="generated_fraction",
            value=value,
            threshold=thresholds.max_generated_fraction,
            bound="max",
            message=f"{generated} of {len(cps)} control points are generated",
            recommendation="reduce_generated_control_points",
        )
    )

    for orientation in ORIENTATIONS:
        analysis = context.orientation(orientation)
        top = analysis.top(context.config.top_groups)
        _avg, spread = calculate_average_and_std([g.dist_avg for g in top], ignore_empty=True)
        checks.append(
            DiagnosticCheck(
                name=f"{orientation}_top_group_spread",
                value=spread,
                threshold=thresholds.max_top_group_spread,
                bound="max",
                message=f"{orientation} top {len(top)} groups spread {spread:.4f} px in distance",
                recommendation=f"regenerate_{orientation}_with_calibration",
            )
        )

        total = analysis.total_control_points
        best = analysis.best.count if analysis.groups else 0
        value = _fraction(best, total)
        checks.append(
            DiagnosticCheck(
                name=f"{orientation}_best_group_coverage",
                value=value,
                threshold=thresholds.min_best_group_coverage,
                bound="min",
                message=f"best {orientation} group explains {best} of {total} control points",
                recommendation=f"regenerate_{orientation}_with_calibration",
            )
        )

    report = DiagnosticReport(checks=tuple(checks))
    for c in report.failed:
        logger.warning("%s: %s (%s %s %.4f)", c.name, c.message, c.value, c.bound, c.threshold)
    return report
