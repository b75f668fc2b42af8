"""
Document -> core -> document orchestration.

Every function either returns a complete result or raises; nothing is written here
except by `write_report`, so a fatal analysis error never leaves a partial output.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from panocal.analysis.cleaner import CleanResult, clean_control_points
from panocal.analysis.diagnostics import DiagnosticReport, run_diagnostics
from panocal.analysis.groups import AnalysisContext, analyze
from panocal.analysis.optimizer import PositionCorrection, RollCorrection, Strategy, optimize, select_strategy
from panocal.api.pto_io import Document
from panocal.config import CalibrationConfig
from panocal.core.records import ORIENTATIONS

logger = logging.getLogger(__name__)


def clean_document(document: Document, config: CalibrationConfig | None = None) -> tuple[Document, CleanResult]:
    config = config or CalibrationConfig()
    result = clean_control_points(document.snapshot(), config)
    logger.info(
        "removing %d of %d analysed control points (%.1f%%)",
        len(result.discarded),
        result.analysed_count,
        100.0 * result.removed_fraction,
    )
    return document.without(result.discarded), result


def optimize_document(
    document: Document,
    config: CalibrationConfig | None = None,
    correction: PositionCorrection | RollCorrection | None = None,
    strategy: Strategy | None = None,
) -> tuple[Document, PositionCorrection | RollCorrection]:
    """
    Run the optimizer chosen by the document's optimisation variables (or `strategy`).
    A supplied `correction` is applied as-is.
    """
    config = config or CalibrationConfig()
    if strategy is None:
        if isinstance(correction, PositionCorrection):
            strategy = "position"
        elif isinstance(correction, RollCorrection):
            strategy = "roll"
        else:
            strategy = select_strategy(document.optimisation_variables)
    logger.info("running %s optimizer", strategy)
    snapshot, applied = optimize(document.snapshot(), strategy, config, correction)
    return document.with_snapshot(snapshot), applied


def summarize_analysis(context: AnalysisContext, top: int = 5) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for orientation in ORIENTATIONS:
        analysis = context.orientation(orientation)
        out[orientation] = {
            "pairs": len(analysis.pairs),
            "neighborhoods": len(analysis.neighborhoods),
            "similar_neighborhoods": len(analysis.similar),
            "min_count": analysis.min_count,
            "groups": [g.serialize() for g in analysis.top(top)],
        }
    return out


def diagnose_document(
    document: Document,
    config: CalibrationConfig | None = None,
) -> tuple[DiagnosticReport, dict[str, Any]]:
    """Diagnostics plus a serializable summary (groups, cleaner counts, checks)."""
    config = config or CalibrationConfig()
    snapshot = document.snapshot()
    context = analyze(snapshot, config.neighborhood)
    cleaned = clean_control_points(snapshot, config)
    report = run_diagnostics(context, cleaned, config.diagnostics, min_count=config.neighborhood.min_count)
    summary = {
        "analysis": summarize_analysis(context, config.neighborhood.top_groups),
        "cleaner": cleaned.to_dict(),
        "diagnostics": report.to_dict(),
    }
    return report, summary


def write_report(path: Path, payload: dict[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return path
