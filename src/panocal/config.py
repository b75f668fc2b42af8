from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal

OffsetMetric = Literal["roll_corrected", "planar"]


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class WindowOverride:
    """Explicit half-widths (pixels) of the position window; `None` keeps the default."""

    x: float | None = None
    y: float | None = None


@dataclass(frozen=True)
class NeighborhoodConfig:
    min_count: int = 3
    fallback_min_count: int = 2
    reduction_passes: int = 2
    default_distance: float = 100.0
    constrained_fraction: float = 0.1
    distances: WindowOverride = field(default_factory=WindowOverride)
    distances_horizontal: WindowOverride = field(default_factory=WindowOverride)
    distances_vertical: WindowOverride = field(default_factory=WindowOverride)
    offset_metric: OffsetMetric = "roll_corrected"
    top_groups: int = 5


@dataclass(frozen=True)
class CleanerConfig:
    min_count: int = 3
    min_keep_ratio: float = 0.5
    protect_below: int = 10
    max_removal_fraction: float = 0.2
    enforce_max_removal: bool = False


@dataclass(frozen=True)
class OptimizerConfig:
    roll_step: float = 0.01
    max_roll_steps: int = 1000
    objective_groups: int = 5
    use_roll_estimator: bool = False
    estimator_tolerance: float = 0.1
    estimator_min_points: int = 3
    estimator_max_iterations: int = 10


@dataclass(frozen=True)
class DiagnosticThresholds:
    max_removed_fraction: float = 0.2
    max_pairs_without_enough_fraction: float = 0.2
    max_generated_fraction: float = 0.2
    max_top_group_spread: float = 5.0
    min_best_group_coverage: float = 0.2


@dataclass(frozen=True)
class CalibrationConfig:
    neighborhood: NeighborhoodConfig = field(default_factory=NeighborhoodConfig)
    cleaner: CleanerConfig = field(default_factory=CleanerConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    diagnostics: DiagnosticThresholds = field(default_factory=DiagnosticThresholds)
    calibration_mode: bool = False

    @classmethod
    def for_calibration(cls) -> "CalibrationConfig":
        """
        Defaults for calibration datasets (dense, regular control points): smaller
        free-axis windows, minimum counts of 2 and a 0.2 keep-ratio guard.
        """
        return cls(
            neighborhood=NeighborhoodConfig(min_count=2, default_distance=50.0),
            cleaner=CleanerConfig(min_count=2, min_keep_ratio=0.2),
            calibration_mode=True,
        )


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def _flag(raw: dict[str, Any], key: str, default: bool, what: str) -> bool:
    value = raw.get(key, default)
    _require(isinstance(value, bool), f"{what} must be true or false, got {value!r}")
    return value


def load_config(path: Path, *, calibration_mode: bool | None = None) -> CalibrationConfig:
    """Read a JSON configuration; `calibration_mode` (when given) overrides the file's flag."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict), f"{path}: configuration must be a JSON object")
    if calibration_mode is not None:
        data = {**data, "calibration_mode": calibration_mode}
    return parse_config(data)


def parse_config(data: dict[str, Any]) -> CalibrationConfig:
    """
    Build a validated configuration from a mapping.

    `calibration_mode: true` switches the base defaults to `CalibrationConfig.for_calibration()`;
    explicit keys in the mapping still win.
    """
    calibration_mode = _flag(data, "calibration_mode", False, "calibration_mode")
    base = CalibrationConfig.for_calibration() if calibration_mode else CalibrationConfig()

    unknown = set(data) - {"neighborhood", "cleaner", "optimizer", "diagnostics", "calibration_mode"}
    _require(not unknown, f"unknown configuration sections: {sorted(unknown)}")

    neighborhood = _parse_neighborhood(data.get("neighborhood", {}), base.neighborhood)
    cleaner = _parse_cleaner(data.get("cleaner", {}), base.cleaner)
    optimizer = _parse_optimizer(data.get("optimizer", {}), base.optimizer)
    diagnostics = _parse_diagnostics(data.get("diagnostics", {}), base.diagnostics)
    return CalibrationConfig(
        neighborhood=neighborhood,
        cleaner=cleaner,
        optimizer=optimizer,
        diagnostics=diagnostics,
        calibration_mode=calibration_mode,
    )


def parse_window_override(raw: Any, what: str) -> WindowOverride:
    """Accepts `{"x": .., "y": ..}` (also the legacy `{"x1": .., "x2": ..}` spelling)."""
    if raw is None:
        return WindowOverride()
    _require(isinstance(raw, dict), f"{what} must be an object with x/y half-widths")
    x = raw.get("x", raw.get("x1"))
    y = raw.get("y", raw.get("x2"))
    out = WindowOverride(
        x=float(x) if x is not None else None,
        y=float(y) if y is not None else None,
    )
    _require(out.x is None or out.x >= 0.0, f"{what}.x must be >= 0")
    _require(out.y is None or out.y >= 0.0, f"{what}.y must be >= 0")
    return out


def _section(raw: Any, name: str, allowed: set[str]) -> dict[str, Any]:
    _require(isinstance(raw, dict), f"{name} must be an object")
    unknown = set(raw) - allowed
    _require(not unknown, f"unknown {name} keys: {sorted(unknown)}")
    return raw


def _parse_neighborhood(raw: Any, base: NeighborhoodConfig) -> NeighborhoodConfig:
    raw = _section(raw, "neighborhood", set(NeighborhoodConfig.__dataclass_fields__))
    cfg = replace(
        base,
        min_count=int(raw.get("min_count", base.min_count)),
        fallback_min_count=int(raw.get("fallback_min_count", base.fallback_min_count)),
        reduction_passes=int(raw.get("reduction_passes", base.reduction_passes)),
        default_distance=float(raw.get("default_distance", base.default_distance)),
        constrained_fraction=float(raw.get("constrained_fraction", base.constrained_fraction)),
        offset_metric=str(raw.get("offset_metric", base.offset_metric)),  # type: ignore[arg-type]
        top_groups=int(raw.get("top_groups", base.top_groups)),
    )
    if "distances" in raw:
        cfg = replace(cfg, distances=parse_window_override(raw["distances"], "neighborhood.distances"))
    if "distances_horizontal" in raw:
        cfg = replace(
            cfg,
            distances_horizontal=parse_window_override(raw["distances_horizontal"], "neighborhood.distances_horizontal"),
        )
    if "distances_vertical" in raw:
        cfg = replace(
            cfg,
            distances_vertical=parse_window_override(raw["distances_vertical"], "neighborhood.distances_vertical"),
        )

    _require(cfg.min_count >= 1, "neighborhood.min_count must be >= 1")
    _require(1 <= cfg.fallback_min_count <= cfg.min_count, "neighborhood.fallback_min_count must be in [1, min_count]")
    _require(cfg.reduction_passes >= 0, "neighborhood.reduction_passes must be >= 0")
    _require(cfg.default_distance >= 0.0, "neighborhood.default_distance must be >= 0")
    _require(0.0 <= cfg.constrained_fraction <= 1.0, "neighborhood.constrained_fraction must be in [0, 1]")
    _require(cfg.offset_metric in ("roll_corrected", "planar"), "neighborhood.offset_metric must be roll_corrected|planar")
    _require(cfg.top_groups >= 1, "neighborhood.top_groups must be >= 1")
    return cfg


def _parse_cleaner(raw: Any, base: CleanerConfig) -> CleanerConfig:
    raw = _section(raw, "cleaner", set(CleanerConfig.__dataclass_fields__))
    cfg = replace(
        base,
        min_count=int(raw.get("min_count", base.min_count)),
        min_keep_ratio=float(raw.get("min_keep_ratio", base.min_keep_ratio)),
        protect_below=int(raw.get("protect_below", base.protect_below)),
        max_removal_fraction=float(raw.get("max_removal_fraction", base.max_removal_fraction)),
        enforce_max_removal=_flag(raw, "enforce_max_removal", base.enforce_max_removal, "cleaner.enforce_max_removal"),
    )
    _require(cfg.min_count >= 1, "cleaner.min_count must be >= 1")
    _require(0.0 <= cfg.min_keep_ratio <= 1.0, "cleaner.min_keep_ratio must be in [0, 1]")
    _require(cfg.protect_below >= 0, "cleaner.protect_below must be >= 0")
    _require(0.0 <= cfg.max_removal_fraction <= 1.0, "cleaner.max_removal_fraction must be in [0, 1]")
    return cfg


def _parse_optimizer(raw: Any, base: OptimizerConfig) -> OptimizerConfig:
    raw = _section(raw, "optimizer", set(OptimizerConfig.__dataclass_fields__))
    cfg = replace(
        base,
        roll_step=float(raw.get("roll_step", base.roll_step)),
        max_roll_steps=int(raw.get("max_roll_steps", base.max_roll_steps)),
        objective_groups=int(raw.get("objective_groups", base.objective_groups)),
        use_roll_estimator=_flag(raw, "use_roll_estimator", base.use_roll_estimator, "optimizer.use_roll_estimator"),
        estimator_tolerance=float(raw.get("estimator_tolerance", base.estimator_tolerance)),
        estimator_min_points=int(raw.get("estimator_min_points", base.estimator_min_points)),
        estimator_max_iterations=int(raw.get("estimator_max_iterations", base.estimator_max_iterations)),
    )
    _require(cfg.roll_step > 0.0, "optimizer.roll_step must be > 0")
    _require(cfg.max_roll_steps >= 1, "optimizer.max_roll_steps must be >= 1")
    _require(cfg.objective_groups >= 1, "optimizer.objective_groups must be >= 1")
    _require(cfg.estimator_tolerance > 0.0, "optimizer.estimator_tolerance must be > 0")
    _require(cfg.estimator_min_points >= 1, "optimizer.estimator_min_points must be >= 1")
    _require(cfg.estimator_max_iterations >= 1, "optimizer.estimator_max_iterations must be >= 1")
    return cfg


def _parse_diagnostics(raw: Any, base: DiagnosticThresholds) -> DiagnosticThresholds:
    raw = _section(raw, "diagnostics", set(DiagnosticThresholds.__dataclass_fields__))
    cfg = replace(base, **{k: float(v) for k, v in raw.items()})
    for name in DiagnosticThresholds.__dataclass_fields__:
        _require(float(getattr(cfg, name)) >= 0.0, f"diagnostics.{name} must be >= 0")
    return cfg
