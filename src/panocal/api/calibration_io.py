from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

from panocal.analysis.optimizer import PositionCorrection, RollCorrection

SCHEMA_VERSION = "panocal.correction.v0"


def _finite(value: Any, what: str) -> float:
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"{what}: non-finite value {value!r}")
    return out


def save_correction(path: Path, correction: PositionCorrection | RollCorrection) -> Path:
    """
    Save a correction as JSON so it can be replayed onto other datasets shot with the
    same rig (`optimize --correction`).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    meta: dict[str, Any] = {"schema_version": SCHEMA_VERSION}
    if isinstance(correction, PositionCorrection):
        meta["kind"] = "position"
        meta["position"] = {k: float(v) for k, v in correction.to_dict().items()}
    elif isinstance(correction, RollCorrection):
        meta["kind"] = "roll"
        meta["roll"] = {
            "roll_deg": float(correction.roll),
            "method": correction.method,
            "initial_roll_deg": None if math.isnan(correction.initial_roll) else float(correction.initial_roll),
        }
    else:
        raise TypeError(f"unsupported correction type {type(correction).__name__}")

    path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_correction(path: Path) -> PositionCorrection | RollCorrection:
    path = Path(path)
    meta = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(meta, dict) or str(meta.get("schema_version")) != SCHEMA_VERSION:
        raise ValueError(f"{path}: unsupported correction schema")

    kind = meta.get("kind")
    if kind == "position":
        pos = meta["position"]
        return PositionCorrection(
            x_drift=_finite(pos["x_drift"], "x_drift"),
            y_drift=_finite(pos["y_drift"], "y_drift"),
            x_skew=_finite(pos["x_skew"], "x_skew"),
            y_skew=_finite(pos["y_skew"], "y_skew"),
        )
    if kind == "roll":
        roll = meta["roll"]
        initial = roll.get("initial_roll_deg")
        return RollCorrection(
            roll=_finite(roll["roll_deg"], "roll_deg"),
            initial_roll=math.nan if initial is None else _finite(initial, "initial_roll_deg"),
            method="supplied",
        )
    raise ValueError(f"{path}: unknown correction kind {kind!r}")
