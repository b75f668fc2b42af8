from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from panocal.analysis.optimizer import PositionCorrection, RollCorrection
from panocal.api.calibration_io import SCHEMA_VERSION, load_correction, save_correction


def test_position_correction_file(tmp_path: Path):
    path = save_correction(tmp_path / "rig" / "position.json", PositionCorrection(x_drift=-10.0, y_drift=2.5))
    meta = json.loads(path.read_text(encoding="utf-8"))
    assert meta["schema_version"] == SCHEMA_VERSION
    assert meta["kind"] == "position"
    assert load_correction(path) == PositionCorrection(x_drift=-10.0, y_drift=2.5)


def test_roll_correction_file(tmp_path: Path):
    path = tmp_path / "roll.json"
    save_correction(path, RollCorrection(roll=0.42, initial_roll=0.5, method="search"))
    meta = json.loads(path.read_text(encoding="utf-8"))
    assert meta["roll"] == {"roll_deg": 0.42, "method": "search", "initial_roll_deg": 0.5}

    loaded = load_correction(path)
    assert isinstance(loaded, RollCorrection)
    assert loaded.roll == 0.42
    assert loaded.method == "supplied"

    save_correction(path, RollCorrection(roll=1.0))
    assert math.isnan(load_correction(path).initial_roll)


def test_rejects_unknown_corrections(tmp_path: Path):
    with pytest.raises(TypeError):
        save_correction(tmp_path / "x.json", {"roll": 1.0})  # type: ignore[arg-type]

    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"schema_version": "other", "kind": "roll"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_correction(path)

    path.write_text(json.dumps({"schema_version": SCHEMA_VERSION, "kind": "yaw"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_correction(path)

    path.write_text(
        json.dumps({"schema_version": SCHEMA_VERSION, "kind": "roll", "roll": {"roll_deg": "nan"}}),
        encoding="utf-8",
    )
    with pytest.raises(ValueError):
        load_correction(path)
