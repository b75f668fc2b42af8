from __future__ import annotations

import json
from pathlib import Path

import pytest

from panocal.config import (
    CalibrationConfig,
    ConfigValidationError,
    WindowOverride,
    load_config,
    parse_config,
    parse_window_override,
)


def test_defaults():
    cfg = parse_config({})
    assert cfg == CalibrationConfig()
    assert cfg.neighborhood.min_count == 3
    assert cfg.neighborhood.offset_metric == "roll_corrected"
    assert cfg.cleaner.protect_below == 10
    assert cfg.optimizer.roll_step == 0.01


def test_calibration_mode_switches_defaults_but_explicit_keys_win():
    cfg = parse_config({"calibration_mode": True, "cleaner": {"min_keep_ratio": 0.4}})
    assert cfg.calibration_mode
    assert cfg.neighborhood.min_count == 2
    assert cfg.neighborhood.default_distance == 50.0
    assert cfg.cleaner.min_count == 2
    assert cfg.cleaner.min_keep_ratio == 0.4


def test_window_overrides_accept_the_legacy_spelling():
    assert parse_window_override({"x1": 30, "x2": 40}, "w") == WindowOverride(x=30.0, y=40.0)
    assert parse_window_override({"y": 5}, "w") == WindowOverride(y=5.0)
    cfg = parse_config({"neighborhood": {"distances_vertical": {"x": 12}}})
    assert cfg.neighborhood.distances_vertical.x == 12.0
    assert cfg.neighborhood.distances == WindowOverride()


@pytest.mark.parametrize(
    "data",
    [
        {"unknown": {}},
        {"neighborhood": {"min_count": 0}},
        {"neighborhood": {"offset_metric": "angular"}},
        {"neighborhood": {"distances": {"x": -1}}},
        {"neighborhood": {"distances": [1, 2]}},
        {"cleaner": {"min_keep_ratio": 1.5}},
        {"cleaner": {"protect": 3}},
        {"optimizer": {"roll_step": 0}},
        {"diagnostics": {"max_removed_fraction": -0.1}},
        {"calibration_mode": "true"},
        {"cleaner": {"enforce_max_removal": "false"}},
        {"optimizer": {"use_roll_estimator": 1}},
    ],
)
def test_invalid_configuration_is_rejected(data):
    with pytest.raises(ConfigValidationError):
        parse_config(data)


def test_load_config_flag_overrides_file(tmp_path: Path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"optimizer": {"use_roll_estimator": True}}), encoding="utf-8")
    assert load_config(path).optimizer.use_roll_estimator
    assert not load_config(path).calibration_mode
    assert load_config(path, calibration_mode=True).neighborhood.min_count == 2

    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_flags_take_json_booleans_only():
    cfg = parse_config({"cleaner": {"enforce_max_removal": False}, "optimizer": {"use_roll_estimator": True}})
    assert cfg.cleaner.enforce_max_removal is False
    assert cfg.optimizer.use_roll_estimator is True
    with pytest.raises(ConfigValidationError, match="cleaner.enforce_max_removal"):
        parse_config({"cleaner": {"enforce_max_removal": "false"}})
