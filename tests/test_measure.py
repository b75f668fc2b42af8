from __future__ import annotations

import numpy as np
import pytest

from panocal.core.measure import Measure


def test_position_window_bounds_are_inclusive():
    m = Measure.position(100.0, 50.0, 10.0, 5.0)
    assert m.includes(110.0, 55.0)
    assert m.includes(90.0, 45.0)
    assert not m.includes(110.5, 50.0)
    assert not m.includes(100.0, 44.9)


def test_zero_width_distance_window_matches_only_the_center():
    m = Measure.distance(10.0, 0.0)
    assert m.is_distance
    assert m.includes(10.0)
    assert not m.includes(10.000001)


def test_mask_matches_includes():
    m = Measure.position(0.0, 0.0, 1.0, 2.0)
    xs = np.array([0.0, 1.0, 1.5, -0.5, 0.0])
    ys = np.array([0.0, 2.0, 0.0, -2.5, -2.0])
    expected = [m.includes(x, y) for x, y in zip(xs, ys)]
    assert m.mask(xs, ys).tolist() == expected


def test_rejects_mismatched_axes():
    with pytest.raises(ValueError):
        Measure(kind="position", center=(0.0, 0.0), distances=(1.0,))
    with pytest.raises(ValueError):
        Measure.distance(1.0, -1.0)
    with pytest.raises(ValueError):
        Measure.distance(1.0, 1.0).includes(1.0, 2.0)
