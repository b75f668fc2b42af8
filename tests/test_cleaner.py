from __future__ import annotations

import logging
from dataclasses import replace

from panocal.analysis.cleaner import clean_control_points, clean_pair
from panocal.analysis.grid import Grid
from panocal.config import CalibrationConfig, CleanerConfig
from panocal.core.geometry import GeometrySnapshot
from panocal.core.records import ControlPoint, Image, PanoramaVariable


def _config(**cleaner):
    return CalibrationConfig(cleaner=replace(CleanerConfig(), **cleaner))


def _scattered_pair_snapshot(count: int = 10) -> GeometrySnapshot:
    # Isolated points with distinct offsets: no neighborhood reaches three members.
    images = [Image(id=0, w=1000, h=800, v=50.0), Image(id=1, w=1000, h=800, v=50.0, d=900.0)]
    cps = [
        ControlPoint(n1=0, n2=1, x1=100.0 + 300.0 * i, y1=400.0, x2=990.0 + 300.0 * i, y2=400.0 + 7.0 * i, raw=f"{i}")
        for i in range(count)
    ]
    return GeometrySnapshot.build(images, PanoramaVariable(w=3000, h=2000, v=100.0), cps)


def test_discards_exactly_the_outliers(snapshot):
    result = clean_control_points(snapshot, _config(protect_below=0))
    assert sorted(cp.raw for cp in result.discarded) == ["h01-1000", "h23-1000", "v02-1000", "v13-1000"]
    assert result.analysed_count == 16
    assert result.removed_fraction == 0.25
    assert not result.capped
    assert all(r.keep_ratio == 0.75 for r in result.pairs)
    assert result.is_discarded(result.discarded[0])


def test_small_pairs_are_protected(snapshot):
    result = clean_control_points(snapshot, CalibrationConfig())
    assert result.discarded == ()
    assert all(r.protected for r in result.pairs)


def test_pairs_under_ten_points_never_lose_points():
    for count in range(1, 10):
        snapshot = _scattered_pair_snapshot(count)
        result = clean_control_points(snapshot, CalibrationConfig())
        assert result.discarded == ()


def test_low_keep_ratio_reverts(caplog):
    snapshot = _scattered_pair_snapshot(10)
    pair = Grid.build(snapshot.images, snapshot.control_points).horizontal[0]
    with caplog.at_level(logging.WARNING):
        result = clean_pair(pair, CalibrationConfig())
    assert result.reverted
    assert result.discarded == ()
    assert len(result.kept) == 10
    assert "Reverting and keeping all control points" in result.warning
    assert "[0,1]" in caplog.text


def test_discarded_points_are_ordered_by_deviation(snapshot):
    pair = Grid.build(snapshot.images, snapshot.control_points).horizontal[0]
    result = clean_pair(pair, _config(protect_below=0))
    assert [cp.raw for cp in result.discarded] == ["h01-1000"]
    assert result.deviations[0] > 100.0


def test_removal_cap_keeps_the_most_deviant(snapshot):
    result = clean_control_points(snapshot, _config(protect_below=0, max_removal_fraction=0.1, enforce_max_removal=True))
    assert result.capped
    assert len(result.discarded) == 1
    assert result.removed_fraction == 1 / 16


def test_generated_points_are_never_discarded(snapshot):
    extra = ControlPoint(n1=0, n2=1, x1=50.0, y1=40.0, x2=60.0, y2=70.0, generated=True, raw="gen")
    snapshot = snapshot.with_control_points(snapshot.control_points + (extra,))
    result = clean_control_points(snapshot, _config(protect_below=0))
    assert "gen" not in {cp.raw for cp in result.discarded}
    assert result.analysed_count == 16


def test_points_between_non_adjacent_images_are_discarded(snapshot):
    diagonal = ControlPoint(n1=0, n2=3, x1=950.0, y1=750.0, x2=50.0, y2=50.0, raw="diag-0-3")
    snapshot = snapshot.with_control_points(snapshot.control_points + (diagonal,))

    result = clean_control_points(snapshot, CalibrationConfig())
    assert [cp.raw for cp in result.discarded] == ["diag-0-3"]
    assert result.analysed_count == 17

    result = clean_control_points(snapshot, _config(protect_below=0))
    assert "diag-0-3" in {cp.raw for cp in result.discarded}
    assert len(result.discarded) == 5

    capped = clean_control_points(snapshot, _config(protect_below=0, max_removal_fraction=0.1, enforce_max_removal=True))
    assert [cp.raw for cp in capped.discarded] == ["diag-0-3"]
