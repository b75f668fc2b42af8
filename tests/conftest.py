from __future__ import annotations

import pytest

from panocal.core.geometry import GeometrySnapshot
from panocal.core.records import ControlPoint, Image, PanoramaVariable

# 2x2 grid: columns at d=0/900, rows at e=0/700. Matched points sit 890 px (horizontal)
# or 690 px (vertical) apart, so every inlier has an offset distance of exactly 10 px.
# One outlier per pair is shifted 200 px across the seam.
GRID_IMAGES = ((0, 0.0, 0.0), (1, 900.0, 0.0), (2, 0.0, 700.0), (3, 900.0, 700.0))
HORIZONTAL_PAIRS = ((0, 1), (2, 3))
VERTICAL_PAIRS = ((0, 2), (1, 3))
INLIER_STEPS = (100, 400, 700)
OUTLIER_STEP = 1000


def grid_control_points(outliers: bool = True) -> list[ControlPoint]:
    cps: list[ControlPoint] = []
    steps = INLIER_STEPS + ((OUTLIER_STEP,) if outliers else ())
    for n1, n2 in HORIZONTAL_PAIRS:
        for s in steps:
            shift = 200 if s == OUTLIER_STEP else 0
            cps.append(
                ControlPoint(n1=n1, n2=n2, x1=s, y1=400, x2=s + 890, y2=400 + shift, raw=f"h{n1}{n2}-{s}")
            )
    for n1, n2 in VERTICAL_PAIRS:
        for s in steps:
            shift = 200 if s == OUTLIER_STEP else 0
            cps.append(
                ControlPoint(n1=n1, n2=n2, x1=500, y1=s, x2=500 + shift, y2=s + 690, raw=f"v{n1}{n2}-{s}")
            )
    return cps


def grid_snapshot(roll: float = 0.0, outliers: bool = True) -> GeometrySnapshot:
    images = [Image(id=i, w=1000, h=800, v=50.0, r=roll, d=d, e=e) for i, d, e in GRID_IMAGES]
    return GeometrySnapshot.build(images, PanoramaVariable(w=3000, h=2000, v=100.0), grid_control_points(outliers))


def grid_pto(outliers: bool = True, variables: tuple[str, ...] = ("v d1 e1", "v d2 e2", "v d3 e3", "v")) -> str:
    lines = ["# hugin project file", 'p f0 w3000 h2000 v100 E0 R0 n"TIFF_m c:LZW"', "m i0", ""]
    for i, d, e in GRID_IMAGES:
        lines.append(f'i w1000 h800 f0 v50 r0 p0 y0 TrX0 TrY0 TrZ0 d{d:g} e{e:g} n"img{i}.jpg"')
    lines.append("")
    lines.extend(variables)
    lines.append("")
    for cp in grid_control_points(outliers):
        lines.append(cp.to_line())
    lines.append("")
    lines.append("# endoffile")
    return "\n".join(lines) + "\n"


@pytest.fixture
def snapshot() -> GeometrySnapshot:
    return grid_snapshot()


@pytest.fixture
def pto_file(tmp_path):
    path = tmp_path / "grid.pto"
    path.write_text(grid_pto(), encoding="utf-8")
    return path


@pytest.fixture
def make_snapshot():
    return grid_snapshot


@pytest.fixture
def make_pto():
    return grid_pto
