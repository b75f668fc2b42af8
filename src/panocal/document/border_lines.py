"""
Synthetic line control points along the panorama border.

Each edge image carries line control points on itself (`n == N`, t1 vertical / t2
horizontal). Points of neighbouring edge images that describe the same line (averaged
x for vertical lines, averaged y for horizontal ones, within 2%) are joined into a new
control point between the two images. The anchor image (id 0) has no line points of its
own; lines reaching it are pinned to its center column/row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from panocal.api.pto_io import Document
from panocal.core.records import HORIZONTAL_LINE, VERTICAL_LINE, ControlPoint, Image

logger = logging.getLogger(__name__)

MATCH_TOLERANCE = 0.02


@dataclass(frozen=True)
class _Endpoint:
    n: int
    x: float
    y: float


def _within(value: float, reference: float, tolerance: float) -> bool:
    lo, hi = sorted((reference * (1.0 - tolerance), reference * (1.0 + tolerance)))
    return lo <= value <= hi


def _line_points(cps: tuple[ControlPoint, ...], image: Image, line_type: int) -> list[ControlPoint]:
    return [cp for cp in cps if cp.n1 == image.id and cp.n2 == image.id and cp.type == line_type]


def _join(start: _Endpoint, end: ControlPoint, line_type: int) -> ControlPoint:
    return ControlPoint(
        n1=start.n,
        n2=end.n1,
        x1=start.x,
        y1=start.y,
        x2=end.x2,
        y2=end.y2,
        type=line_type,
        generated=True,
    )


def _edge_lines(
    images: tuple[Image, ...],
    cps: tuple[ControlPoint, ...],
    line_type: int,
    anchor: int,
    tolerance: float,
) -> list[ControlPoint]:
    vertical = line_type == VERTICAL_LINE
    # Vertical lines run along the left/right edges (extreme d), horizontal along top/bottom (extreme e).
    edge_of = (lambda i: i.d) if vertical else (lambda i: i.e)
    along = (lambda i: i.e) if vertical else (lambda i: i.d)
    values = [edge_of(image) for image in images]
    out: list[ControlPoint] = []
    for edge in sorted({min(values), max(values)}):
        edge_images = sorted((i for i in images if edge_of(i) == edge), key=along)
        for image, next_image in zip(edge_images, edge_images[1:]):
            current = _line_points(cps, image, line_type)
            following = _line_points(cps, next_image, line_type)

            def average(cp: ControlPoint) -> float:
                return (cp.x1 + cp.x2) / 2.0 if vertical else (cp.y1 + cp.y2) / 2.0

            def pinned(cp: ControlPoint) -> _Endpoint:
                if vertical:
                    return _Endpoint(n=anchor, x=average(cp), y=float(round(image.h / 2.0)))
                return _Endpoint(n=anchor, x=float(round(image.w / 2.0)), y=average(cp))

            if image.id == anchor:
                joined = [(pinned(cp), cp) for cp in following]
            elif vertical and next_image.id == anchor:
                joined = [(pinned(cp), cp) for cp in current]
            else:
                joined = []
                for cp in current:
                    match = next((n for n in following if _within(average(n), average(cp), tolerance)), None)
                    if match is not None:
                        joined.append((_Endpoint(n=cp.n1, x=cp.x1, y=cp.y1), match))

            for start, end in joined:
                line = _join(start, end, line_type)
                logger.debug(
                    "image %d <> %d %s control point",
                    line.n1,
                    line.n2,
                    "vertical" if vertical else "horizontal",
                )
                out.append(line)
    return out


def generate_border_line_control_points(
    document: Document,
    anchor: int = 0,
    tolerance: float = MATCH_TOLERANCE,
) -> tuple[Document, tuple[ControlPoint, ...]]:
    """Return the document with the generated control points appended, and those points."""
    images = document.images
    if not images:
        return document, ()
    cps = tuple(cp for cp in document.control_points if cp.is_line)
    vertical = _edge_lines(images, cps, VERTICAL_LINE, anchor, tolerance)
    horizontal = _edge_lines(images, cps, HORIZONTAL_LINE, anchor, tolerance)
    logger.info("writing %d vertical control points", len(vertical))
    logger.info("writing %d horizontal control points", len(horizontal))
    generated = tuple(vertical + horizontal)
    return replace(document, control_points=document.control_points + generated), generated
