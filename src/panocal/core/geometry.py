from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable

import numpy as np
from scipy.spatial.transform import Rotation

from panocal.core.records import ControlPoint, Image, PanoramaVariable, assign_grid_positions

logger = logging.getLogger(__name__)


class GeometryError(ValueError):
    pass


def projection_radius(width: float, fov_deg: float) -> float:
    """
    Distance (pixels) from the projection center to an image plane `width` pixels wide
    spanning `fov_deg` degrees: (width/2) / tan(fov/2).
    """
    fov = float(fov_deg)
    if not math.isfinite(fov) or fov <= 0.0:
        raise GeometryError(f"degenerate field of view {fov_deg!r}: must be a finite angle > 0 degrees")
    return (float(width) / 2.0) / math.tan(math.radians(fov) / 2.0)


def rotation_matrix(roll_deg: float, pitch_deg: float, yaw_deg: float) -> np.ndarray:
    """
    Roll -> pitch -> yaw composition, i.e. Rx(roll) @ Ry(pitch) @ Rz(yaw), applied to
    local vectors (radius, px, py).
    """
    return Rotation.from_euler("XYZ", [roll_deg, pitch_deg, yaw_deg], degrees=True).as_matrix()


def pixel_directions(image: Image, x_px: np.ndarray, y_px: np.ndarray) -> np.ndarray:
    """
    Map pixel coordinates on `image` to unit directions on the panorama sphere.

    The local vector is (radius, w/2 - x + d, h/2 - y + e): x grows to the left of the
    optical axis, y upwards, and the image translation is folded in before rotating.
    Returns an (N,3) array.
    """
    x_px = np.asarray(x_px, dtype=np.float64).reshape(-1)
    y_px = np.asarray(y_px, dtype=np.float64).reshape(-1)

    radius = projection_radius(image.w, image.v)
    local = np.stack(
        [
            np.full_like(x_px, radius),
            image.w / 2.0 - x_px + image.d,
            image.h / 2.0 - y_px + image.e,
        ],
        axis=-1,
    )
    rot = rotation_matrix(image.r, image.p, image.y)
    points = local @ rot.T
    return points / np.linalg.norm(points, axis=-1, keepdims=True)


def _directions(images_by_id: dict[int, Image], ids: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    dirs = np.empty((ids.shape[0], 3), dtype=np.float64)
    for image_id in np.unique(ids):
        sel = ids == image_id
        dirs[sel] = pixel_directions(images_by_id[int(image_id)], x[sel], y[sel])
    return dirs


def annotate_control_points(
    images: Iterable[Image],
    variable: PanoramaVariable,
    control_points: Iterable[ControlPoint],
) -> tuple[ControlPoint, ...]:
    """
    Return copies of `control_points` with every geometry field recomputed from `images`.

    - `dist`: acos(dir1 . dir2) scaled by the panorama projection radius
    - `px,py,pdist`: planar offset (w/2 - x + d) between both endpoints, roll ignored
    - `prx,pry,prdist`: planar offset corrected with image-1 roll only
    - `conn_type`: vertical when both images share a column, horizontal otherwise
    """
    images = tuple(images)
    if any(image.column is None or image.row is None for image in images):
        images = assign_grid_positions(images)
    images_by_id = {image.id: image for image in images}

    cps = tuple(control_points)
    if not cps:
        return ()

    missing = sorted({n for cp in cps for n in (cp.n1, cp.n2) if n not in images_by_id})
    if missing:
        raise ValueError(f"control points reference unknown image ids: {missing}")

    scale = projection_radius(variable.w, variable.v)

    n1 = np.asarray([cp.n1 for cp in cps], dtype=np.int64)
    n2 = np.asarray([cp.n2 for cp in cps], dtype=np.int64)
    x1 = np.asarray([cp.x1 for cp in cps], dtype=np.float64)
    y1 = np.asarray([cp.y1 for cp in cps], dtype=np.float64)
    x2 = np.asarray([cp.x2 for cp in cps], dtype=np.float64)
    y2 = np.asarray([cp.y2 for cp in cps], dtype=np.float64)

    dirs1 = _directions(images_by_id, n1, x1, y1)
    dirs2 = _directions(images_by_id, n2, x2, y2)
    # Rounding can push the dot product of identical directions slightly past 1.
    dot = np.clip(np.sum(dirs1 * dirs2, axis=-1), -1.0, 1.0)
    dist = np.arccos(dot) * scale

    def image_attr(ids: np.ndarray, name: str) -> np.ndarray:
        return np.asarray([float(getattr(images_by_id[int(i)], name)) for i in ids], dtype=np.float64)

    w1, h1, d1, e1, r1 = (image_attr(n1, a) for a in ("w", "h", "d", "e", "r"))
    w2, h2, d2, e2 = (image_attr(n2, a) for a in ("w", "h", "d", "e"))

    px = (w1 / 2.0 - x1 + d1) - (w2 / 2.0 - x2 + d2)
    py = (h1 / 2.0 - y1 + e1) - (h2 / 2.0 - y2 + e2)
    pdist = np.hypot(px, py)

    roll = np.radians(r1)
    cos_r = np.cos(roll)
    sin_r = np.sin(roll)
    prx = (d1 - d2) + cos_r * (x2 - x1) - sin_r * (y2 - y1)
    pry = (e1 - e2) + cos_r * (y2 - y1) - sin_r * (x2 - x1)
    prdist = np.hypot(prx, pry)

    out: list[ControlPoint] = []
    for i, cp in enumerate(cps):
        same_column = images_by_id[cp.n1].column == images_by_id[cp.n2].column
        out.append(
            replace(
                cp,
                dist=float(dist[i]),
                px=float(px[i]),
                py=float(py[i]),
                pdist=float(pdist[i]),
                prx=float(prx[i]),
                pry=float(pry[i]),
                prdist=float(prdist[i]),
                conn_type="vertical" if same_column else "horizontal",
            )
        )
    return tuple(out)


@dataclass(frozen=True)
class GeometrySnapshot:
    """
    Images with grid positions plus control points annotated against exactly those images.

    Snapshots are never updated in place: `with_images` / `with_roll` rebuild positions and
    every control point's geometry, so a snapshot cannot mix stale and fresh values.
    """

    images: tuple[Image, ...]
    variable: PanoramaVariable
    control_points: tuple[ControlPoint, ...]

    @classmethod
    def build(
        cls,
        images: Iterable[Image],
        variable: PanoramaVariable,
        control_points: Iterable[ControlPoint],
    ) -> "GeometrySnapshot":
        positioned = assign_grid_positions(images)
        annotated = annotate_control_points(positioned, variable, control_points)
        return cls(images=positioned, variable=variable, control_points=annotated)

    @property
    def roll(self) -> float:
        """Shared grid roll (the first image's roll)."""
        if not self.images:
            raise ValueError("snapshot has no images")
        return float(self.images[0].r)

    def image(self, image_id: int) -> Image:
        for image in self.images:
            if image.id == image_id:
                return image
        raise KeyError(f"unknown image id {image_id}")

    def with_images(self, images: Iterable[Image]) -> "GeometrySnapshot":
        return GeometrySnapshot.build(images, self.variable, self.control_points)

    def with_roll(self, roll_deg: float) -> "GeometrySnapshot":
        return self.with_images(replace(image, r=float(roll_deg)) for image in self.images)

    def with_control_points(self, control_points: Iterable[ControlPoint]) -> "GeometrySnapshot":
        return GeometrySnapshot.build(self.images, self.variable, control_points)
