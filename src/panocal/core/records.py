"""
Typed records parsed from a panorama project document.

Records are immutable: geometry changes produce new records via
`dataclasses.replace`, so a snapshot never observes a half-updated grid.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterable, Literal

Orientation = Literal["horizontal", "vertical"]
ORIENTATIONS: tuple[Orientation, ...] = ("horizontal", "vertical")

# Control point types (the `t` attribute).
NORMAL = 0
VERTICAL_LINE = 1
HORIZONTAL_LINE = 2

IMAGE_ATTRIBUTES = (
    "w", "h", "f", "v", "Ra", "Rb", "Rc", "Rd", "Re", "Eev", "Er", "Eb", "r", "p", "y",
    "TrX", "TrY", "TrZ", "Tpy", "Tpp", "j", "a", "b", "c", "d", "e", "g", "t",
    "Va", "Vb", "Vc", "Vd", "Vx", "Vy", "Vm", "n",
)

# Attributes that hugin may write as `key=N` (linked to image N).
EQUALED_ATTRIBUTES = frozenset(
    {"v", "Ra", "Rb", "Rc", "Rd", "Re", "a", "b", "c", "d", "e", "Va", "Vb", "Vc", "Vd", "Vx", "Vy"}
)

# PTO attribute -> Image field for the attributes the engine reads or writes.
IMAGE_TYPED_FIELDS = {
    "w": "w",
    "h": "h",
    "f": "f",
    "v": "v",
    "r": "r",
    "p": "p",
    "y": "y",
    "TrX": "tr_x",
    "TrY": "tr_y",
    "TrZ": "tr_z",
    "d": "d",
    "e": "e",
}

CONTROL_POINT_ATTRIBUTES = ("n", "N", "x", "y", "X", "Y", "t", "g")
PANORAMA_ATTRIBUTES = ("f", "w", "h", "v", "n")


def format_number(value: float) -> str:
    """PTO number formatting: integral values without a decimal point."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


@dataclass(frozen=True)
class Image:
    """
    One `i` line.

    - `v`: horizontal field of view (degrees)
    - `r,p,y`: roll, pitch, yaw (degrees)
    - `d,e`: horizontal / vertical placement (pixels); `tr_x,tr_y,tr_z` the TrX/TrY/TrZ translation
    - `column,row`: rank of `d`/`e` among the unique values of all images (see `assign_grid_positions`)
    """

    id: int
    w: int
    h: int
    v: float
    r: float = 0.0
    p: float = 0.0
    y: float = 0.0
    d: float = 0.0
    e: float = 0.0
    tr_x: float = 0.0
    tr_y: float = 0.0
    tr_z: float = 0.0
    f: int = 0
    name: str = ""
    params: tuple[tuple[str, str], ...] = ()
    links: tuple[tuple[str, int, str], ...] = ()
    column: int | None = None
    row: int | None = None
    raw: str | None = None

    def param(self, key: str, default: str | None = None) -> str | None:
        for k, value in self.params:
            if k == key:
                return value
        return default

    def attribute_value(self, key: str) -> str | None:
        """Formatted value of any PTO attribute, typed or not."""
        if key in IMAGE_TYPED_FIELDS:
            return format_number(getattr(self, IMAGE_TYPED_FIELDS[key]))
        if key == "n":
            return self.name
        return self.param(key)

    def to_line(self) -> str:
        links = {key: (target, value) for key, target, value in self.links}
        parts: list[str] = []
        for key in IMAGE_ATTRIBUTES[:-1]:
            value = self.attribute_value(key)
            if value is None:
                continue
            link = links.get(key)
            if link is not None and link[1] == value:
                parts.append(f"{key}={link[0]}")
            else:
                parts.append(f"{key}{value}")
        known = set(IMAGE_ATTRIBUTES)
        parts.extend(f"{key}{value}" for key, value in self.params if key not in known)
        parts.append(f'n"{self.name}"')
        return "i " + " ".join(parts)


@dataclass(frozen=True, eq=False)
class ControlPoint:
    """
    One `c` line: pixel `(x1,y1)` on image `n1` matched with `(x2,y2)` on image `n2`.

    Geometry fields are filled by `panocal.core.geometry.annotate_control_points`:
    `dist` (angular distance scaled to panorama pixels), `px,py,pdist` (planar offset
    ignoring roll), `prx,pry,prdist` (planar offset corrected for image-1 roll).

    Equality ignores endpoint order and sub-pixel digits, so the same match read from
    two documents compares equal.
    """

    n1: int
    n2: int
    x1: float
    y1: float
    x2: float
    y2: float
    type: int = NORMAL
    generated: bool = False
    raw: str | None = None
    dist: float = math.nan
    px: float = math.nan
    py: float = math.nan
    pdist: float = math.nan
    prx: float = math.nan
    pry: float = math.nan
    prdist: float = math.nan
    conn_type: Orientation | None = None

    @property
    def is_normal(self) -> bool:
        return self.type == NORMAL

    @property
    def is_vertical_line(self) -> bool:
        return self.type == VERTICAL_LINE

    @property
    def is_horizontal_line(self) -> bool:
        return self.type == HORIZONTAL_LINE

    @property
    def is_line(self) -> bool:
        return self.is_vertical_line or self.is_horizontal_line

    @property
    def annotated(self) -> bool:
        return self.conn_type is not None

    @property
    def image_ids(self) -> frozenset[int]:
        return frozenset((self.n1, self.n2))

    @property
    def identity(self) -> object:
        """Raw document identity; generated points fall back to object identity."""
        return self.raw if self.raw is not None else id(self)

    def _key(self) -> frozenset[tuple[int, int, int]]:
        return frozenset(
            (
                (int(self.n1), math.floor(self.x1), math.floor(self.y1)),
                (int(self.n2), math.floor(self.x2), math.floor(self.y2)),
            )
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ControlPoint):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def to_line(self) -> str:
        values = [
            f"n{self.n1}",
            f"N{self.n2}",
            f"x{format_number(self.x1)}",
            f"y{format_number(self.y1)}",
            f"X{format_number(self.x2)}",
            f"Y{format_number(self.y2)}",
            f"t{self.type}",
        ]
        if self.generated:
            values.append("g1")
        return "c " + " ".join(values)

    def detailed_info(self) -> str:
        return (
            f"{self.to_line()} dist {self.dist:.4f} "
            f"pixel_dist {self.px:.4f},{self.py:.4f},{self.pdist:.4f} "
            f"pixel_r_dist {self.prx:.4f},{self.pry:.4f},{self.prdist:.4f} "
            f"conn_type {self.conn_type}"
        )


@dataclass(frozen=True)
class PanoramaVariable:
    """The `p` line: output panorama size and field of view."""

    w: int
    h: int
    v: float
    f: int = 0
    name: str = ""
    params: tuple[tuple[str, str], ...] = ()
    raw: str | None = None

    def to_line(self) -> str:
        parts = [f"f{self.f}", f"w{self.w}", f"h{self.h}", f"v{format_number(self.v)}"]
        parts.extend(f"{key}{value}" for key, value in self.params)
        parts.append(f'n"{self.name}"')
        return "p " + " ".join(parts)


@dataclass(frozen=True)
class OptimisationVariable:
    """A `v` line: which image attributes the optimizer may change, e.g. `v d1 e1`."""

    entries: tuple[tuple[str, int], ...] = ()
    raw: str | None = None

    @property
    def names(self) -> frozenset[str]:
        return frozenset(name for name, _ in self.entries)

    @property
    def image_ids(self) -> frozenset[int]:
        return frozenset(image_id for _, image_id in self.entries)

    def to_line(self) -> str:
        if not self.entries:
            return "v"
        return "v " + " ".join(f"{name}{image_id}" for name, image_id in self.entries)


def assign_grid_positions(images: Iterable[Image]) -> tuple[Image, ...]:
    """
    Set `column`/`row` to the rank of each image's `d`/`e` among the sorted unique values.
    Must be re-run whenever any `d`/`e` changes.
    """
    images = tuple(images)
    ds = sorted({float(image.d) for image in images})
    es = sorted({float(image.e) for image in images})
    column_of = {d: i for i, d in enumerate(ds)}
    row_of = {e: i for i, e in enumerate(es)}
    return tuple(replace(image, column=column_of[float(image.d)], row=row_of[float(image.e)]) for image in images)


def unique_by_identity(control_points: Iterable[ControlPoint]) -> tuple[ControlPoint, ...]:
    """Drop repeated control points (same raw identity), keeping first occurrences."""
    seen: set[object] = set()
    out: list[ControlPoint] = []
    for cp in control_points:
        key = cp.identity
        if key in seen:
            continue
        seen.add(key)
        out.append(cp)
    return tuple(out)
