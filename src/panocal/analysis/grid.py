from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from panocal.core.records import ControlPoint, Image, Orientation, assign_grid_positions

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Pair:
    """
    Two grid-adjacent images (sorted by id) and the control points joining them.

    `control_points` excludes generated points; those are kept apart in
    `generated_control_points` so statistics never see them.
    """

    images: tuple[Image, Image]
    type: Orientation
    control_points: tuple[ControlPoint, ...] = ()
    generated_control_points: tuple[ControlPoint, ...] = ()

    @property
    def first_image(self) -> Image:
        return self.images[0]

    @property
    def last_image(self) -> Image:
        return self.images[1]

    @property
    def image_ids(self) -> tuple[int, int]:
        return (self.images[0].id, self.images[1].id)

    @property
    def is_horizontal(self) -> bool:
        return self.type == "horizontal"

    @property
    def is_vertical(self) -> bool:
        return self.type == "vertical"

    @property
    def connected(self) -> bool:
        return bool(self.control_points)

    @property
    def unconnected(self) -> bool:
        return not self.control_points

    @property
    def total_control_points(self) -> int:
        return len(self.control_points) + len(self.generated_control_points)

    def __str__(self) -> str:
        return f"[{self.images[0].id},{self.images[1].id}]"

    def info(self) -> str:
        a, b = self.images
        return f"{self}({self.type}) image_1 d,e: {a.d},{a.e} | image_2 d,e: {b.d},{b.e}"


@dataclass(frozen=True)
class Grid:
    """Images arranged in rows/columns and the horizontal/vertical pairs between neighbours."""

    images: tuple[Image, ...]
    pairs: tuple[Pair, ...]
    n_columns: int
    n_rows: int

    @classmethod
    def build(cls, images: Iterable[Image], control_points: Iterable[ControlPoint]) -> "Grid":
        """
        Pair every image with its right neighbour (same row, next column) and its lower
        neighbour (same column, next row). Missing cells are skipped, so sparse grids work.
        """
        images = tuple(images)
        if any(image.column is None or image.row is None for image in images):
            images = assign_grid_positions(images)

        cells: dict[tuple[int, int], Image] = {}
        for image in sorted(images, key=lambda i: i.id):
            key = (int(image.row), int(image.column))  # type: ignore[arg-type]
            if key in cells:
                logger.warning(
                    "images %d and %d share grid cell row %d column %d; keeping %d",
                    cells[key].id,
                    image.id,
                    key[0],
                    key[1],
                    cells[key].id,
                )
                continue
            cells[key] = image

        by_ids: dict[frozenset[int], list[ControlPoint]] = {}
        for cp in control_points:
            by_ids.setdefault(cp.image_ids, []).append(cp)

        columns = sorted({c for _, c in cells})
        rows = sorted({r for r, _ in cells})

        def make_pair(a: Image, b: Image, orientation: Orientation) -> Pair:
            first, last = sorted((a, b), key=lambda i: i.id)
            cps = by_ids.get(frozenset((a.id, b.id)), [])
            return Pair(
                images=(first, last),
                type=orientation,
                control_points=tuple(cp for cp in cps if not cp.generated),
                generated_control_points=tuple(cp for cp in cps if cp.generated),
            )

        pairs: list[Pair] = []
        for row in rows:
            for column in columns:
                a = cells.get((row, column))
                b = cells.get((row, column + 1))
                if a is not None and b is not None:
                    pairs.append(make_pair(a, b, "horizontal"))
        for column in columns:
            for row in rows:
                a = cells.get((row, column))
                b = cells.get((row + 1, column))
                if a is not None and b is not None:
                    pairs.append(make_pair(a, b, "vertical"))

        return cls(images=images, pairs=tuple(pairs), n_columns=len(columns), n_rows=len(rows))

    @property
    def horizontal(self) -> tuple[Pair, ...]:
        return self.pairs_of("horizontal")

    @property
    def vertical(self) -> tuple[Pair, ...]:
        return self.pairs_of("vertical")

    def pairs_of(self, orientation: Orientation) -> tuple[Pair, ...]:
        return tuple(p for p in self.pairs if p.type == orientation)

    def image_at(self, row: int, column: int) -> Image | None:
        for image in self.images:
            if image.row == row and image.column == column:
                return image
        return None

    def unconnected(self) -> tuple[Pair, ...]:
        return tuple(sorted((p for p in self.pairs if p.unconnected), key=str))

    def without_enough_control_points(self, count: int = 3, ignore_connected: bool = False) -> tuple[Pair, ...]:
        """Pairs with fewer than `count` control points (only connected ones unless `ignore_connected`)."""
        return tuple(
            p for p in self.pairs if (ignore_connected or p.connected) and len(p.control_points) < count
        )
