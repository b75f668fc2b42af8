"""Maintenance rewrites of a parsed document. Each returns a new `Document`."""

from __future__ import annotations

import logging
import math
from dataclasses import replace

from panocal.api.pto_io import Document, DocumentError, parse_document, render_document
from panocal.core.records import HORIZONTAL_LINE, VERTICAL_LINE, OptimisationVariable
from panocal.core.stats import calculate_average, calculate_average_and_std

logger = logging.getLogger(__name__)


def standardize_roll(document: Document) -> tuple[Document, float]:
    """Give every image the average roll, after dropping rolls more than one std from the mean."""
    if not document.images:
        raise ValueError("document has no images")
    rolls = [image.r for image in document.images]
    avg, std = calculate_average_and_std(rolls, name="roll")
    kept = [r for r in rolls if abs(r - avg) < std] or rolls
    logger.info("removed %d roll outliers", len(rolls) - len(kept))
    roll = calculate_average(kept)
    logger.info("converting all rolls to %s", roll)
    images = tuple(replace(image, r=roll) for image in document.images)
    return replace(document, images=images), roll


def convert_translation_parameters(document: Document, anchor: int = 0) -> Document:
    """
    Move TrX/TrY into d/e (TrX/TrY/TrZ reset to 0) and replace the optimisation variables
    with `v d<i> e<i>` for every image except the anchor, followed by a bare `v`.
    """
    images = tuple(
        replace(
            image,
            d=image.tr_x,
            e=image.tr_y,
            tr_x=0.0,
            tr_y=0.0,
            tr_z=0.0,
            links=tuple(link for link in image.links if link[0] not in ("d", "e")),
        )
        for image in document.images
    )
    variables = tuple(
        OptimisationVariable(entries=(("d", image.id), ("e", image.id)))
        for image in sorted(images, key=lambda i: i.id)
        if image.id != anchor
    ) + (OptimisationVariable(),)
    return replace(document, images=images, optimisation_variables=variables)


def convert_equaled_image_parameters(document: Document) -> Document:
    """Write linked (`key=N`) image attributes out as plain values."""
    images = tuple(replace(image, links=()) for image in document.images)
    return replace(document, images=images, dirty=document.dirty | {i.raw for i in images if i.raw is not None})


def remove_anchor_variables(document: Document, anchor: int = 0) -> Document:
    """Drop `v` lines that optimise the position (`d`/`e`) of the anchor image."""
    variables = tuple(
        v
        for v in document.optimisation_variables
        if not any(name in ("d", "e") and image_id == anchor for name, image_id in v.entries)
    )
    logger.info("removed %d anchor variable lines", len(document.optimisation_variables) - len(variables))
    return replace(document, optimisation_variables=variables)


def convert_horizontal_lines(document: Document) -> Document:
    """Retype vertical line control points (t1) as horizontal lines (t2)."""
    cps = tuple(
        replace(cp, type=HORIZONTAL_LINE) if cp.type == VERTICAL_LINE else cp for cp in document.control_points
    )
    return replace(document, control_points=cps)


def fix_conversion_errors(document: Document) -> Document:
    """Re-render every horizontal line control point (t2) in canonical form."""
    dirty = {cp.raw for cp in document.control_points if cp.type == HORIZONTAL_LINE and cp.raw is not None}
    return replace(document, dirty=document.dirty | dirty)


def _relative_change(before: float, after: float) -> float:
    if after == 0.0:
        return 0.0 if before == 0.0 else math.inf
    return abs(1.0 - abs(before / after))


def check_position_changes(document: Document, check: Document, threshold: float = 0.10) -> Document:
    """
    Stop optimising the TrX/TrY of images that moved too far.

    Images are matched by id against `check`; when `|1 - |TrX / TrX_check||` (or the TrY
    equivalent) exceeds `threshold`, that image's `TrX<i>` (or `TrY<i>`) entries are removed
    from the optimisation variables. A `v` line left empty is dropped.
    """
    checked = {image.id: image for image in check.images}
    missing = sorted(image.id for image in document.images if image.id not in checked)
    if missing:
        raise DocumentError(f"check document has no images {missing}")

    drop: set[tuple[str, int]] = set()
    for image in document.images:
        other = checked[image.id]
        if _relative_change(image.tr_x, other.tr_x) > threshold:
            drop.add(("TrX", image.id))
        if _relative_change(image.tr_y, other.tr_y) > threshold:
            drop.add(("TrY", image.id))

    variables = []
    for v in document.optimisation_variables:
        entries = tuple(entry for entry in v.entries if entry not in drop)
        if entries == v.entries:
            variables.append(v)
            continue
        for name, image_id in v.entries:
            if (name, image_id) in drop:
                logger.info("removing %s%d", name, image_id)
        if entries:
            variables.append(replace(v, entries=entries))
    return replace(document, optimisation_variables=tuple(variables))


def merge_image_parameters(document: Document, check: Document) -> Document:
    """
    Splice the control points of `check` into `document` right after its `v` block.

    The result is re-parsed, so every record gets a fresh raw identity.
    """
    lines = render_document(document).splitlines()
    v_lines = [index for index, line in enumerate(lines) if line == "v" or line.startswith("v ")]
    if not v_lines:
        raise DocumentError("document has no optimisation variable ('v') lines to merge after")
    end = v_lines[0]
    while end + 1 < len(lines) and (lines[end + 1] == "v" or lines[end + 1].startswith("v ")):
        end += 1
    merged = [cp.to_line() for cp in check.control_points]
    logger.info("merging %d control points after line %d", len(merged), end + 1)
    return parse_document("\n".join(lines[: end + 1] + merged + lines[end + 1 :]) + "\n")
