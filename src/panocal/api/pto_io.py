"""
Read and write panorama project (`.pto`) documents.

Only `i`, `p`, `v` and `c` lines are parsed; every other line is carried through
verbatim. Each parsed record keeps `raw = "<line index>:<line>"`, which is how
`render_document` finds the line a record came from.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Sequence

from panocal.core.geometry import GeometrySnapshot
from panocal.core.records import (
    EQUALED_ATTRIBUTES,
    IMAGE_ATTRIBUTES,
    IMAGE_TYPED_FIELDS,
    ControlPoint,
    Image,
    OptimisationVariable,
    PanoramaVariable,
)

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r'[A-Za-z]+"[^"]*"|\S+')
_KEY = re.compile(r"([A-Za-z]+)(.*)", re.S)
_VARIABLE = re.compile(r"([A-Za-z]+)(\d+)")
_INT_FIELDS = {"w", "h", "f"}
_IMAGE_KEYS = sorted(IMAGE_ATTRIBUTES, key=len, reverse=True)


class DocumentError(ValueError):
    pass


@dataclass(frozen=True)
class Document:
    lines: tuple[str, ...]
    images: tuple[Image, ...] = ()
    variable: PanoramaVariable | None = None
    control_points: tuple[ControlPoint, ...] = ()
    optimisation_variables: tuple[OptimisationVariable, ...] = ()
    # Raw identities re-rendered even when their record is unchanged.
    dirty: frozenset[str] = frozenset()

    def snapshot(self) -> GeometrySnapshot:
        if self.variable is None:
            raise DocumentError("document has no panorama ('p') line")
        return GeometrySnapshot.build(self.images, self.variable, self.control_points)

    def with_snapshot(self, snapshot: GeometrySnapshot) -> "Document":
        """Take the images (and control points) of `snapshot`, dropping its derived fields."""
        images = tuple(replace(image, column=None, row=None) for image in snapshot.images)
        return replace(self, images=images, control_points=snapshot.control_points)

    def without(self, control_points: Iterable[ControlPoint]) -> "Document":
        drop = {cp.identity for cp in control_points}
        return replace(self, control_points=tuple(cp for cp in self.control_points if cp.identity not in drop))


def line_index(raw: str | None) -> int | None:
    if raw is None:
        return None
    head, _, _ = raw.partition(":")
    return int(head)


def _tokens(line: str) -> list[str]:
    return _TOKEN.findall(line)[1:]


def _number(key: str, value: str, line_no: int) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise DocumentError(f"line {line_no + 1}: invalid value {value!r} for {key}") from e


def _unquote(value: str) -> str:
    return value[1:-1] if len(value) >= 2 and value.startswith('"') and value.endswith('"') else value


def _split_image_token(token: str) -> tuple[str, str]:
    for key in _IMAGE_KEYS:
        if token.startswith(key):
            return key, token[len(key):]
    m = _KEY.match(token)
    if m is None:
        return token, ""
    return m.group(1), m.group(2)


def _parse_images(entries: Sequence[tuple[int, str]]) -> tuple[Image, ...]:
    # First pass: raw tokens per image, so `key=N` links can point forward.
    tokens: list[list[tuple[str, str]]] = [[_split_image_token(t) for t in _tokens(line)] for _, line in entries]

    def resolve(image_id: int, key: str, seen: tuple[int, ...] = ()) -> str:
        if image_id < 0 or image_id >= len(tokens):
            raise DocumentError(f"image {seen[-1] if seen else image_id}: {key} links to unknown image {image_id}")
        if image_id in seen:
            raise DocumentError(f"image {image_id}: circular link for {key}")
        for k, value in tokens[image_id]:
            if k != key:
                continue
            if key in EQUALED_ATTRIBUTES and value.startswith("="):
                return resolve(int(_number(key, value[1:], entries[image_id][0])), key, seen + (image_id,))
            return value
        raise DocumentError(f"image {image_id}: linked attribute {key} is missing")

    images: list[Image] = []
    for image_id, ((line_no, line), parts) in enumerate(zip(entries, tokens)):
        typed: dict[str, float] = {}
        params: list[tuple[str, str]] = []
        linked: list[tuple[str, int]] = []
        name = ""
        for key, value in parts:
            if key in EQUALED_ATTRIBUTES and value.startswith("="):
                target = int(_number(key, value[1:], line_no))
                linked.append((key, target))
                value = resolve(target, key, (image_id,))
            if key == "n":
                name = _unquote(value)
            elif key in IMAGE_TYPED_FIELDS:
                typed[IMAGE_TYPED_FIELDS[key]] = _number(key, value, line_no)
            else:
                params.append((key, value))

        missing = [k for k in ("w", "h", "v") if k not in typed]
        if missing:
            raise DocumentError(f"line {line_no + 1}: image line without {', '.join(missing)}")
        for key in _INT_FIELDS:
            if key in typed:
                typed[key] = int(typed[key])

        image = Image(id=image_id, name=name, params=tuple(params), raw=f"{line_no}:{line}", **typed)  # type: ignore[arg-type]
        links = tuple((key, target, image.attribute_value(key) or "") for key, target in linked)
        images.append(replace(image, links=links))
    return tuple(images)


def _parse_control_point(line_no: int, line: str) -> ControlPoint:
    values: dict[str, str] = {}
    for token in _tokens(line):
        values[token[0]] = token[1:]
    missing = [k for k in ("n", "N", "x", "y", "X", "Y") if k not in values]
    if missing:
        raise DocumentError(f"line {line_no + 1}: control point without {', '.join(missing)}")
    return ControlPoint(
        n1=int(_number("n", values["n"], line_no)),
        n2=int(_number("N", values["N"], line_no)),
        x1=_number("x", values["x"], line_no),
        y1=_number("y", values["y"], line_no),
        x2=_number("X", values["X"], line_no),
        y2=_number("Y", values["Y"], line_no),
        type=int(_number("t", values.get("t", "0"), line_no)),
        generated=bool(int(_number("g", values.get("g", "0"), line_no))),
        raw=f"{line_no}:{line}",
    )


def _parse_variable(line_no: int, line: str) -> PanoramaVariable:
    typed: dict[str, float] = {}
    params: list[tuple[str, str]] = []
    name = ""
    for token in _tokens(line):
        m = _KEY.match(token)
        key, value = (m.group(1), m.group(2)) if m else (token, "")
        if key == "n":
            name = _unquote(value)
        elif key in ("w", "h", "v", "f"):
            typed[key] = _number(key, value, line_no)
        else:
            params.append((key, value))
    missing = [k for k in ("w", "h", "v") if k not in typed]
    if missing:
        raise DocumentError(f"line {line_no + 1}: panorama line without {', '.join(missing)}")
    return PanoramaVariable(
        w=int(typed["w"]),
        h=int(typed["h"]),
        v=typed["v"],
        f=int(typed.get("f", 0)),
        name=name,
        params=tuple(params),
        raw=f"{line_no}:{line}",
    )


def _parse_optimisation_variable(line_no: int, line: str) -> OptimisationVariable:
    entries: list[tuple[str, int]] = []
    for token in _tokens(line):
        m = _VARIABLE.fullmatch(token)
        if m is None:
            raise DocumentError(f"line {line_no + 1}: invalid optimisation variable {token!r}")
        entries.append((m.group(1), int(m.group(2))))
    return OptimisationVariable(entries=tuple(entries), raw=f"{line_no}:{line}")


def _kind(line: str) -> str | None:
    head = line.split(" ", 1)[0]
    return head if head in ("i", "p", "v", "c") else None


def parse_document(text: str) -> Document:
    lines = tuple(text.splitlines())
    image_lines: list[tuple[int, str]] = []
    variable: PanoramaVariable | None = None
    control_points: list[ControlPoint] = []
    optimisation_variables: list[OptimisationVariable] = []

    for line_no, line in enumerate(lines):
        kind = _kind(line)
        if kind == "i":
            image_lines.append((line_no, line))
        elif kind == "p":
            if variable is not None:
                raise DocumentError(f"line {line_no + 1}: more than one panorama line")
            variable = _parse_variable(line_no, line)
        elif kind == "c":
            control_points.append(_parse_control_point(line_no, line))
        elif kind == "v":
            optimisation_variables.append(_parse_optimisation_variable(line_no, line))

    images = _parse_images(image_lines)
    known = {image.id for image in images}
    for cp in control_points:
        if cp.n1 not in known or cp.n2 not in known:
            raise DocumentError(f"control point {cp.to_line()!r} references an unknown image")

    logger.debug(
        "parsed %d images, %d control points, %d optimisation variables",
        len(images),
        len(control_points),
        len(optimisation_variables),
    )
    return Document(
        lines=lines,
        images=images,
        variable=variable,
        control_points=tuple(control_points),
        optimisation_variables=tuple(optimisation_variables),
    )


def load_document(path: Path) -> Document:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DocumentError(f"cannot read {path}: {e}") from e
    return parse_document(text)


def _original_records(document: Document) -> dict[int, str]:
    """Line index -> the line each record would render to if unchanged."""
    parsed = parse_document("\n".join(document.lines))
    out: dict[int, str] = {}
    records = [*parsed.images, *parsed.control_points, *parsed.optimisation_variables]
    if parsed.variable is not None:
        records.append(parsed.variable)
    for record in records:
        out[line_index(record.raw)] = record.to_line()  # type: ignore[index]
    return out


# Where new records go when the document has no line of their own kind.
_FALLBACK_KINDS = {"c": ("v", "i", "p"), "v": ("i", "p"), "i": ("p",), "p": ()}


def render_document(document: Document) -> str:
    """
    Write `document` back as text.

    Unchanged records keep their original line; changed (or `dirty`) records are
    re-rendered; records whose line is gone from the document are dropped. New records
    (no raw identity) are inserted after the last original line of their kind, or appended.
    """
    original = _original_records(document)

    by_line: dict[int, str] = {}
    new: dict[str, list[str]] = {"i": [], "p": [], "v": [], "c": []}
    groups: list[tuple[str, Sequence[object]]] = [
        ("i", document.images),
        ("c", document.control_points),
        ("v", document.optimisation_variables),
        ("p", (document.variable,) if document.variable is not None else ()),
    ]
    for kind, records in groups:
        for record in records:
            raw = record.raw  # type: ignore[attr-defined]
            index = line_index(raw)
            text = record.to_line()  # type: ignore[attr-defined]
            if index is None:
                new[kind].append(text)
            elif text == original.get(index) and raw not in document.dirty:
                by_line[index] = document.lines[index]
            else:
                by_line[index] = text

    last_of_kind: dict[str, int] = {}
    for index, line in enumerate(document.lines):
        kind = _kind(line)
        if kind is not None:
            last_of_kind[kind] = index

    inserts: dict[int, list[str]] = {}
    tail: list[str] = []
    for kind in ("p", "i", "v", "c"):
        if not new[kind]:
            continue
        anchor = next((last_of_kind[k] for k in (kind, *_FALLBACK_KINDS[kind]) if k in last_of_kind), None)
        if anchor is None:
            tail.extend(new[kind])
        else:
            inserts.setdefault(anchor, []).extend(new[kind])

    out: list[str] = []
    for index, line in enumerate(document.lines):
        if _kind(line) is None:
            out.append(line)
        elif index in by_line:
            out.append(by_line[index])
        out.extend(inserts.get(index, ()))
    out.extend(tail)
    return "\n".join(out) + "\n"


def save_document(document: Document, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_document(document), encoding="utf-8")
    logger.info("wrote %s", path)
    return path
