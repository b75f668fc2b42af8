from __future__ import annotations

import pytest

from panocal.api.pto_io import DocumentError, parse_document, render_document
from panocal.document.transforms import (
    check_position_changes,
    convert_equaled_image_parameters,
    convert_horizontal_lines,
    convert_translation_parameters,
    fix_conversion_errors,
    merge_image_parameters,
    remove_anchor_variables,
    standardize_roll,
)

DOC = """p f0 w3000 h2000 v100 n"out.tif"
i w1000 h800 f0 v50 r0.1 p0 y0 TrX0 TrY0 TrZ0 d0 e0 n"a.jpg"
i w1000 h800 f0 v=0 r0.12 p0 y0 TrX900 TrY5 TrZ1 d0 e0 n"b.jpg"
i w1000 h800 f0 v=0 r0.11 p0 y0 TrX0 TrY700 TrZ0 d0 e0 n"c.jpg"
i w1000 h800 f0 v=0 r5 p0 y0 TrX900 TrY700 TrZ0 d0 e0 n"d.jpg"
v d0 e0
v d1 e1
v
c n0 N1 x1 y2 X3 Y4 t1
c n2 N3 x1.50 y2 X3 Y4 t2
"""


def test_standardize_roll_drops_outliers():
    doc, roll = standardize_roll(parse_document(DOC))
    assert roll == pytest.approx(0.11)
    assert all(image.r == roll for image in doc.images)
    assert parse_document(render_document(doc)).images[3].r == pytest.approx(0.11)


def test_standardize_roll_needs_images():
    with pytest.raises(ValueError):
        standardize_roll(parse_document('p w100 h100 v90 n"x"\n'))


def test_convert_translation_parameters():
    doc = convert_translation_parameters(parse_document(DOC))
    assert [(i.d, i.e) for i in doc.images] == [(0.0, 0.0), (900.0, 5.0), (0.0, 700.0), (900.0, 700.0)]
    assert all(i.tr_x == i.tr_y == i.tr_z == 0.0 for i in doc.images)
    lines = render_document(doc).splitlines()
    assert lines[5:9] == ["v d1 e1", "v d2 e2", "v d3 e3", "v"]
    assert "v d0 e0" not in lines
    assert 'i w1000 h800 f0 v=0 r0.12 p0 y0 TrX0 TrY0 TrZ0 d900 e5 n"b.jpg"' in lines


def test_convert_equaled_image_parameters():
    lines = render_document(convert_equaled_image_parameters(parse_document(DOC))).splitlines()
    assert lines[2] == 'i w1000 h800 f0 v50 r0.12 p0 y0 TrX900 TrY5 TrZ1 d0 e0 n"b.jpg"'
    assert not any("=" in line for line in lines)


def test_remove_anchor_variables():
    doc = remove_anchor_variables(parse_document(DOC))
    assert [v.to_line() for v in doc.optimisation_variables] == ["v d1 e1", "v"]
    assert "v d0 e0" not in render_document(doc)


def test_convert_horizontal_lines():
    out = render_document(convert_horizontal_lines(parse_document(DOC)))
    assert "c n0 N1 x1 y2 X3 Y4 t2" in out.splitlines()
    assert "t1" not in out


def test_fix_conversion_errors_rerenders_horizontal_lines():
    lines = render_document(fix_conversion_errors(parse_document(DOC))).splitlines()
    assert "c n2 N3 x1.5 y2 X3 Y4 t2" in lines
    assert "c n0 N1 x1 y2 X3 Y4 t1" in lines
    assert render_document(parse_document(DOC)).count("x1.50") == 1


TRANSLATED = """p f0 w3000 h2000 v100 n"out.tif"
i w1000 h800 f0 v50 r0 p0 y0 TrX0 TrY0 TrZ0 n"a.jpg"
i w1000 h800 f0 v50 r0 p0 y0 TrX0.5 TrY0.3 TrZ0 n"b.jpg"
i w1000 h800 f0 v50 r0 p0 y0 TrX0.2 TrY0.8 TrZ0 n"c.jpg"
v TrX1 TrY1
v TrX2
v TrY2
v
"""

MOVED = """p f0 w3000 h2000 v100 n"out.tif"
i w1000 h800 f0 v50 r0 p0 y0 TrX0 TrY0 TrZ0 n"a.jpg"
i w1000 h800 f0 v50 r0 p0 y0 TrX0.52 TrY0.4 TrZ0 n"b.jpg"
i w1000 h800 f0 v50 r0 p0 y0 TrX0.1 TrY0.8 TrZ0 n"c.jpg"
c n0 N1 x10 y20 X30 Y40 t0
c n1 N2 x50 y60 X70 Y80 t0
"""


def test_check_position_changes_drops_moved_translations():
    doc = check_position_changes(parse_document(TRANSLATED), parse_document(MOVED))
    assert [v.to_line() for v in doc.optimisation_variables] == ["v TrX1", "v TrY2", "v"]
    text = render_document(doc)
    assert "v TrX2\n" not in text
    assert "v TrX1\nv TrY2\nv\n" in text


def test_check_position_changes_needs_every_image():
    with pytest.raises(DocumentError):
        check_position_changes(parse_document(TRANSLATED), parse_document('p w100 h100 v90 n"x"\n'))


def test_merge_image_parameters_inserts_after_the_v_block():
    doc = parse_document(DOC + "\n# endoffile\n")
    check = parse_document(MOVED)
    merged = merge_image_parameters(doc, check)
    assert len(merged.control_points) == 4
    lines = render_document(merged).splitlines()
    end = lines.index("v")
    assert lines[end + 1 : end + 3] == [cp.to_line() for cp in check.control_points]
    assert lines[end + 3] == "c n0 N1 x1 y2 X3 Y4 t1"
    assert lines[-1] == "# endoffile"


def test_merge_image_parameters_needs_a_v_block():
    with pytest.raises(DocumentError):
        merge_image_parameters(parse_document('p w100 h100 v90 n"x"\n'), parse_document(MOVED))
