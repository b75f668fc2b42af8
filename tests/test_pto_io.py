from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from panocal.api.pto_io import DocumentError, load_document, parse_document, render_document, save_document
from panocal.core.records import ControlPoint

SAMPLE = """# hugin project file
#hugin_ptoversion 2
p f2 w3000 h1500 v360  E0 R0 n"TIFF_m c:LZW r:CROP"
m i0

# image lines
#-hugin  cropFactor=1
i w1000 h800 f0 v50 Ra0 Rb0 Eev6.5 r0.5 p0 y0 TrX10 TrY20 TrZ0 d0 e0 n"dir/img 0.jpg"
#-hugin  cropFactor=1
i w1000 h800 f0 v=0 Ra=0 Rb0 Eev6.5 r0.25 p0 y0 TrX0 TrY0 TrZ0 d900 e0 n"img1.jpg"

# specify variables that should be optimized
v d1 e1
v

# control points
c n0 N1 x100 y400 X990 Y400 t0
c n0 N1 x400.5 y400 X1290 Y401 t0
c n1 N1 x10 y20 X12 Y700 t1

#hugin_optimizeReferenceImage 0
"""


def test_parse_records():
    doc = parse_document(SAMPLE)
    assert doc.variable.w == 3000
    assert doc.variable.v == 360.0
    assert doc.variable.name == "TIFF_m c:LZW r:CROP"

    first, second = doc.images
    assert first.name == "dir/img 0.jpg"
    assert (first.r, first.tr_x, first.tr_y) == (0.5, 10.0, 20.0)
    assert first.param("Eev") == "6.5"
    assert second.v == 50.0
    assert second.param("Ra") == "0"
    assert dict((k, t) for k, t, _ in second.links) == {"v": 0, "Ra": 0}

    assert [cp.x1 for cp in doc.control_points] == [100.0, 400.5, 10.0]
    assert doc.control_points[2].is_vertical_line
    assert doc.control_points[0].raw == "16:c n0 N1 x100 y400 X990 Y400 t0"
    assert [v.to_line() for v in doc.optimisation_variables] == ["v d1 e1", "v"]


def test_unchanged_document_renders_verbatim():
    assert render_document(parse_document(SAMPLE)) == SAMPLE


def test_snapshot_roundtrip_keeps_text():
    doc = parse_document(SAMPLE)
    assert render_document(doc.with_snapshot(doc.snapshot())) == SAMPLE


def test_changed_records_are_rerendered_and_removed_ones_dropped():
    doc = parse_document(SAMPLE)
    images = (doc.images[0], replace(doc.images[1], d=905.0))
    doc = replace(doc, images=images).without([doc.control_points[1]])
    out = render_document(doc).splitlines()
    assert 'i w1000 h800 f0 v=0 Ra=0 Rb0 Eev6.5 r0.25 p0 y0 TrX0 TrY0 TrZ0 d905 e0 n"img1.jpg"' in out
    assert "c n0 N1 x400.5 y400 X1290 Y401 t0" not in out
    assert "c n0 N1 x100 y400 X990 Y400 t0" in out
    assert "#hugin_optimizeReferenceImage 0" in out


def test_changed_linked_value_is_written_out():
    doc = parse_document(SAMPLE)
    doc = replace(doc, images=(doc.images[0], replace(doc.images[1], v=60.0)))
    assert 'i w1000 h800 f0 v60 Ra=0 Rb0 Eev6.5 r0.25 p0 y0 TrX0 TrY0 TrZ0 d900 e0 n"img1.jpg"' in render_document(doc)


def test_new_control_points_follow_the_last_control_point():
    doc = parse_document(SAMPLE)
    new = ControlPoint(n1=0, n2=1, x1=1.0, y1=2.0, x2=3.0, y2=4.0, type=1, generated=True)
    doc = replace(doc, control_points=doc.control_points + (new,))
    out = render_document(doc).splitlines()
    index = out.index("c n1 N1 x10 y20 X12 Y700 t1")
    assert out[index + 1] == "c n0 N1 x1 y2 X3 Y4 t1 g1"


def test_new_records_without_lines_of_their_kind_fall_back():
    doc = parse_document('p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\n')
    new = ControlPoint(n1=0, n2=0, x1=1.0, y1=1.0, x2=2.0, y2=2.0)
    out = render_document(replace(doc, control_points=(new,)))
    assert out == 'p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\nc n0 N0 x1 y1 X2 Y2 t0\n'


def test_duplicate_lines_keep_distinct_identities():
    doc = parse_document('p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\nc n0 N0 x1 y1 X2 Y2 t1\nc n0 N0 x1 y1 X2 Y2 t1\n')
    first, second = doc.control_points
    assert first == second
    assert first.raw != second.raw
    assert render_document(doc.without([first])).count("c n0 N0") == 1


@pytest.mark.parametrize(
    "text",
    [
        'p w100 h100 v90 n"x"\np w100 h100 v90 n"y"\n',
        'p w100 h100 v90 n"x"\ni w10 v50 n"a"\n',
        'p w100 h100 v90 n"x"\ni w10 h10 v=3 n"a"\n',
        'p w100 h100 v90 n"x"\ni w10 h10 v=1 n"a"\ni w10 h10 v=0 n"b"\n',
        'p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\nc n0 N1 x1 y1 X2 Y2\n',
        'p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\nc n0 N0 xabc y1 X2 Y2\n',
        'p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\nc n0 N0 x1 y1 X2\n',
        'p w100 h100 v90 n"x"\ni w10 h10 v50 n"a"\nv dx\n',
    ],
)
def test_malformed_documents_raise(text):
    with pytest.raises(DocumentError):
        parse_document(text)


def test_snapshot_needs_a_panorama_line():
    with pytest.raises(DocumentError):
        parse_document('i w10 h10 v50 n"a"\n').snapshot()


def test_load_and_save(tmp_path: Path):
    src = tmp_path / "in.pto"
    src.write_text(SAMPLE, encoding="utf-8")
    out = save_document(load_document(src), tmp_path / "out" / "copy.pto")
    assert out.read_text(encoding="utf-8") == SAMPLE
    with pytest.raises(DocumentError):
        load_document(tmp_path / "missing.pto")
