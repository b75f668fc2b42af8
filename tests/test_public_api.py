from __future__ import annotations


def test_public_api_exports() -> None:
    import panocal as pc

    assert hasattr(pc, "load_document")
    assert hasattr(pc, "render_document")
    assert hasattr(pc, "clean_document")
    assert hasattr(pc, "optimize_document")
    assert hasattr(pc, "diagnose_document")
    assert hasattr(pc, "save_correction")
    assert hasattr(pc, "GeometrySnapshot")
    assert hasattr(pc.config, "CalibrationConfig")
