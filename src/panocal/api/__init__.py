from panocal.api.calibration_io import load_correction, save_correction
from panocal.api.pipeline import clean_document, diagnose_document, optimize_document, write_report
from panocal.api.pto_io import Document, DocumentError, load_document, parse_document, render_document, save_document

__all__ = [
    "Document",
    "DocumentError",
    "clean_document",
    "diagnose_document",
    "load_correction",
    "load_document",
    "optimize_document",
    "parse_document",
    "render_document",
    "save_correction",
    "save_document",
    "write_report",
]
