from panocal import config
from panocal.api import (
    Document,
    clean_document,
    diagnose_document,
    load_correction,
    load_document,
    optimize_document,
    render_document,
    save_correction,
    save_document,
)
from panocal.core.geometry import GeometrySnapshot

__all__ = [
    "config",
    "Document",
    "GeometrySnapshot",
    "clean_document",
    "diagnose_document",
    "load_correction",
    "load_document",
    "optimize_document",
    "render_document",
    "save_correction",
    "save_document",
]
