import os
import sys
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

import fitz  # PyMuPDF
import pytest

ROOT = Path(__file__).resolve().parents[2]
BACKEND_ROOT = ROOT / "backend"
for candidate in (ROOT, BACKEND_ROOT):
    path_str = str(candidate)
    if path_str not in sys.path:
        sys.path.append(path_str)

# Keep runtime state (logs, downloads, tmp) out of the repository during tests.
os.environ.setdefault("STOCKDIFF_ROOT", tempfile.mkdtemp(prefix="stockdiff-tests-"))
os.environ.setdefault("BACKEND_LOG_TO_STDOUT", "0")

ListingFactory = Callable[[str, Sequence[Sequence[str]]], Path]


@pytest.fixture
def listing_pdf(tmp_path: Path) -> ListingFactory:
    """Build a text-layer PDF with one line of text every 20pt per page."""

    def _build(name: str, pages: Sequence[Sequence[str]]) -> Path:
        doc = fitz.open()
        try:
            for lines in pages:
                page = doc.new_page(width=595, height=842)
                for idx, line in enumerate(lines):
                    page.insert_text((40, 60 + idx * 20), line, fontsize=10, fontname="helv")
            path = tmp_path / name
            doc.save(str(path))
        finally:
            doc.close()
        return path

    return _build
