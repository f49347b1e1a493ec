"""Read positioned text fragments out of a PDF's text layer with pdfplumber."""

from __future__ import annotations

import logging
from pathlib import Path

import pdfplumber  # MIT (uses pdfminer.six, MIT)
from pdfplumber.page import Page as PdfPage

from layout import Y_LINE_TOL, Fragment, document_lines

logging.getLogger("pdfminer").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

# Word assembly inside pdfplumber; row clustering happens later in layout.py.
WORD_X_TOL = 3.0
WORD_Y_TOL = 3.0


def page_fragments(page: PdfPage) -> list[Fragment]:
    """Words on one page, with y flipped to PDF user space (bottom-up)."""
    words = page.extract_words(
        x_tolerance=WORD_X_TOL,
        y_tolerance=WORD_Y_TOL,
        keep_blank_chars=False,
        use_text_flow=False,
    )
    height = float(page.height)
    out: list[Fragment] = []
    for word in words:
        text = str(word.get("text") or "")
        if not text.strip():
            continue
        out.append(Fragment(x=float(word["x0"]), y=height - float(word["bottom"]), text=text))
    return out


def read_pdf_fragments(pdf_path: str | Path) -> list[list[Fragment]]:
    with pdfplumber.open(str(pdf_path)) as doc:
        pages = [page_fragments(page) for page in doc.pages]
    logger.debug(
        "Read %d fragments over %d page(s) from %s",
        sum(len(p) for p in pages),
        len(pages),
        pdf_path,
    )
    return pages


def extract_pdf_lines(pdf_path: str | Path, y_tol: float = Y_LINE_TOL) -> list[str]:
    return document_lines(read_pdf_fragments(pdf_path), y_tol=y_tol)
