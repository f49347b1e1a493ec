"""Render selected stock items into a paginated transfer-request PDF (PyMuPDF)."""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import fitz  # PyMuPDF

from layout import normalize_line

DEFAULT_TITLE = "Transferência de produtos"

PAGE_WIDTH = 595.0  # A4
PAGE_HEIGHT = 842.0
FONT = "helv"

TITLE_SIZE = 18.0
SUBTITLE_SIZE = 10.0
HEADER_SIZE = 11.0
BODY_SIZE = 10.0

TITLE_TOP = 36.0
SUBTITLE_TOP = 62.0
TABLE_TOP = 90.0
CONTINUED_TABLE_TOP = 60.0
HEADER_GAP = 20.0
ROW_HEIGHT = 16.0
PAGE_BREAK_Y = 780.0
RULE_OFFSET = 14.0
RULE_X0 = 40.0
RULE_X1 = 560.0

# (x, width) per column
CODE_COL = (40.0, 80.0)
DESC_COL = (125.0, 360.0)
QTY_COL = (490.0, 50.0)

ELLIPSIS = "..."


@dataclass(frozen=True)
class TransferLine:
    code: str
    description: str
    quantity: str


def _coerce_line(item: Mapping[str, Any]) -> TransferLine:
    code = item.get("code")
    quantity = item.get("quantity")
    return TransferLine(
        code="" if code is None else str(code),
        description=normalize_line(str(item.get("description") or "")),
        quantity=str(0 if quantity is None else quantity),
    )


def text_width(text: str, fontsize: float = BODY_SIZE) -> float:
    return float(fitz.get_text_length(text, fontname=FONT, fontsize=fontsize))


def truncate_text(text: str, max_width: float, measure: Callable[[str], float]) -> str:
    """Drop trailing characters until ``text`` fits, ending with ``...`` when cut."""
    out = text
    while out and measure(out) > max_width:
        out = out[:-1]
    if len(out) < len(text):
        out = out[: max(0, len(out) - len(ELLIPSIS))] + ELLIPSIS
    return out


def paginate(lines: list[TransferLine]) -> list[list[tuple[TransferLine, float]]]:
    """Assign each line a page and a top y; a page break opens when y passes the limit."""
    pages: list[list[tuple[TransferLine, float]]] = [[]]
    y = TABLE_TOP + HEADER_GAP
    for line in lines:
        if y > PAGE_BREAK_Y:
            pages.append([])
            y = CONTINUED_TABLE_TOP + HEADER_GAP
        pages[-1].append((line, y))
        y += ROW_HEIGHT
    return pages


def _baseline(top: float, fontsize: float) -> float:
    return top + fontsize * 0.8


def _write(page: fitz.Page, x: float, top: float, text: str, fontsize: float) -> None:
    if text:
        page.insert_text((x, _baseline(top, fontsize)), text, fontsize=fontsize, fontname=FONT)


def _write_right(page: fitz.Page, col: tuple[float, float], top: float, text: str, fontsize: float) -> None:
    x, width = col
    _write(page, x + width - text_width(text, fontsize), top, text, fontsize)


def _write_centered(page: fitz.Page, top: float, text: str, fontsize: float) -> None:
    _write(page, (PAGE_WIDTH - text_width(text, fontsize)) / 2.0, top, text, fontsize)


def _write_table_header(page: fitz.Page, top: float) -> None:
    _write(page, CODE_COL[0], top, "Código", HEADER_SIZE)
    _write(page, DESC_COL[0], top, "Descrição", HEADER_SIZE)
    _write_right(page, QTY_COL, top, "Qtd", HEADER_SIZE)
    page.draw_line((RULE_X0, top + RULE_OFFSET), (RULE_X1, top + RULE_OFFSET), color=(0, 0, 0), width=0.75)


def render_transfer_pdf(
    items: Iterable[Mapping[str, Any]],
    title: str = DEFAULT_TITLE,
    generated_at: dt.datetime | None = None,
) -> bytes:
    lines = [_coerce_line(item) for item in items]
    stamp = (generated_at or dt.datetime.now()).strftime("%d/%m/%Y, %H:%M:%S")

    doc = fitz.open()
    try:
        for page_no, rows in enumerate(paginate(lines)):
            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            if page_no == 0:
                _write_centered(page, TITLE_TOP, title or DEFAULT_TITLE, TITLE_SIZE)
                _write_centered(page, SUBTITLE_TOP, f"Gerado em: {stamp}", SUBTITLE_SIZE)
                _write_table_header(page, TABLE_TOP)
            else:
                _write_table_header(page, CONTINUED_TABLE_TOP)
            for line, top in rows:
                description = truncate_text(line.description, DESC_COL[1], text_width)
                _write(page, CODE_COL[0], top, line.code, BODY_SIZE)
                _write(page, DESC_COL[0], top, description, BODY_SIZE)
                _write_right(page, QTY_COL, top, line.quantity, BODY_SIZE)
        return doc.tobytes()
    finally:
        doc.close()
