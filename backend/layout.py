"""Rebuild visual text lines from positioned PDF text fragments.

A PDF text layer is an unordered bag of short runs, each with an (x, y)
position. Rows are recovered by clustering fragments on their vertical
coordinate; each row is then read left to right.

Coordinates follow PDF user space: ``y`` grows upward, so the top of the page
has the largest ``y``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

Y_LINE_TOL = 4.0
PAGE_BREAK = ""

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Fragment:
    """One positioned text run from a page's text layer."""

    x: float
    y: float
    text: str


@dataclass
class Row:
    """Fragments judged to sit on the same visual line."""

    y: float
    fragments: list[Fragment] = field(default_factory=list)

    def add(self, fragment: Fragment) -> None:
        count = len(self.fragments)
        self.fragments.append(fragment)
        self.y = (self.y * count + fragment.y) / (count + 1)


def normalize_line(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def as_fragment(item: Fragment | Mapping[str, Any]) -> Fragment:
    if isinstance(item, Fragment):
        return item
    return Fragment(x=float(item["x"]), y=float(item["y"]), text=str(item.get("text") or ""))


def cluster_rows(fragments: Iterable[Fragment], y_tol: float = Y_LINE_TOL) -> list[Row]:
    """Group fragments into rows, greedy first-fit against each row's running mean y.

    Candidates are visited top to bottom, left to right. A fragment joins the
    first open row (in creation order) whose mean y is within ``y_tol``
    (inclusive); otherwise it seeds a new row.
    """
    items = [f for f in fragments if f.text and f.text.strip()]
    items.sort(key=lambda f: (-f.y, f.x))

    rows: list[Row] = []
    for frag in items:
        for row in rows:
            if abs(row.y - frag.y) <= y_tol:
                row.add(frag)
                break
        else:
            rows.append(Row(y=frag.y, fragments=[frag]))

    rows.sort(key=lambda r: -r.y)
    return rows


def row_text(row: Row) -> str:
    ordered = sorted(row.fragments, key=lambda f: f.x)
    return normalize_line(" ".join(f.text for f in ordered))


def page_lines(fragments: Iterable[Fragment], y_tol: float = Y_LINE_TOL) -> list[str]:
    """Reading-order lines for one page, closed by a blank page marker."""
    lines: list[str] = []
    for row in cluster_rows(fragments, y_tol=y_tol):
        text = row_text(row)
        if text:
            lines.append(text)
    lines.append(PAGE_BREAK)
    return lines


def document_lines(
    pages: Iterable[Sequence[Fragment | Mapping[str, Any]]],
    y_tol: float = Y_LINE_TOL,
) -> list[str]:
    lines: list[str] = []
    for page in pages:
        lines.extend(page_lines((as_fragment(item) for item in page), y_tol=y_tol))
    return lines
