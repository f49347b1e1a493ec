#!/usr/bin/env python3
"""Parse stock-listing PDFs into product records grouped by category."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from functools import reduce
from pathlib import Path
from typing import Any

from layout import Y_LINE_TOL, Fragment, document_lines, normalize_line
from locale_numbers import is_pt_numeric, parse_pt_number, round_half_up
from models import Groups, Record, groups_to_dict
from pdf_text import extract_pdf_lines, read_pdf_fragments

logger = logging.getLogger(__name__)

PARSER_VERSION = "inventory-v1"

GROUP_MARKER_RE = re.compile(r"^GRUPO:\s*(.+)$", re.IGNORECASE)
GROUP_CODE_RE = re.compile(r"^\d+\s*-\s*.+$", re.ASCII)
PRODUCT_CODE_RE = re.compile(r"^\d{3,}$", re.ASCII)


def match_group_header(line: str) -> str | None:
    """Category name if ``line`` is a group header, else None.

    ``GRUPO: 12 - BICICLETA`` -> ``12 - BICICLETA``; ``12 - BICICLETA`` is
    taken whole.
    """
    m = GROUP_MARKER_RE.match(line)
    if m:
        return normalize_line(m.group(1))
    if GROUP_CODE_RE.match(line):
        return normalize_line(line)
    return None


def tokenize_record(line: str, category: str) -> list[Record]:
    """Split ``<code> <description...> <qty>`` into a Record.

    The quantity is the last pt-BR numeric token, scanning backward and never
    reconsidering the code; without one the quantity is 0.
    """
    tokens = line.split()
    if not tokens or not PRODUCT_CODE_RE.match(tokens[0]):
        return []
    code = tokens[0]

    quantity = 0
    for idx in range(len(tokens) - 1, 0, -1):
        if is_pt_numeric(tokens[idx]):
            value = parse_pt_number(tokens[idx])
            quantity = round_half_up(value) if value is not None else 0
            del tokens[idx]
            break

    description = " ".join(tokens[1:])
    return [Record(code=code, description=description, quantity=quantity, category=category)]


@dataclass(frozen=True)
class _Segment:
    groups: Groups
    current: str | None = None


def _consume_line(state: _Segment, line: str) -> _Segment:
    header = match_group_header(line)
    if header is not None:
        state.groups.setdefault(header, [])
        return _Segment(groups=state.groups, current=header)
    if state.current is None:
        return state
    state.groups[state.current].extend(tokenize_record(line, state.current))
    return state


def segment_lines(lines: Iterable[str]) -> Groups:
    """Partition lines under the most recent group header and tokenize them."""
    cleaned = (normalize_line(raw) for raw in lines)
    final = reduce(_consume_line, (ln for ln in cleaned if ln), _Segment(groups={}))
    return final.groups


def extract_grouped_records(
    pages: Iterable[Sequence[Fragment | Mapping[str, Any]]],
    y_tol: float = Y_LINE_TOL,
) -> Groups:
    lines = document_lines(pages, y_tol=y_tol)
    groups = segment_lines(lines)
    logger.debug(
        "Segmented %d line(s) into %d categories / %d records",
        len(lines),
        len(groups),
        sum(len(v) for v in groups.values()),
    )
    return groups


def parse_groups(input_path: str | Path, y_tol: float = Y_LINE_TOL) -> Groups:
    return extract_grouped_records(read_pdf_fragments(input_path), y_tol=y_tol)


def parse_pdf(input_path: str | Path, y_tol: float = Y_LINE_TOL) -> dict[str, Any]:
    groups = parse_groups(input_path, y_tol=y_tol)
    record_count = sum(len(v) for v in groups.values())
    logger.info(
        "Parsed %s: %d categories, %d records",
        os.path.basename(str(input_path)),
        len(groups),
        record_count,
    )
    return {
        "source_file": os.path.basename(str(input_path)),
        "parser_version": PARSER_VERSION,
        "record_count": record_count,
        "groups": groups_to_dict(groups),
    }


def main() -> None:  # pragma: no cover - CLI helper
    ap = argparse.ArgumentParser(description="Parse a stock-listing PDF into grouped records.")
    ap.add_argument("pdf")
    ap.add_argument("-o", "--out", default="parsed_inventory.json")
    ap.add_argument("--y-tol", type=float, default=Y_LINE_TOL)
    ap.add_argument(
        "--lines",
        action="store_true",
        help="Write the reconstructed text lines instead of records.",
    )
    args = ap.parse_args()

    if args.lines:
        lines = extract_pdf_lines(args.pdf, y_tol=args.y_tol)
        with open(args.out, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))
    else:
        data = parse_pdf(args.pdf, y_tol=args.y_tol)
        with open(args.out, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    print("Wrote", args.out)


if __name__ == "__main__":
    main()
