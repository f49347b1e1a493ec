#!/usr/bin/env python3
"""Per-category set difference of two grouped-record collections, keyed by code."""

from __future__ import annotations

import argparse
import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence

from models import DiffResult, Groups, Record

logger = logging.getLogger(__name__)

_LEADING_NUMBER_RE = re.compile(r"^\s*(\d+)", re.ASCII)


def _missing_from(records: Sequence[Record], other: Mapping[str, Record]) -> list[Record]:
    return [rec for rec in records if rec.code not in other]


def compare_groups(source: Groups, destination: Groups) -> DiffResult:
    """Report, per category, the source records absent at destination and vice versa.

    Categories are the union of both sides in first-seen order (source keys,
    then any destination-only keys). Duplicate codes on one side collapse in the
    lookup (last one wins) but every listed record is still reported.
    """
    categories = list(dict.fromkeys([*source.keys(), *destination.keys()]))
    missing_at_destination: Groups = {}
    missing_at_source: Groups = {}

    for name in categories:
        src = source.get(name, [])
        dst = destination.get(name, [])
        src_by_code = {rec.code: rec for rec in src}
        dst_by_code = {rec.code: rec for rec in dst}
        missing_at_destination[name] = _missing_from(src, dst_by_code)
        missing_at_source[name] = _missing_from(dst, src_by_code)

    logger.debug(
        "Compared %d categories: %d missing at destination, %d missing at source",
        len(categories),
        sum(len(v) for v in missing_at_destination.values()),
        sum(len(v) for v in missing_at_source.values()),
    )
    return DiffResult(
        categories=categories,
        source=source,
        destination=destination,
        missing_at_destination=missing_at_destination,
        missing_at_source=missing_at_source,
    )


def _category_sort_key(name: str) -> tuple[int, int, str]:
    m = _LEADING_NUMBER_RE.match(name)
    if m:
        return (0, int(m.group(1)), name)
    return (1, 0, name)


def ordered_categories(names: Iterable[str]) -> list[str]:
    """Sort by leading group number (``2 - X`` before ``10 - Y``); unnumbered names last."""
    return sorted(names, key=_category_sort_key)


def main() -> None:  # pragma: no cover - CLI helper
    from parse_inventory_pdf import parse_groups

    ap = argparse.ArgumentParser(description="Compare two stock-listing PDFs by category.")
    ap.add_argument("source")
    ap.add_argument("destination")
    ap.add_argument("-o", "--out", default="stock_diff.json")
    args = ap.parse_args()

    result = compare_groups(parse_groups(args.source), parse_groups(args.destination))
    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, ensure_ascii=False, indent=2)

    for name in ordered_categories(result.categories):
        print(
            f"{name}: {len(result.missing_at_destination[name])} missing at destination, "
            f"{len(result.missing_at_source[name])} missing at source"
        )
    print("Wrote", args.out)


if __name__ == "__main__":
    main()
