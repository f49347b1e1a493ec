"""pt-BR number helpers: ``.`` groups thousands, ``,`` marks decimals."""

from __future__ import annotations

import math
import re

PT_NUMERIC_RE = re.compile(r"^\d+(,\d+)?$", re.ASCII)
PT_PRICE_RE = re.compile(r"^\d{1,3}(\.\d{3})*,\d{2}$", re.ASCII)


def parse_pt_number(text: str | None) -> float | None:
    """``"1.234,56"`` -> ``1234.56``. Returns None for blank or unparseable input."""
    if text is None:
        return None
    raw = str(text).strip()
    if not raw:
        return None
    cleaned = raw.replace(".", "").replace(",", ".", 1)
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if math.isnan(value):
        return None
    return value


def is_pt_numeric(token: str) -> bool:
    """Plain counts such as ``3``, ``3,00``, ``10`` or ``0``."""
    return bool(PT_NUMERIC_RE.match(token))


def is_pt_price(token: str) -> bool:
    """Money amounts with two decimals and optional thousands groups, e.g. ``1.299,90``."""
    return bool(PT_PRICE_RE.match(token))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
