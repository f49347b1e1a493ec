# models.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Record:
    """One product entry parsed from an inventory line."""

    code: str  # >= 3 digits; exact-string identity, leading zeros count
    description: str
    quantity: int
    category: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "description": self.description,
            "quantity": self.quantity,
            "category": self.category,
        }


Groups = dict[str, list[Record]]


def groups_to_dict(groups: Groups) -> dict[str, list[dict[str, Any]]]:
    return {name: [rec.to_dict() for rec in records] for name, records in groups.items()}


@dataclass(frozen=True)
class DiffResult:
    categories: list[str]
    source: Groups
    destination: Groups
    missing_at_destination: Groups
    missing_at_source: Groups

    def to_dict(self) -> dict[str, Any]:
        return {
            "categories": list(self.categories),
            "source": groups_to_dict(self.source),
            "destination": groups_to_dict(self.destination),
            "missing_at_destination": groups_to_dict(self.missing_at_destination),
            "missing_at_source": groups_to_dict(self.missing_at_source),
        }
