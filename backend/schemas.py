import re
from typing import Any

from pydantic import BaseModel, field_validator

from transfer_pdf import DEFAULT_TITLE

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)", re.ASCII)


class RecordOut(BaseModel):
    code: str
    description: str
    quantity: int
    category: str


class CompareOut(BaseModel):
    categories: list[str]
    source: dict[str, list[RecordOut]]
    destination: dict[str, list[RecordOut]]
    missing_at_destination: dict[str, list[RecordOut]]
    missing_at_source: dict[str, list[RecordOut]]


class TransferItem(BaseModel):
    code: str = ""
    description: str = ""
    quantity: int = 0

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description_as_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity_as_int(cls, value: Any) -> int:
        # the selection UI sends whatever was typed; unparseable counts become 0
        if isinstance(value, bool) or value is None:
            return 0
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value)
        m = _LEADING_INT_RE.match(str(value))
        return int(m.group(1)) if m else 0


class TransferRequest(BaseModel):
    items: list[TransferItem] = []
    title: str = DEFAULT_TITLE


class TransferOut(BaseModel):
    url: str
