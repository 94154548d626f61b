"""
Offset page tokens and the list page model.

A page token is the base64 text of the next offset. Anything that does not
decode to a non-negative integer reads as offset 0.
"""

import base64
import binascii
from typing import Any

from pydantic import BaseModel, Field


class ListPage(BaseModel):
    """One page of projected records."""

    items: list[dict[str, Any]] = Field(default_factory=list, description="Projected rows")
    next_page_token: str | None = Field(None, description="Token for the next page, absent on the last")
    total_count: int = Field(0, description="Data rows counted, capped at the scan bound")


def encode_page_token(offset: int) -> str:
    return base64.b64encode(str(int(offset)).encode("ascii")).decode("ascii")


def decode_page_token(token: str | None) -> int:
    if not token:
        return 0
    try:
        text = base64.b64decode(token.encode("ascii"), validate=True).decode("ascii")
        offset = int(text)
    except (binascii.Error, UnicodeError, ValueError):
        return 0
    return offset if offset >= 0 else 0


def clamp_page_size(page_size: int | None, maximum: int = 10) -> int:
    try:
        size = int(page_size) if page_size else maximum
    except (TypeError, ValueError):
        size = maximum
    return max(1, min(size, maximum))
