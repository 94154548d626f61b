"""
Submission storage over a backing table.

Provides:
- SubmissionStore: list/get/upsert plus follow-up write-back helpers
- header conventions (`Label [ID]`) and column discovery
- offset page tokens and ListPage
"""

from .headers import HeaderColumns, ensure_destination, find_header, format_header, parse_header
from .pagination import ListPage, decode_page_token, encode_page_token
from .submissions import RecordContext, SubmissionStore, UpsertResult

__all__ = [
    "HeaderColumns",
    "ListPage",
    "RecordContext",
    "SubmissionStore",
    "UpsertResult",
    "decode_page_token",
    "encode_page_token",
    "ensure_destination",
    "find_header",
    "format_header",
    "parse_header",
]
