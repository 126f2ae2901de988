"""Document and query models shared by the engine and the index sinks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..configuration.settings import MAX_BODY_CHARS


DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_SEARCH_LIMIT = 50


def to_iso_utc(value: datetime) -> str:
    """Render as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` so stored dates sort as text.

    Naive datetimes are taken as local time.
    """

    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_document_id(account_id: str, folder: str, uid: Optional[int], sequence_number: Optional[int] = None) -> str:
    """Stable identity ``<account>:<folder>:<uid>``.

    The sequence number stands in when the server did not report a uid.
    """

    key = uid if uid is not None else sequence_number
    if key is None:
        raise ValueError("either uid or sequence_number is required")
    return f"{account_id}:{folder}:{key}"


class CanonicalEmailDocument(BaseModel):
    """Flat, searchable record of one email.

    Dumps with the wire keys ``accountId`` and ``from`` when ``by_alias=True``.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    account_id: str = Field(..., alias="accountId")
    folder: str
    subject: str = ""
    from_address: str = Field(default="", alias="from")
    to: List[str] = Field(default_factory=list)
    date: str = Field(..., description="ISO-8601 UTC timestamp")
    text: str = ""
    category: str = DEFAULT_CATEGORY

    @field_validator("text")
    @classmethod
    def _bound_text(cls, value: str) -> str:
        return value[:MAX_BODY_CHARS]


class SearchFilters(BaseModel):
    """Optional filters for :meth:`IndexingSink.search`."""

    q: Optional[str] = None
    account_id: Optional[str] = None
    folder: Optional[str] = None
    category: Optional[str] = None
    limit: int = Field(DEFAULT_SEARCH_LIMIT, ge=1, le=1_000)

    def matches(self, document: CanonicalEmailDocument) -> bool:
        if self.account_id and document.account_id != self.account_id:
            return False
        if self.folder and document.folder != self.folder:
            return False
        if self.category and document.category != self.category:
            return False
        if self.q:
            needle = self.q.lower()
            haystack = (
                document.subject,
                document.text,
                document.from_address,
                " ".join(document.to),
            )
            return any(needle in field.lower() for field in haystack)
        return True


__all__ = [
    "CanonicalEmailDocument",
    "DEFAULT_CATEGORY",
    "DEFAULT_SEARCH_LIMIT",
    "SearchFilters",
    "build_document_id",
    "to_iso_utc",
]
