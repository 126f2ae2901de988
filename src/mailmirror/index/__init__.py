"""Local mirror of indexed emails."""

from __future__ import annotations

from ..configuration.settings import IndexSettings
from .memory import InMemoryEmailIndex
from .mock_data import MOCK_ACCOUNT_ID, mock_documents, seed_mock_documents
from .models import (
    DEFAULT_CATEGORY,
    CanonicalEmailDocument,
    SearchFilters,
    build_document_id,
    to_iso_utc,
)
from .sink import IndexingSink
from .sqlite import SqliteEmailIndex


def create_sink(settings: IndexSettings) -> IndexingSink:
    """Build the sink selected by ``settings.backend``."""

    if settings.backend == "memory":
        return InMemoryEmailIndex()
    return SqliteEmailIndex(settings.path.expanduser())


__all__ = [
    "CanonicalEmailDocument",
    "DEFAULT_CATEGORY",
    "InMemoryEmailIndex",
    "IndexingSink",
    "MOCK_ACCOUNT_ID",
    "SearchFilters",
    "SqliteEmailIndex",
    "build_document_id",
    "create_sink",
    "mock_documents",
    "seed_mock_documents",
    "to_iso_utc",
]
