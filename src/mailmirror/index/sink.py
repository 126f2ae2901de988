"""Interface the sync engine writes documents through."""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from .models import CanonicalEmailDocument, SearchFilters


@runtime_checkable
class IndexingSink(Protocol):
    """Searchable document store.

    Implementations must tolerate calls from several account tasks at once.
    ``put`` is an upsert keyed by ``document.id``.
    """

    def put(self, document: CanonicalEmailDocument) -> None:
        ...

    def update_category(self, document_id: str, category: str) -> bool:
        ...

    def clear_all(self) -> int:
        ...

    def search(self, filters: Optional[SearchFilters] = None) -> List[CanonicalEmailDocument]:
        ...


__all__ = ["IndexingSink"]
