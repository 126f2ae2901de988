"""Process-local index used for tests and the mock-data demo."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from .models import CanonicalEmailDocument, SearchFilters


class InMemoryEmailIndex:
    """Dict-backed :class:`~mailmirror.index.sink.IndexingSink`."""

    def __init__(self) -> None:
        self._documents: Dict[str, CanonicalEmailDocument] = {}
        self._lock = threading.RLock()

    def put(self, document: CanonicalEmailDocument) -> None:
        with self._lock:
            self._documents[document.id] = document.model_copy()

    def get(self, document_id: str) -> Optional[CanonicalEmailDocument]:
        with self._lock:
            return self._documents.get(document_id)

    def update_category(self, document_id: str, category: str) -> bool:
        with self._lock:
            existing = self._documents.get(document_id)
            if existing is None:
                return False
            self._documents[document_id] = existing.model_copy(update={"category": category})
            return True

    def clear_all(self) -> int:
        with self._lock:
            removed = len(self._documents)
            self._documents.clear()
            return removed

    def search(self, filters: Optional[SearchFilters] = None) -> List[CanonicalEmailDocument]:
        filters = filters or SearchFilters()
        with self._lock:
            hits = [doc for doc in self._documents.values() if filters.matches(doc)]
        hits.sort(key=lambda doc: doc.date, reverse=True)
        return hits[: filters.limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


__all__ = ["InMemoryEmailIndex"]
