"""Fixtures shared by the index sink tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mailmirror.index.memory import InMemoryEmailIndex
from mailmirror.index.models import CanonicalEmailDocument, to_iso_utc
from mailmirror.index.sqlite import SqliteEmailIndex


@pytest.fixture(params=["memory", "sqlite"])
def index(request, tmp_path):
    if request.param == "memory":
        yield InMemoryEmailIndex()
        return
    sink = SqliteEmailIndex(tmp_path / "mirror.db")
    yield sink
    sink.close()


@pytest.fixture
def make_document():
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def _make(uid: int, **overrides) -> CanonicalEmailDocument:
        values = {
            "id": f"acct@example.com:INBOX:{uid}",
            "account_id": "acct@example.com",
            "folder": "INBOX",
            "subject": f"Subject {uid}",
            "from_address": "alice@example.com",
            "to": ["me@example.com"],
            "date": to_iso_utc(base + timedelta(minutes=uid)),
            "text": f"Body {uid}",
        }
        values.update(overrides)
        return CanonicalEmailDocument(**values)

    return _make
