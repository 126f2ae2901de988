"""Tests for document identity, dates and the mock data set."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from mailmirror.configuration.settings import IndexSettings
from mailmirror.index import InMemoryEmailIndex, SqliteEmailIndex, create_sink
from mailmirror.index.mock_data import MOCK_ACCOUNT_ID, mock_documents, seed_mock_documents
from mailmirror.index.models import CanonicalEmailDocument, build_document_id, to_iso_utc


def test_document_id_uses_uid():
    assert build_document_id("me@example.com", "INBOX", 42, 3) == "me@example.com:INBOX:42"


def test_document_id_falls_back_to_sequence_number():
    assert build_document_id("me@example.com", "INBOX", None, 3) == "me@example.com:INBOX:3"


def test_document_id_requires_a_key():
    with pytest.raises(ValueError):
        build_document_id("me@example.com", "INBOX", None, None)


def test_iso_dates_are_utc_with_milliseconds():
    offset = timezone(timedelta(hours=2))

    assert to_iso_utc(datetime(2024, 5, 1, 11, 30, 5, 123456, tzinfo=offset)) == "2024-05-01T09:30:05.123Z"


def test_document_text_is_bounded():
    doc = CanonicalEmailDocument(
        id="a:INBOX:1", account_id="a", folder="INBOX", date="2024-05-01T00:00:00.000Z", text="y" * 60_000
    )

    assert len(doc.text) == 50_000


def test_document_accepts_wire_keys():
    doc = CanonicalEmailDocument.model_validate(
        {
            "id": "a:INBOX:1",
            "accountId": "a",
            "folder": "INBOX",
            "from": "x@example.com",
            "date": "2024-05-01T00:00:00.000Z",
        }
    )

    assert doc.account_id == "a"
    assert doc.from_address == "x@example.com"
    assert doc.category == "Uncategorized"


def test_mock_documents_are_fixed_demo_set():
    now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    docs = mock_documents(now)

    assert [doc.id for doc in docs] == [f"mock:INBOX:{n}" for n in range(1, 6)]
    assert {doc.category for doc in docs} == {
        "Interested",
        "Out of Office",
        "Meeting Booked",
        "Not Interested",
        "Spam",
    }
    assert all(doc.account_id == MOCK_ACCOUNT_ID for doc in docs)
    assert docs[0].date == "2024-05-01T11:00:00.000Z"
    assert docs[4].date == "2024-05-01T07:00:00.000Z"


def test_seeding_is_idempotent():
    index = InMemoryEmailIndex()

    assert seed_mock_documents(index) == 5
    assert seed_mock_documents(index) == 5
    assert len(index) == 5


def test_seeding_continues_past_failed_writes():
    sink = Mock()
    sink.put.side_effect = [None, RuntimeError("disk full"), None, None, None]

    assert seed_mock_documents(sink) == 4
    assert sink.put.call_count == 5


def test_create_sink_selects_backend(tmp_path):
    memory = create_sink(IndexSettings(backend="memory"))
    sqlite = create_sink(IndexSettings(backend="sqlite", path=tmp_path / "mirror.db"))

    try:
        assert isinstance(memory, InMemoryEmailIndex)
        assert isinstance(sqlite, SqliteEmailIndex)
        assert (tmp_path / "mirror.db").exists()
    finally:
        sqlite.close()
