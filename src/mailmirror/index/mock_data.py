"""Demo documents shown when no real mailbox is connected."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .models import CanonicalEmailDocument, to_iso_utc
from .sink import IndexingSink


logger = logging.getLogger(__name__)

MOCK_ACCOUNT_ID = "demo@example.com"
MOCK_FOLDER = "INBOX"

# (subject, sender, hours ago, text, category)
_MOCK_ROWS = (
    (
        "Interested in a quick chat",
        "lead@company.com",
        1,
        "Hi, I saw your profile and would love to discuss a potential collaboration. "
        "Are you available for a quick call this week?",
        "Interested",
    ),
    (
        "Out of office until next week",
        "auto@system.com",
        2,
        "I am currently out of office and will return next Monday. "
        "For urgent matters, please contact my assistant.",
        "Out of Office",
    ),
    (
        "Meeting scheduled for tomorrow",
        "scheduler@cal.com",
        3,
        "Your meeting with John Smith is scheduled for tomorrow at 2 PM. "
        "Meeting link: https://zoom.us/j/123456789",
        "Meeting Booked",
    ),
    (
        "Not interested in this opportunity",
        "reject@company.com",
        4,
        "Thank you for reaching out, but we are not interested in this opportunity at this time.",
        "Not Interested",
    ),
    (
        "URGENT: Your account has been compromised",
        "noreply@fake-bank.com",
        5,
        "Click here immediately to secure your account: http://fake-bank-security.com",
        "Spam",
    ),
)


def mock_documents(now: Optional[datetime] = None) -> List[CanonicalEmailDocument]:
    """The fixed demo set, ids ``mock:INBOX:1`` to ``mock:INBOX:5``."""

    now = now or datetime.now(timezone.utc)
    return [
        CanonicalEmailDocument(
            id=f"mock:{MOCK_FOLDER}:{position}",
            account_id=MOCK_ACCOUNT_ID,
            folder=MOCK_FOLDER,
            subject=subject,
            from_address=sender,
            to=[MOCK_ACCOUNT_ID],
            date=to_iso_utc(now - timedelta(hours=hours_ago)),
            text=text,
            category=category,
        )
        for position, (subject, sender, hours_ago, text, category) in enumerate(_MOCK_ROWS, start=1)
    ]


def seed_mock_documents(sink: IndexingSink, now: Optional[datetime] = None) -> int:
    """Write the demo set through ``sink``; returns how many were stored."""

    stored = 0
    for document in mock_documents(now):
        try:
            sink.put(document)
        except Exception as exc:  # noqa: BLE001 - a failed seed must not stop startup
            logger.error(
                "Failed to seed mock document",
                extra={"document_id": document.id, "error_kind": "sink_write_failed"},
                exc_info=exc,
            )
            continue
        stored += 1
    logger.info("Mock data seeded", extra={"documents": stored})
    return stored


__all__ = ["MOCK_ACCOUNT_ID", "mock_documents", "seed_mock_documents"]
