"""Turn fetched IMAP messages into canonical documents.

Metadata comes from the ENVELOPE and INTERNALDATE already on the
:class:`MessageRef`; the searchable text comes from the downloaded RFC 822
source. A missing body never prevents the metadata-only document from being
built and indexed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import message_from_bytes
from email.message import EmailMessage as StdEmailMessage
from email.policy import default as email_policy
from typing import Callable, List, Optional, Tuple

import html2text

from ...configuration.settings import MAX_BODY_CHARS
from ...index.models import (
    DEFAULT_CATEGORY,
    CanonicalEmailDocument,
    build_document_id,
    to_iso_utc,
)
from ...index.sink import IndexingSink
from .connection_manager import FetchedMessage
from .exceptions import SinkWriteFailedError, SyncError

logger = logging.getLogger(__name__)


def _html_converter() -> html2text.HTML2Text:
    converter = html2text.HTML2Text()
    converter.ignore_links = False
    converter.ignore_images = True
    converter.ignore_emphasis = False
    converter.body_width = 0  # No line wrapping
    return converter


def _body_parts(msg: StdEmailMessage) -> Tuple[Optional[str], Optional[str]]:
    plain: Optional[str] = None
    html: Optional[str] = None
    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in {"text/plain", "text/html"}:
            continue
        try:
            content = part.get_content()
        except Exception as exc:  # noqa: BLE001 - unknown charsets, broken encodings
            logger.warning("Failed to decode %s part: %s", content_type, exc)
            continue
        if content_type == "text/plain" and plain is None:
            plain = content
        elif content_type == "text/html" and html is None:
            html = content
    return plain, html


def extract_text(
    raw_message: bytes,
    *,
    limit: int = MAX_BODY_CHARS,
    converter: Optional[html2text.HTML2Text] = None,
) -> str:
    """Readable text of an RFC 822 message, truncated to ``limit`` characters.

    Prefers the first ``text/plain`` part and falls back to the first
    ``text/html`` part rendered through html2text.
    """

    msg = message_from_bytes(raw_message, policy=email_policy)
    plain, html = _body_parts(msg)
    if plain is not None:
        text = plain.strip()
    elif html is not None:
        text = (converter or _html_converter()).handle(html).strip()
    else:
        text = ""
    return text[: min(limit, MAX_BODY_CHARS)]


@dataclass
class ProcessedMessage:
    """Result of normalizing and indexing one message."""

    document: CanonicalEmailDocument
    warnings: List[SyncError] = field(default_factory=list)
    indexed: bool = True


class EmailNormalizer:
    """Build :class:`CanonicalEmailDocument` objects and hand them to a sink."""

    def __init__(
        self,
        sink: IndexingSink,
        *,
        body_max_chars: int = MAX_BODY_CHARS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.sink = sink
        self.body_max_chars = min(body_max_chars, MAX_BODY_CHARS)
        self._clock = clock
        self._converter = _html_converter()

    def normalize(self, account_id: str, folder: str, fetched: FetchedMessage) -> CanonicalEmailDocument:
        """Build the document for ``fetched``; pure apart from the clock."""

        ref = fetched.ref
        envelope = ref.envelope
        when = ref.internal_date or envelope.date or self._clock()
        text = ""
        if fetched.body is not None:
            text = extract_text(fetched.body, limit=self.body_max_chars, converter=self._converter)
        return CanonicalEmailDocument(
            id=build_document_id(account_id, folder, ref.uid, ref.sequence_number),
            account_id=account_id,
            folder=folder,
            subject=envelope.subject,
            from_address=", ".join(envelope.from_addresses),
            to=list(envelope.to_addresses),
            date=to_iso_utc(when),
            text=text,
            category=DEFAULT_CATEGORY,
        )

    def process(self, account_id: str, folder: str, fetched: FetchedMessage) -> ProcessedMessage:
        """Normalize ``fetched`` and write it to the sink.

        A body download failure is logged and reported in ``warnings``.
        A sink failure is logged as ``SINK_WRITE_FAILED`` and never raised.
        Parsing errors propagate to the caller.
        """

        warnings: List[SyncError] = []
        if fetched.body_error is not None:
            warnings.append(fetched.body_error)
            logger.warning(
                "Body download failed; indexing metadata only",
                extra=fetched.body_error.log_extra(),
            )

        document = self.normalize(account_id, folder, fetched)

        try:
            self.sink.put(document)
        except Exception as exc:  # noqa: BLE001
            error = SinkWriteFailedError(account_id, exc, document_id=document.id)
            warnings.append(error)
            logger.error("Failed to index email", extra=error.log_extra(), exc_info=exc)
            return ProcessedMessage(document=document, warnings=warnings, indexed=False)

        logger.debug(
            "Indexed email",
            extra={"account_id": account_id, "folder": folder, "document_id": document.id},
        )
        return ProcessedMessage(document=document, warnings=warnings)


__all__ = ["EmailNormalizer", "ProcessedMessage", "extract_text"]
