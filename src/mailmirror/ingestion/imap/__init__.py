"""IMAP mailbox sync engine.

Components:
- ``descriptor``: account model and environment registry
- ``connection_manager``: lockable per-account IMAP session
- ``email_normalizer``: fetched message to canonical document
- ``backfill``: bounded historical fetch
- ``idle_monitor``: IDLE push listener
- ``supervisor``: per-account state machine
- ``orchestrator``: owns all supervisors and the mock-data fallback
"""

from .backfill import BackfillResult, HistoricalBackfill
from .connection_manager import (
    EnvelopeData,
    FetchedMessage,
    MailboxSession,
    MessageRef,
    create_imap_client,
)
from .descriptor import AccountRegistry, ImapAccount
from .email_normalizer import EmailNormalizer, ProcessedMessage, extract_text
from .exceptions import (
    ConnectFailedError,
    DownloadFailedError,
    InvalidStateTransitionError,
    NormalizeFailedError,
    SinkWriteFailedError,
    SyncError,
    SyncErrorKind,
    WaitFailedError,
)
from .idle_monitor import LiveUpdateListener
from .orchestrator import SyncOrchestrator
from .supervisor import ConnectionSupervisor
from .sync_state import AccountSyncStatus, SyncState

__all__ = [
    "AccountRegistry",
    "AccountSyncStatus",
    "BackfillResult",
    "ConnectFailedError",
    "ConnectionSupervisor",
    "DownloadFailedError",
    "EmailNormalizer",
    "EnvelopeData",
    "FetchedMessage",
    "HistoricalBackfill",
    "ImapAccount",
    "InvalidStateTransitionError",
    "LiveUpdateListener",
    "MailboxSession",
    "MessageRef",
    "NormalizeFailedError",
    "ProcessedMessage",
    "SinkWriteFailedError",
    "SyncError",
    "SyncErrorKind",
    "SyncOrchestrator",
    "SyncState",
    "WaitFailedError",
    "create_imap_client",
    "extract_text",
]
