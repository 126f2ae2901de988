"""Error kinds raised inside the IMAP sync engine.

Every failure the engine handles is one of a closed set of kinds. Each kind has
its own exception class carrying the account it happened on and the underlying
cause, so supervisors and callers can log failures uniformly instead of
inspecting ad hoc attributes on library errors.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Dict, Optional


class SyncErrorKind(str, Enum):
    """Closed enumeration of engine failure kinds."""

    CONNECT_FAILED = "connect_failed"
    WAIT_FAILED = "wait_failed"
    DOWNLOAD_FAILED = "download_failed"
    NORMALIZE_FAILED = "normalize_failed"
    SINK_WRITE_FAILED = "sink_write_failed"


class SyncError(RuntimeError):
    """Base class for engine failures.

    Attributes:
        account_id: Account the failure belongs to
        cause: Underlying exception, if any
        context: Extra structured fields (uid, folder, ...) for logging
    """

    kind: ClassVar[SyncErrorKind]

    def __init__(
        self,
        account_id: str,
        cause: Optional[BaseException] = None,
        *,
        message: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.account_id = account_id
        self.cause = cause
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        if message is None:
            message = f"{self.kind.value} for {account_id}"
            if cause is not None:
                message = f"{message}: {cause}"
        super().__init__(message)

    def log_extra(self) -> Dict[str, Any]:
        """Structured logging context for this failure."""
        extra: Dict[str, Any] = {
            "account_id": self.account_id,
            "error_kind": self.kind.value,
        }
        if self.cause is not None:
            extra["cause"] = type(self.cause).__name__
        extra.update(self.context)
        return extra


class ConnectFailedError(SyncError):
    """Connection, login or folder selection failed."""

    kind = SyncErrorKind.CONNECT_FAILED


class WaitFailedError(SyncError):
    """The IDLE wait ended with a connection error."""

    kind = SyncErrorKind.WAIT_FAILED


class DownloadFailedError(SyncError):
    """A message body could not be downloaded."""

    kind = SyncErrorKind.DOWNLOAD_FAILED


class NormalizeFailedError(SyncError):
    """A message could not be turned into a document."""

    kind = SyncErrorKind.NORMALIZE_FAILED


class SinkWriteFailedError(SyncError):
    """The indexing sink rejected a write."""

    kind = SyncErrorKind.SINK_WRITE_FAILED


class InvalidStateTransitionError(ValueError):
    """Raised when a supervisor attempts a transition the state machine forbids.

    Example:
        Moving an account from TERMINATED back to CONNECTING raises this
        error, since a terminated account is never restarted.
    """

    pass


__all__ = [
    "ConnectFailedError",
    "DownloadFailedError",
    "InvalidStateTransitionError",
    "NormalizeFailedError",
    "SinkWriteFailedError",
    "SyncError",
    "SyncErrorKind",
    "WaitFailedError",
]
