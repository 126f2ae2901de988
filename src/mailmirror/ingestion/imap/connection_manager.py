"""Lockable IMAP session for one account.

A :class:`MailboxSession` owns one ``imapclient.IMAPClient`` connection with
the mirrored folder selected. Every read, fetch or IDLE call must happen while
the session lock is held::

    async with session.locked():
        uids = await session.search_since(cutoff.date())

``imapclient`` is blocking, so each protocol call runs on a worker thread
owned by the session; a parked ``idle_check`` never starves another
account. :meth:`MailboxSession.close` shuts the socket down when a call is in
flight, which unblocks a pending ``idle_check`` or fetch in its worker thread.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import ssl
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.header import decode_header, make_header
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Set

import certifi
from imapclient import IMAPClient

from .descriptor import ImapAccount
from .exceptions import ConnectFailedError, DownloadFailedError, SyncError


logger = logging.getLogger(__name__)

ENVELOPE_ITEMS = ["ENVELOPE", "INTERNALDATE"]
BODY_ITEM = "BODY.PEEK[]"
BODY_KEY = b"BODY[]"

ClientFactory = Callable[[ImapAccount, int], IMAPClient]


# ---------------------------------------------------------------------------
# Message handles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvelopeData:
    """Decoded subset of an IMAP ENVELOPE."""

    subject: str = ""
    from_addresses: List[str] = field(default_factory=list)
    to_addresses: List[str] = field(default_factory=list)
    date: Optional[datetime] = None


@dataclass(frozen=True)
class MessageRef:
    """A listed message whose body has not been downloaded yet."""

    uid: Optional[int]
    sequence_number: Optional[int]
    envelope: EnvelopeData
    internal_date: Optional[datetime]

    @classmethod
    def from_fetch(cls, uid: Optional[int], data: Dict[bytes, Any]) -> "MessageRef":
        envelope = data.get(b"ENVELOPE")
        return cls(
            uid=uid,
            sequence_number=data.get(b"SEQ"),
            envelope=_decode_envelope(envelope),
            internal_date=_as_utc(data.get(b"INTERNALDATE")),
        )


@dataclass(frozen=True)
class FetchedMessage:
    """A ref after exactly one body download attempt."""

    ref: MessageRef
    body: Optional[bytes] = None
    body_error: Optional[SyncError] = None


def _decode_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    try:
        return str(make_header(decode_header(value)))
    except Exception:  # noqa: BLE001 - malformed encoded-words
        return value


def _format_addresses(addresses: Optional[Iterable[Any]]) -> List[str]:
    result: List[str] = []
    for address in addresses or ():
        mailbox = _decode_text(getattr(address, "mailbox", None))
        host = _decode_text(getattr(address, "host", None))
        if mailbox and host:
            result.append(f"{mailbox}@{host}")
        elif mailbox:
            result.append(mailbox)
    return result


def _decode_envelope(envelope: Any) -> EnvelopeData:
    if envelope is None:
        return EnvelopeData()
    return EnvelopeData(
        subject=_decode_text(getattr(envelope, "subject", None)),
        from_addresses=_format_addresses(getattr(envelope, "from_", None)),
        to_addresses=_format_addresses(getattr(envelope, "to", None)),
        date=_as_utc(getattr(envelope, "date", None)),
    )


def _as_utc(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    # imapclient normalises INTERNALDATE to naive local time by default
    return value.astimezone(timezone.utc)


def has_new_mail(responses: Iterable[Any]) -> bool:
    """True if any untagged IDLE response is an ``EXISTS`` notification."""

    for response in responses:
        parts = response if isinstance(response, (tuple, list)) else (response,)
        for part in parts:
            if isinstance(part, bytes):
                part = part.decode("ascii", errors="ignore")
            if isinstance(part, str) and "EXISTS" in part.upper():
                return True
    return False


# ---------------------------------------------------------------------------
# Client construction
# ---------------------------------------------------------------------------


def create_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    return context


def create_imap_client(account: ImapAccount, timeout: int) -> IMAPClient:
    """Open a TCP/TLS connection to ``account`` (not yet logged in)."""

    if not account.use_ssl:
        logger.warning(
            "Connecting without TLS",
            extra={"account_id": account.id, "host": account.host, "port": account.port},
        )
    return IMAPClient(
        host=account.host,
        port=account.port,
        ssl=account.use_ssl,
        ssl_context=create_ssl_context() if account.use_ssl else None,
        timeout=timeout,
        use_uid=True,
    )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class MailboxSession:
    """Exclusive handle to one account's connection and selected folder."""

    def __init__(
        self,
        account: ImapAccount,
        *,
        folder: str = "INBOX",
        client_factory: ClientFactory = create_imap_client,
        connection_timeout: int = 30,
    ) -> None:
        self.account = account
        self.folder = folder
        self._client_factory = client_factory
        self._connection_timeout = connection_timeout
        self._client: Optional[IMAPClient] = None
        self._lock = asyncio.Lock()
        self._inflight: Set[asyncio.Future] = set()
        self._executor: Optional[ThreadPoolExecutor] = None
        self.uid_next: Optional[int] = None
        self.exists: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @asynccontextmanager
    async def locked(self) -> AsyncIterator["MailboxSession"]:
        """Hold the session lock; released on every exit path."""
        async with self._lock:
            yield self

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        """Open, log in and select the folder.

        Raises:
            ConnectFailedError: If any step fails
        """
        if self._client is not None:
            return
        logger.info(
            "Connecting to IMAP",
            extra={"account_id": self.account.id, "host": self.account.host, "port": self.account.port},
        )
        future = self._submit(self._open)
        try:
            client, select_info = await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(_shutdown_late_client)
            raise
        except Exception as exc:  # noqa: BLE001
            raise ConnectFailedError(self.account.id, exc, host=self.account.host) from exc
        self._client = client
        self.exists = select_info.get(b"EXISTS")
        self.uid_next = select_info.get(b"UIDNEXT")
        logger.info(
            "IMAP connected",
            extra={"account_id": self.account.id, "folder": self.folder, "exists": self.exists},
        )

    async def reconnect(self) -> None:
        """Drop the current connection without logging out and make one new attempt."""
        client, self._client = self._client, None
        if client is not None:
            try:
                client.shutdown()
            except Exception:  # noqa: BLE001 - the old socket is already broken
                logger.debug("Shutdown of stale IMAP socket failed", extra={"account_id": self.account.id})
        await self.connect()

    async def close(self) -> None:
        """Release the connection.

        Logs out cleanly when idle. When a protocol call is in flight the
        socket is shut down instead, so a thread blocked in ``idle_check``
        returns immediately.
        """
        client, self._client = self._client, None
        if client is None:
            self._release_executor()
            return
        if self._inflight or self._lock.locked():
            logger.debug("Shutting down busy IMAP socket", extra={"account_id": self.account.id})
            client.shutdown()
            self._release_executor()
            return
        try:
            await self._call(client.logout)
        finally:
            self._release_executor()
        logger.info("IMAP session closed", extra={"account_id": self.account.id})

    def _open(self):
        client = self._client_factory(self.account, self._connection_timeout)
        try:
            client.login(self.account.username, self.account.password.get_secret_value())
            select_info = client.select_folder(self.folder, readonly=True)
        except BaseException:
            try:
                client.shutdown()
            except Exception:  # noqa: BLE001 - original error is the one that matters
                logger.debug("Shutdown after failed login also failed", exc_info=True)
            raise
        return client, select_info

    # -- lock-requiring operations -----------------------------------------

    async def search_since(self, since: date) -> List[int]:
        """Uids the server reports for ``SINCE since``, ascending."""
        client = self._require()
        uids = await self._call(client.search, ["SINCE", since])
        return sorted(uids)

    async def uids_after(self, high_water_mark: int) -> List[int]:
        """Uids strictly above ``high_water_mark``, ascending.

        With no mark yet (0) only the newest message is returned.
        """
        client = self._require()
        if high_water_mark <= 0:
            uids = await self._call(client.search, ["ALL"])
            return [max(uids)] if uids else []
        uids = await self._call(client.search, ["UID", f"{high_water_mark + 1}:*"])
        # "n:*" always matches the highest uid, even when it is below n
        return sorted(uid for uid in uids if uid > high_water_mark)

    async def fetch_refs(self, uids: Sequence[int]) -> List[MessageRef]:
        client = self._require()
        if not uids:
            return []
        response = await self._call(client.fetch, list(uids), ENVELOPE_ITEMS)
        return [MessageRef.from_fetch(uid, response[uid]) for uid in sorted(response)]

    async def fetch_message(self, ref: MessageRef) -> FetchedMessage:
        """Download the body of ``ref`` once; failure is recorded, not raised."""
        client = self._require()
        if ref.uid is None:
            error = DownloadFailedError(self.account.id, message="message has no uid", folder=self.folder)
            return FetchedMessage(ref=ref, body_error=error)
        try:
            response = await self._call(client.fetch, [ref.uid], [BODY_ITEM])
            body = response.get(ref.uid, {}).get(BODY_KEY)
            if body is None:
                raise LookupError(f"server returned no body for uid {ref.uid}")
        except Exception as exc:  # noqa: BLE001
            error = DownloadFailedError(self.account.id, exc, uid=ref.uid, folder=self.folder)
            return FetchedMessage(ref=ref, body_error=error)
        return FetchedMessage(ref=ref, body=body)

    async def wait_for_update(self, timeout: float) -> bool:
        """Block in IDLE for up to ``timeout`` seconds.

        Returns True when the server pushed an ``EXISTS`` notification.
        Connection errors propagate to the caller.
        """
        client = self._require()
        responses = await self._call(self._idle_once, client, timeout)
        return has_new_mail(responses)

    @staticmethod
    def _idle_once(client: IMAPClient, timeout: float) -> List[Any]:
        client.idle()
        responses = list(client.idle_check(timeout=timeout))
        _, trailing = client.idle_done()
        return responses + list(trailing or [])

    # -- plumbing ----------------------------------------------------------

    def _require(self) -> IMAPClient:
        if not self._lock.locked():
            raise RuntimeError("mailbox session lock must be held for this operation")
        if self._client is None:
            raise ConnectionError(f"IMAP session for {self.account.id} is not open")
        return self._client

    def _submit(self, fn: Callable[..., Any], *args: Any) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"imap-{self.account.id}")
        future = loop.run_in_executor(self._executor, functools.partial(fn, *args))
        self._inflight.add(future)
        future.add_done_callback(self._forget)
        return future

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        # shield keeps the future pending until the worker thread returns,
        # so close() still sees the call as in flight after a cancel
        return await asyncio.shield(self._submit(fn, *args))

    def _forget(self, future: asyncio.Future) -> None:
        self._inflight.discard(future)
        if not future.cancelled():
            future.exception()

    def _release_executor(self) -> None:
        # queued work still runs; the worker exits once it drains
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)


def _shutdown_late_client(future: asyncio.Future) -> None:
    """Close a connection whose connect() caller was cancelled meanwhile."""
    if future.cancelled() or future.exception() is not None:
        return
    client, _ = future.result()
    try:
        client.shutdown()
    except Exception:  # noqa: BLE001
        logger.debug("Shutdown of abandoned IMAP connection failed", exc_info=True)


__all__ = [
    "ClientFactory",
    "EnvelopeData",
    "FetchedMessage",
    "MailboxSession",
    "MessageRef",
    "create_imap_client",
    "create_ssl_context",
    "has_new_mail",
]
