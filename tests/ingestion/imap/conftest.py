"""Shared fixtures and a fake IMAP server for sync engine tests."""

from __future__ import annotations

import asyncio
import queue
import threading
import time
from datetime import date, datetime, timedelta, timezone
from email.message import EmailMessage
from email.utils import format_datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import pytest
from imapclient.exceptions import IMAPClientError, LoginError
from imapclient.response_types import Address, Envelope
from pydantic import SecretStr

from mailmirror.configuration.settings import SyncSettings
from mailmirror.index.memory import InMemoryEmailIndex
from mailmirror.ingestion.imap.descriptor import ImapAccount
from mailmirror.notifications.broadcaster import LocalBroadcaster


# ============================================================================
# Fake IMAP server
# ============================================================================


def build_raw_message(
    *,
    subject: str,
    sender: str,
    to: Sequence[str],
    sent_at: datetime,
    body: Optional[str] = "Hello there",
    html: Optional[str] = None,
) -> bytes:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    msg["Date"] = format_datetime(sent_at)
    msg["Message-ID"] = f"<{abs(hash((subject, sent_at)))}@example.com>"
    if body is not None:
        msg.set_content(body)
        if html is not None:
            msg.add_alternative(html, subtype="html")
    elif html is not None:
        msg.set_content(html, subtype="html")
    return msg.as_bytes()


def _address(value: str) -> Address:
    mailbox, _, host = value.partition("@")
    return Address(None, None, mailbox.encode(), host.encode())


class FakeMailbox:
    """Server-side state of one account's INBOX."""

    def __init__(self) -> None:
        self.messages: Dict[int, Dict[str, Any]] = {}
        self.next_uid = 1
        self.idle_events: "queue.Queue[Any]" = queue.Queue()
        self.connect_failures = 0
        self.connect_attempts = 0
        self.fail_login = False
        self.body_failures: Set[int] = set()
        self.search_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.ignore_since = False
        self.omit_internal_date: Set[int] = set()
        self.clients: List["FakeImapClient"] = []
        self.fetch_calls: List[List[int]] = []
        self.active_calls = 0
        self.max_active_calls = 0
        self.idle_count = 0
        self._lock = threading.Lock()

    def add_message(
        self,
        *,
        subject: str = "Hello",
        sender: str = "alice@example.com",
        to: Sequence[str] = ("me@example.com",),
        internal_date: Optional[datetime] = None,
        body: Optional[str] = "Hello there",
        html: Optional[str] = None,
        uid: Optional[int] = None,
    ) -> int:
        internal_date = internal_date or datetime.now(timezone.utc)
        uid = uid or self.next_uid
        self.next_uid = max(self.next_uid, uid + 1)
        envelope = Envelope(
            internal_date,
            subject.encode(),
            (_address(sender),),
            (_address(sender),),
            (_address(sender),),
            tuple(_address(item) for item in to),
            None,
            None,
            None,
            b"<id@example.com>",
        )
        self.messages[uid] = {
            "raw": build_raw_message(
                subject=subject, sender=sender, to=to, sent_at=internal_date, body=body, html=html
            ),
            "internal_date": internal_date,
            "envelope": envelope,
        }
        return uid

    def push_new_mail(self, **kwargs: Any) -> int:
        """Deliver a message and notify any client parked in IDLE."""
        uid = self.add_message(**kwargs)
        self.idle_events.put([(len(self.messages), b"EXISTS")])
        return uid

    def break_idle(self, exc: Optional[BaseException] = None) -> None:
        self.idle_events.put(exc or ConnectionResetError("connection reset by peer"))

    def sequence_of(self, uid: int) -> int:
        return sorted(self.messages).index(uid) + 1

    def enter(self) -> None:
        with self._lock:
            self.active_calls += 1
            self.max_active_calls = max(self.max_active_calls, self.active_calls)

    def leave(self) -> None:
        with self._lock:
            self.active_calls -= 1


class FakeImapClient:
    """Thread-safe stand-in for ``imapclient.IMAPClient``."""

    def __init__(self, mailbox: FakeMailbox) -> None:
        self.mailbox = mailbox
        self.logged_in_as: Optional[str] = None
        self.selected: Optional[str] = None
        self.readonly: Optional[bool] = None
        self.logged_out = False
        self.shut_down = threading.Event()
        self.in_idle = False

    def login(self, username: str, password: str) -> bytes:
        if self.mailbox.fail_login:
            raise LoginError("[AUTHENTICATIONFAILED] Invalid credentials")
        self.logged_in_as = username
        return b"LOGIN completed"

    def select_folder(self, folder: str, readonly: bool = False) -> Dict[bytes, Any]:
        self.selected = folder
        self.readonly = readonly
        return {
            b"EXISTS": len(self.mailbox.messages),
            b"UIDNEXT": self.mailbox.next_uid,
            b"UIDVALIDITY": 1,
        }

    def search(self, criteria: List[Any]) -> List[int]:
        self._check_open()
        if self.mailbox.search_error is not None:
            raise self.mailbox.search_error
        uids = sorted(self.mailbox.messages)
        keyword = criteria[0]
        if keyword == "SINCE":
            since: date = criteria[1]
            if self.mailbox.ignore_since:
                return uids
            return [
                uid for uid in uids
                if self.mailbox.messages[uid]["internal_date"].date() >= since
            ]
        if keyword == "UID":
            start = int(criteria[1].split(":")[0])
            matched = [uid for uid in uids if uid >= start]
            # "n:*" always includes the highest uid
            return matched or uids[-1:]
        return uids

    def fetch(self, messages: Iterable[int], data: List[str]) -> Dict[int, Dict[bytes, Any]]:
        self._check_open()
        self.mailbox.enter()
        try:
            time.sleep(0.001)
            uids = list(messages)
            self.mailbox.fetch_calls.append(uids)
            result: Dict[int, Dict[bytes, Any]] = {}
            for uid in uids:
                stored = self.mailbox.messages.get(uid)
                if stored is None:
                    continue
                item: Dict[bytes, Any] = {b"SEQ": self.mailbox.sequence_of(uid)}
                if "BODY.PEEK[]" in data:
                    if uid in self.mailbox.body_failures:
                        raise IMAPClientError(f"FETCH failed for uid {uid}")
                    item[b"BODY[]"] = stored["raw"]
                if "ENVELOPE" in data:
                    item[b"ENVELOPE"] = stored["envelope"]
                if "INTERNALDATE" in data and uid not in self.mailbox.omit_internal_date:
                    item[b"INTERNALDATE"] = stored["internal_date"]
                result[uid] = item
            return result
        finally:
            self.mailbox.leave()

    def idle(self) -> None:
        self._check_open()
        self.in_idle = True
        self.mailbox.idle_count += 1

    def idle_check(self, timeout: Optional[float] = None) -> List[Any]:
        deadline = time.monotonic() + (timeout or 0)
        while True:
            self._check_open()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []
            try:
                item = self.mailbox.idle_events.get(timeout=min(0.01, remaining))
            except queue.Empty:
                continue
            if isinstance(item, BaseException):
                raise item
            return item

    def idle_done(self) -> tuple:
        self.in_idle = False
        return (b"IDLE terminated", [])

    def logout(self) -> bytes:
        if self.mailbox.logout_error is not None:
            raise self.mailbox.logout_error
        self.logged_out = True
        return b"LOGOUT completed"

    def shutdown(self) -> None:
        self.shut_down.set()

    def _check_open(self) -> None:
        if self.shut_down.is_set():
            raise OSError("socket is closed")


class ThreadRecordingIndex(InMemoryEmailIndex):
    """In-memory index that remembers which threads wrote to it."""

    def __init__(self) -> None:
        super().__init__()
        self.writer_threads: Set[int] = set()

    def put(self, document) -> None:
        self.writer_threads.add(threading.get_ident())
        super().put(document)


class FakeImapServer:
    """Hands out :class:`FakeImapClient` objects keyed by account id."""

    def __init__(self) -> None:
        self.mailboxes: Dict[str, FakeMailbox] = {}

    def mailbox(self, account_id: str) -> FakeMailbox:
        return self.mailboxes.setdefault(account_id, FakeMailbox())

    def factory(self, account: ImapAccount, timeout: int) -> FakeImapClient:
        mailbox = self.mailbox(account.id)
        mailbox.connect_attempts += 1
        if mailbox.connect_failures > 0:
            mailbox.connect_failures -= 1
            raise ConnectionRefusedError(f"connection to {account.host} refused")
        client = FakeImapClient(mailbox)
        mailbox.clients.append(client)
        return client

    @property
    def total_connect_attempts(self) -> int:
        return sum(mailbox.connect_attempts for mailbox in self.mailboxes.values())


# ============================================================================
# Fixtures
# ============================================================================


def make_account(account_id: str = "acct@example.com", **overrides: Any) -> ImapAccount:
    values: Dict[str, Any] = {
        "id": account_id,
        "host": "imap.example.com",
        "port": 993,
        "use_ssl": True,
        "username": account_id,
        "password": SecretStr("app-password"),
    }
    values.update(overrides)
    return ImapAccount(**values)


@pytest.fixture
def account() -> ImapAccount:
    return make_account()


@pytest.fixture
def account_factory():
    return make_account


@pytest.fixture
def imap_server() -> FakeImapServer:
    return FakeImapServer()


@pytest.fixture
def mailbox(imap_server: FakeImapServer, account: ImapAccount) -> FakeMailbox:
    return imap_server.mailbox(account.id)


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(pause_seconds=0.0, idle_timeout_seconds=5)


@pytest.fixture
def sink() -> InMemoryEmailIndex:
    return InMemoryEmailIndex()


@pytest.fixture
def broadcaster() -> LocalBroadcaster:
    return LocalBroadcaster()


@pytest.fixture
def days_ago():
    now = datetime.now(timezone.utc)

    def _days_ago(days: float) -> datetime:
        return now - timedelta(days=days)

    return _days_ago


@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds."""

    async def _wait_until(predicate, timeout: float = 3.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.01)

    return _wait_until


@pytest.fixture
def raw_message():
    return build_raw_message


@pytest.fixture
def recording_sink() -> ThreadRecordingIndex:
    return ThreadRecordingIndex()
