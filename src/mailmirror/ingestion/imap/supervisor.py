"""Per-account connection lifecycle.

Each configured account gets one :class:`ConnectionSupervisor` running as its
own asyncio task::

    DISCONNECTED -> CONNECTING -> BACKFILLING -> IDLING <-> RECONNECTING
                           \\                                   /
                            +---------> TERMINATED <-----------+

A connect failure terminates only that account. A failed IDLE wait gets
exactly one immediate reconnect attempt; if that fails the account is
terminated for the rest of the process. Nothing raised here escapes the
account's task.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from ...configuration.settings import SyncSettings
from ...notifications.broadcaster import EventBroadcaster
from .backfill import BackfillResult, HistoricalBackfill
from .connection_manager import ClientFactory, MailboxSession, create_imap_client
from .descriptor import ImapAccount
from .email_normalizer import EmailNormalizer
from .exceptions import SyncError, WaitFailedError
from .idle_monitor import LiveUpdateListener
from .sync_state import AccountSyncStatus, StateTransition, SyncState, validate_transition


logger = logging.getLogger(__name__)

ConnectedHook = Callable[[str], Awaitable[None]]


class ConnectionSupervisor:
    """Drive one account through connect, backfill and IDLE."""

    def __init__(
        self,
        account: ImapAccount,
        *,
        settings: SyncSettings,
        normalizer: EmailNormalizer,
        broadcaster: EventBroadcaster,
        client_factory: ClientFactory = create_imap_client,
        on_connected: Optional[ConnectedHook] = None,
    ) -> None:
        self.account = account
        self.settings = settings
        self.normalizer = normalizer
        self.broadcaster = broadcaster
        self.session = MailboxSession(
            account,
            folder=settings.folder,
            client_factory=client_factory,
            connection_timeout=settings.connection_timeout_seconds,
        )
        self.backfill = HistoricalBackfill(settings, normalizer)
        self.listener: Optional[LiveUpdateListener] = None
        self.history: List[StateTransition] = []
        self._on_connected = on_connected
        self._status = AccountSyncStatus(account_id=account.id)
        self._startup_state: Optional[SyncState] = None
        self._started = asyncio.Event()
        self._stopping = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> SyncState:
        return self._status.state

    def start(self) -> None:
        """Create the account task and return immediately."""
        if self._task is not None:
            raise RuntimeError(f"Supervisor for {self.account.id} already started")
        if self.state is SyncState.TERMINATED:
            raise RuntimeError(f"Supervisor for {self.account.id} is terminated")
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=f"imap-sync:{self.account.id}")

    async def wait_until_started(self) -> SyncState:
        """Resolve with IDLING or TERMINATED, whichever is reached first."""
        await self._started.wait()
        assert self._startup_state is not None
        return self._startup_state

    async def stop(self) -> None:
        """Stop the account for good.

        Cancels the task, then closes the session. A close error is logged
        and swallowed.
        """
        self._stopping = True
        if self.listener is not None:
            self.listener.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        try:
            await self.session.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Error closing IMAP session",
                extra={"account_id": self.account.id},
                exc_info=exc,
            )
        if self.state is not SyncState.TERMINATED:
            self._transition(SyncState.TERMINATED, reason="stopped")

    def status(self) -> AccountSyncStatus:
        status = self._status.model_copy()
        if self.listener is not None:
            status.live_indexed = self.listener.indexed
            status.high_water_mark = self.listener.high_water_mark
        return status

    # -- task body ---------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._run_lifecycle()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Unexpected error in account supervisor",
                extra={"account_id": self.account.id},
            )
            self._record_error(exc)
            if self.state is not SyncState.TERMINATED:
                self._transition(SyncState.TERMINATED, reason="unexpected error")

    async def _run_lifecycle(self) -> None:
        self._transition(SyncState.CONNECTING)
        try:
            await self.session.connect()
        except SyncError as exc:
            self._record_error(exc)
            self._transition(SyncState.TERMINATED, reason="connect failed")
            return

        self._transition(SyncState.BACKFILLING)
        if self._on_connected is not None:
            await self._on_connected(self.account.id)
        result = await self._run_backfill()

        self.listener = LiveUpdateListener(
            session=self.session,
            normalizer=self.normalizer,
            broadcaster=self.broadcaster,
            idle_timeout=self.settings.idle_timeout_seconds,
            fetch_limit=self.settings.push_fetch_limit,
            high_water_mark=self._initial_high_water_mark(result),
        )
        self._transition(SyncState.IDLING)

        while not self._stopping:
            try:
                await self.listener.run()
                return
            except WaitFailedError as exc:
                if self._stopping:
                    return
                self._record_error(exc)
                self._transition(SyncState.RECONNECTING, reason="wait failed")

            try:
                await self.session.reconnect()
            except SyncError as exc:
                self._record_error(exc)
                self._transition(SyncState.TERMINATED, reason="reconnect failed")
                return
            self._status.reconnects += 1
            self._transition(SyncState.IDLING, reason="reconnected")
            # pick up anything that arrived while the connection was down
            await self.listener.handle_new_mail()

    async def _run_backfill(self) -> Optional[BackfillResult]:
        try:
            result = await self.backfill.run(self.session)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Backfill failed; continuing with live updates",
                extra={"account_id": self.account.id},
                exc_info=exc,
            )
            return None
        self._status.backfill_indexed = result.indexed
        return result

    def _initial_high_water_mark(self, result: Optional[BackfillResult]) -> int:
        candidates = [0]
        if result is not None:
            candidates.append(result.highest_uid)
        if self.session.uid_next:
            candidates.append(self.session.uid_next - 1)
        return max(candidates)

    # -- state -------------------------------------------------------------

    def _transition(self, to_state: SyncState, *, reason: Optional[str] = None) -> None:
        transition = validate_transition(self.account.id, self.state, to_state, reason=reason)
        self.history.append(transition)
        self._status.state = to_state
        self._status.last_transition_at = transition.timestamp
        logger.info(
            "Account state %s -> %s",
            transition.from_state.value,
            to_state.value,
            extra={"account_id": self.account.id, "state": to_state.value, "reason": reason},
        )
        if to_state in {SyncState.IDLING, SyncState.TERMINATED} and not self._started.is_set():
            self._startup_state = to_state
            self._started.set()

    def _record_error(self, exc: BaseException) -> None:
        if isinstance(exc, SyncError):
            self._status.last_error_kind = exc.kind
            logger.error(str(exc), extra=exc.log_extra())
        self._status.last_error = str(exc)


__all__ = ["ConnectionSupervisor"]
