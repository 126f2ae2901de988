"""Top-level owner of every account supervisor.

The orchestrator decides between real and demo data:

* no accounts configured: seed the mock documents, never connect;
* at least one account connects: clear whatever was seeded before, once,
  ahead of that account's backfill;
* every account terminated during startup: seed the mock documents.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from ...configuration.settings import SyncSettings
from ...index.mock_data import seed_mock_documents
from ...index.sink import IndexingSink
from ...notifications.broadcaster import EventBroadcaster
from .connection_manager import ClientFactory, create_imap_client
from .descriptor import ImapAccount
from .email_normalizer import EmailNormalizer
from .exceptions import SinkWriteFailedError
from .supervisor import ConnectionSupervisor
from .sync_state import AccountSyncStatus, SyncState


logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Start, track and stop one supervisor per account."""

    def __init__(
        self,
        *,
        accounts: Sequence[ImapAccount],
        sink: IndexingSink,
        broadcaster: EventBroadcaster,
        settings: Optional[SyncSettings] = None,
        client_factory: ClientFactory = create_imap_client,
    ) -> None:
        self.accounts = list(accounts)
        self.sink = sink
        self.broadcaster = broadcaster
        self.settings = settings or SyncSettings()
        self.normalizer = EmailNormalizer(sink, body_max_chars=self.settings.body_max_chars)
        self._client_factory = client_factory
        self._supervisors: Dict[str, ConnectionSupervisor] = {}
        self._clear_lock = asyncio.Lock()
        self._mock_cleared = False
        self._started = False
        self._stopping = False
        self.mock_seeded = False

    @property
    def supervisors(self) -> Dict[str, ConnectionSupervisor]:
        return dict(self._supervisors)

    async def start_sync(self) -> None:
        """Start every account and wait until each is idling or terminated.

        A second call is a no-op. Never raises.
        """
        if self._started:
            logger.debug("IMAP sync already started")
            return
        self._started = True
        try:
            await self._start()
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error while starting IMAP sync")

    async def stop_sync(self) -> None:
        """Stop every supervisor; individual failures are logged, not raised."""
        self._stopping = True
        supervisors = list(self._supervisors.values())
        if not supervisors:
            return
        logger.info("Stopping IMAP sync", extra={"accounts": len(supervisors)})
        results = await asyncio.gather(
            *(supervisor.stop() for supervisor in supervisors),
            return_exceptions=True,
        )
        for supervisor, result in zip(supervisors, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Error stopping account",
                    extra={"account_id": supervisor.account.id},
                    exc_info=result,
                )

    def statuses(self) -> List[AccountSyncStatus]:
        return [supervisor.status() for supervisor in self._supervisors.values()]

    async def _start(self) -> None:
        if self._stopping:
            logger.info("IMAP sync stopped before it started")
            return
        if not self.accounts:
            logger.info("No IMAP accounts configured; seeding mock data")
            self._seed_mock_data()
            return

        for account in self.accounts:
            if account.id in self._supervisors:
                logger.warning("Duplicate IMAP account ignored", extra={"account_id": account.id})
                continue
            supervisor = ConnectionSupervisor(
                account,
                settings=self.settings,
                normalizer=self.normalizer,
                broadcaster=self.broadcaster,
                client_factory=self._client_factory,
                on_connected=self._clear_mock_data_once,
            )
            self._supervisors[account.id] = supervisor
            supervisor.start()

        outcomes = await asyncio.gather(
            *(supervisor.wait_until_started() for supervisor in self._supervisors.values())
        )
        live = [state for state in outcomes if state is SyncState.IDLING]
        if live:
            logger.info(
                "IMAP sync running",
                extra={"live_accounts": len(live), "accounts": len(outcomes)},
            )
            return
        if self._stopping:
            return
        logger.warning("All IMAP connections failed; seeding mock data")
        self._seed_mock_data()

    async def _clear_mock_data_once(self, account_id: str) -> None:
        async with self._clear_lock:
            if self._mock_cleared:
                return
            self._mock_cleared = True
            logger.info("Clearing mock data", extra={"account_id": account_id})
            try:
                removed = self.sink.clear_all()
            except Exception as exc:  # noqa: BLE001
                error = SinkWriteFailedError(account_id, exc, message="failed to clear mock data")
                logger.error(str(error), extra=error.log_extra(), exc_info=exc)
                return
            logger.info("Cleared %d documents", removed, extra={"account_id": account_id})

    def _seed_mock_data(self) -> None:
        if self.mock_seeded:
            return
        self.mock_seeded = True
        seed_mock_documents(self.sink)


__all__ = ["SyncOrchestrator"]
