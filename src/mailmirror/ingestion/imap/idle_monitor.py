"""IMAP IDLE listener for real-time sync.

The listener parks in IDLE until the server pushes an ``EXISTS``
notification, fetches everything above the account's high-water-mark uid,
indexes it and emits ``email:new``. IDLE is renewed every
``idle_timeout`` seconds. A failed wait is raised as
:class:`WaitFailedError`; reconnecting is the supervisor's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from ...notifications.broadcaster import NEW_EMAIL_EVENT, EventBroadcaster
from .connection_manager import FetchedMessage, MailboxSession
from .email_normalizer import EmailNormalizer
from .exceptions import NormalizeFailedError, WaitFailedError


logger = logging.getLogger(__name__)


class LiveUpdateListener:
    """Wait for server push on one session and index what arrives."""

    def __init__(
        self,
        *,
        session: MailboxSession,
        normalizer: EmailNormalizer,
        broadcaster: EventBroadcaster,
        idle_timeout: float = 300,
        fetch_limit: int = 50,
        high_water_mark: int = 0,
    ):
        """Initialize the listener.

        Args:
            session: Connected session to wait on
            normalizer: Builds and indexes documents
            broadcaster: Receives ``email:new`` events
            idle_timeout: IDLE renewal interval in seconds
            fetch_limit: Most messages fetched per lock hold
            high_water_mark: Highest uid already indexed
        """
        self.session = session
        self.normalizer = normalizer
        self.broadcaster = broadcaster
        self.idle_timeout = idle_timeout
        self.fetch_limit = fetch_limit
        self.high_water_mark = high_water_mark
        self.indexed = 0
        self.renewals = 0
        self._stop_event = asyncio.Event()

    @property
    def account_id(self) -> str:
        return self.session.account.id

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Wait and handle pushes until stopped.

        Raises:
            WaitFailedError: If the IDLE wait fails while not stopping
        """
        while not self._stop_event.is_set():
            try:
                async with self.session.locked():
                    has_new = await self.session.wait_for_update(self.idle_timeout)
            except Exception as exc:  # noqa: BLE001
                if self._stop_event.is_set():
                    return
                error = WaitFailedError(self.account_id, exc, folder=self.session.folder)
                logger.warning("IDLE wait failed", extra=error.log_extra())
                raise error from exc

            self.renewals += 1
            if has_new and not self._stop_event.is_set():
                logger.info(
                    "New mail notification",
                    extra={"account_id": self.account_id, "folder": self.session.folder},
                )
                await self.handle_new_mail()

    async def handle_new_mail(self) -> int:
        """Fetch, index and announce messages above the high-water mark.

        Errors are logged and swallowed; a dead connection surfaces on the
        next wait. Returns the number of messages handled.
        """
        handled = 0
        try:
            while True:
                fetched = await self._fetch_pending()
                if not fetched:
                    break
                for message in fetched:
                    await self._index(message)
                    handled += 1
                if len(fetched) < self.fetch_limit:
                    break
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Error processing new email",
                extra={"account_id": self.account_id, "folder": self.session.folder},
                exc_info=exc,
            )

        if handled:
            self.broadcaster.emit(NEW_EMAIL_EVENT, {"accountId": self.account_id})
        return handled

    async def _fetch_pending(self) -> List[FetchedMessage]:
        async with self.session.locked():
            uids = await self.session.uids_after(self.high_water_mark)
            uids = uids[: self.fetch_limit]
            if not uids:
                return []
            refs = await self.session.fetch_refs(uids)
            fetched = [await self.session.fetch_message(ref) for ref in refs]
        self.high_water_mark = max(self.high_water_mark, *uids)
        return fetched

    async def _index(self, message: FetchedMessage) -> None:
        try:
            outcome = await asyncio.to_thread(
                self.normalizer.process, self.account_id, self.session.folder, message
            )
        except Exception as exc:  # noqa: BLE001
            error = NormalizeFailedError(
                self.account_id, exc, uid=message.ref.uid, folder=self.session.folder
            )
            logger.warning("Skipping new email", extra=error.log_extra(), exc_info=exc)
            return
        if outcome.indexed:
            self.indexed += 1


__all__ = ["LiveUpdateListener"]
