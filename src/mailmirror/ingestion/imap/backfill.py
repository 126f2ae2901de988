"""Bounded historical fetch run once per account after connecting."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Sequence, TypeVar

from ...configuration.settings import SyncSettings
from .connection_manager import MailboxSession, MessageRef
from .email_normalizer import EmailNormalizer
from .exceptions import NormalizeFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class BackfillResult:
    """Counters for one backfill run.

    Attributes:
        scanned: Uids returned by the server search
        indexed: Documents written to the sink
        failed: Messages skipped because of an error
        highest_uid: Highest uid the search returned
    """

    scanned: int = 0
    indexed: int = 0
    failed: int = 0
    highest_uid: int = 0


class HistoricalBackfill:
    """Fetch, normalize and index recent messages for one session.

    Only messages whose internal date falls inside the last
    ``backfill_days`` are considered, at most ``backfill_max_messages`` of
    them in ascending uid order. The whole run holds the session lock.
    """

    def __init__(
        self,
        settings: SyncSettings,
        normalizer: EmailNormalizer,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.settings = settings
        self.normalizer = normalizer
        self._clock = clock

    async def run(self, session: MailboxSession) -> BackfillResult:
        account_id = session.account.id
        folder = session.folder
        cutoff = self._clock() - timedelta(days=self.settings.backfill_days)
        result = BackfillResult()

        async with session.locked():
            refs = await self._collect(session, cutoff, result)
            logger.info(
                "Found %d recent emails to process",
                len(refs),
                extra={"account_id": account_id, "folder": folder},
            )

            processed = 0
            batch_size = self.settings.backfill_batch_size
            for batch_number, batch in enumerate(_chunks(refs, batch_size), start=1):
                logger.debug(
                    "Processing backfill batch %d",
                    batch_number,
                    extra={"account_id": account_id, "batch_size": len(batch)},
                )
                for ref in batch:
                    if await self._process_one(session, ref):
                        result.indexed += 1
                    else:
                        result.failed += 1
                    processed += 1
                    if processed % self.settings.pause_every == 0:
                        await asyncio.sleep(self.settings.pause_seconds)

        logger.info(
            "Backfill complete",
            extra={
                "account_id": account_id,
                "folder": folder,
                "indexed": result.indexed,
                "failed": result.failed,
            },
        )
        return result

    async def _collect(
        self, session: MailboxSession, cutoff: datetime, result: BackfillResult
    ) -> List[MessageRef]:
        # SINCE has day granularity, so every ref is rechecked against cutoff
        uids = await session.search_since(cutoff.date())
        result.scanned = len(uids)
        result.highest_uid = max(uids, default=0)

        cap = self.settings.backfill_max_messages
        collected: List[MessageRef] = []
        for chunk in _chunks(uids, self.settings.backfill_batch_size):
            for ref in await session.fetch_refs(chunk):
                received = ref.internal_date or ref.envelope.date
                if received is not None and received < cutoff:
                    continue
                collected.append(ref)
                if len(collected) >= cap:
                    return collected
        return collected

    async def _process_one(self, session: MailboxSession, ref: MessageRef) -> bool:
        account_id = session.account.id
        try:
            fetched = await session.fetch_message(ref)
            outcome = await asyncio.to_thread(
                self.normalizer.process, account_id, session.folder, fetched
            )
        except Exception as exc:  # noqa: BLE001
            error = NormalizeFailedError(account_id, exc, uid=ref.uid, folder=session.folder)
            logger.warning("Skipping email during backfill", extra=error.log_extra(), exc_info=exc)
            return False
        return outcome.indexed


__all__ = ["BackfillResult", "HistoricalBackfill"]
