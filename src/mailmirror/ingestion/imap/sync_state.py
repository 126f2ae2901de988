"""Per-account sync state machine.

Defines the lifecycle states a connection supervisor moves through, the table
of legal transitions between them, and the status snapshot a supervisor
exposes to its host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Set

from pydantic import BaseModel, Field

from .exceptions import InvalidStateTransitionError, SyncErrorKind


logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Lifecycle states for one account."""

    DISCONNECTED = "disconnected"  # Created, not started
    CONNECTING = "connecting"  # Opening the session
    BACKFILLING = "backfilling"  # Historical fetch in progress
    IDLING = "idling"  # Waiting for server push
    RECONNECTING = "reconnecting"  # Single reconnect attempt after a wait error
    TERMINATED = "terminated"  # Final; never restarted


VALID_TRANSITIONS: Dict[SyncState, Set[SyncState]] = {
    SyncState.DISCONNECTED: {
        SyncState.CONNECTING,
        SyncState.TERMINATED,  # Stopped before start
    },
    SyncState.CONNECTING: {
        SyncState.BACKFILLING,
        SyncState.TERMINATED,  # Connect failed or stopped
    },
    SyncState.BACKFILLING: {
        SyncState.IDLING,
        SyncState.TERMINATED,  # Stopped mid-backfill
    },
    SyncState.IDLING: {
        SyncState.RECONNECTING,
        SyncState.TERMINATED,  # Stopped
    },
    SyncState.RECONNECTING: {
        SyncState.IDLING,
        SyncState.TERMINATED,  # Reconnect failed or stopped
    },
    SyncState.TERMINATED: set(),
}


@dataclass(frozen=True)
class StateTransition:
    """Records one state change of an account."""

    account_id: str
    from_state: SyncState
    to_state: SyncState
    timestamp: datetime
    reason: Optional[str] = None

    def is_valid(self) -> bool:
        return self.to_state in VALID_TRANSITIONS.get(self.from_state, set())


def validate_transition(
    account_id: str,
    from_state: SyncState,
    to_state: SyncState,
    *,
    reason: Optional[str] = None,
) -> StateTransition:
    """Check a transition against ``VALID_TRANSITIONS``.

    Args:
        account_id: Account whose machine is moving
        from_state: Current state
        to_state: Requested state
        reason: Optional human readable reason for logs

    Returns:
        The validated transition record

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    transition = StateTransition(
        account_id=account_id,
        from_state=from_state,
        to_state=to_state,
        timestamp=datetime.now(timezone.utc),
        reason=reason,
    )
    if not transition.is_valid():
        logger.error(
            "Invalid state transition",
            extra={
                "account_id": account_id,
                "from_state": from_state.value,
                "to_state": to_state.value,
            },
        )
        raise InvalidStateTransitionError(
            f"Invalid transition for {account_id}: {from_state.value} -> {to_state.value}"
        )
    return transition


class AccountSyncStatus(BaseModel):
    """Point-in-time view of one account's supervisor."""

    account_id: str = Field(..., description="Mailbox address")
    state: SyncState = Field(default=SyncState.DISCONNECTED)
    last_transition_at: Optional[datetime] = Field(default=None)
    backfill_indexed: int = Field(default=0, ge=0, description="Documents indexed by backfill")
    live_indexed: int = Field(default=0, ge=0, description="Documents indexed from push events")
    reconnects: int = Field(default=0, ge=0, description="Successful reconnects")
    high_water_mark: int = Field(default=0, ge=0, description="Highest uid seen")
    last_error_kind: Optional[SyncErrorKind] = Field(default=None)
    last_error: Optional[str] = Field(default=None)

    @property
    def is_live(self) -> bool:
        return self.state in {SyncState.IDLING, SyncState.RECONNECTING}


__all__ = [
    "AccountSyncStatus",
    "StateTransition",
    "SyncState",
    "VALID_TRANSITIONS",
    "validate_transition",
]
