"""Account descriptor and environment-backed registry.

Accounts are resolved once, at orchestrator start, from numbered environment
variables::

    IMAP1_USER, IMAP1_HOST, IMAP1_PASS, IMAP1_PORT (993), IMAP1_SECURE (true)
    IMAP2_USER, ...

A slot is used only when user, host and password are all present. Incomplete
slots are skipped with a log line. Passwords never reach logs or ``repr``.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterator, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator


logger = logging.getLogger(__name__)

MAX_ACCOUNTS = 10
DEFAULT_IMAP_PORT = 993


class ImapAccount(BaseModel):
    """Immutable connection settings for one mailbox."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Mailbox address, used as the account key")
    host: str = Field(..., description="IMAP hostname")
    port: int = Field(default=DEFAULT_IMAP_PORT, ge=1, le=65535)
    use_ssl: bool = Field(default=True, description="Implicit TLS on connect")
    username: str = Field(..., description="Login name")
    password: SecretStr = Field(..., description="Login password")

    @field_validator("host")
    @classmethod
    def _validate_host(cls, value: str) -> str:  # type: ignore[override]
        value = value.strip()
        if not value or " " in value:
            raise ValueError("host must be a valid hostname")
        return value

    @field_validator("id", "username")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:  # type: ignore[override]
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    def describe(self) -> Dict[str, object]:
        """Password-free view for display and logs."""
        return {
            "id": self.id,
            "host": self.host,
            "port": self.port,
            "use_ssl": self.use_ssl,
            "username": self.username,
        }


class AccountRegistry:
    """Ordered, id-unique collection of configured accounts."""

    def __init__(self, accounts: Sequence[ImapAccount] = ()) -> None:
        self._accounts: Dict[str, ImapAccount] = {}
        for account in accounts:
            if account.id in self._accounts:
                logger.warning(
                    "Duplicate IMAP account ignored",
                    extra={"account_id": account.id},
                )
                continue
            self._accounts[account.id] = account

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        max_accounts: int = MAX_ACCOUNTS,
    ) -> "AccountRegistry":
        """Resolve ``IMAP<n>_*`` slots for n = 1..max_accounts."""

        environ = os.environ if environ is None else environ
        accounts: List[ImapAccount] = []
        for slot in range(1, max_accounts + 1):
            account = _account_from_slot(environ, slot)
            if account is not None:
                accounts.append(account)
        registry = cls(accounts)
        logger.info("Found %d IMAP account(s) configured", len(registry))
        return registry

    def list(self) -> List[ImapAccount]:
        return list(self._accounts.values())

    def get(self, account_id: str) -> ImapAccount:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise KeyError(f"Account {account_id} not configured") from None

    def __iter__(self) -> Iterator[ImapAccount]:
        return iter(self._accounts.values())

    def __len__(self) -> int:
        return len(self._accounts)


def _account_from_slot(environ: Mapping[str, str], slot: int) -> Optional[ImapAccount]:
    prefix = f"IMAP{slot}_"
    user = environ.get(prefix + "USER", "").strip()
    host = environ.get(prefix + "HOST", "").strip()
    password = environ.get(prefix + "PASS", "")

    present = [bool(user), bool(host), bool(password)]
    if not any(present):
        return None
    if not all(present):
        logger.warning(
            "Skipping incomplete IMAP account slot %d",
            slot,
            extra={"slot": slot, "has_user": bool(user), "has_host": bool(host)},
        )
        return None

    raw_port = environ.get(prefix + "PORT", "").strip() or str(DEFAULT_IMAP_PORT)
    raw_secure = environ.get(prefix + "SECURE", "").strip() or "true"
    try:
        return ImapAccount(
            id=user,
            host=host,
            port=int(raw_port),
            use_ssl=raw_secure.lower() in {"1", "true", "yes"},
            username=user,
            password=SecretStr(password),
        )
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Skipping invalid IMAP account slot %d: %s",
            slot,
            type(exc).__name__,
            extra={"slot": slot, "account_id": user},
        )
        return None


__all__ = ["AccountRegistry", "DEFAULT_IMAP_PORT", "ImapAccount", "MAX_ACCOUNTS"]
