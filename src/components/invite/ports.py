from datetime import datetime
from typing import Protocol

from src.domain.entities import Account
from src.ports.repo import InviteCodeRepoPort


class AccountLookupPort(Protocol):
    def get_by_identity(self, identity_id: int) -> Account | None: ...


class RoleCacheInvalidatorPort(Protocol):
    def invalidate(self, identity_id: int) -> None: ...


class CodeGeneratorPort(Protocol):
    def generate(self) -> str: ...


class TimePort(Protocol):
    """Port for time operations - enables deterministic testing."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...


__all__ = [
    "AccountLookupPort",
    "CodeGeneratorPort",
    "InviteCodeRepoPort",
    "RoleCacheInvalidatorPort",
    "TimePort",
]
