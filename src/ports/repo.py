"""
Repository port interfaces.

Protocol-based interfaces for the invite store and the account store.
Implementations: SQLite (production), in-memory (tests and dev).

Every implementation must honor the conditional-write contracts below;
they are what make concurrent redemption and issuance safe.
"""

from __future__ import annotations

from datetime import datetime
from types import TracebackType
from typing import Protocol
from uuid import UUID

from src.domain.entities import Account, InviteCode, RoleBinding, StatusFilter

# -----------------------------------------------------------------------------
# Invite code store (Persistence Port)
# -----------------------------------------------------------------------------


class InviteCodeRepoPort(Protocol):
    """
    Repository for invite codes.

    Invariants:
    - I1: `code` is unique across all rows for all time
    - I2: At most one pending row per owner identity
    - I3: A row leaves the pending state at most once
    """

    def find_by_code(self, code: str) -> InviteCode | None:
        """Get a code by its exact (normalized) string."""
        ...

    def find_active_by_identity(self, identity_id: int, now: datetime) -> InviteCode | None:
        """Get the single pending row for an identity, or None."""
        ...

    def list_by_identity(self, identity_id: int) -> list[InviteCode]:
        """All rows for an identity, newest first."""
        ...

    def list_active(self, now: datetime) -> list[InviteCode]:
        """All pending rows, newest first."""
        ...

    def insert(self, record: InviteCode, now: datetime) -> InviteCode:
        """
        Persist a new row and return it with its store-assigned id.

        Raises DuplicateCodeError when the code collides (store constraint).
        Raises ActiveCodeExistsError when the identity already holds a
        pending row at the instant of the write.
        """
        ...

    def mark_used(self, code_id: int, account_id: UUID, used_at: datetime) -> bool:
        """
        Atomically redeem a row.

        Single conditional write: applies only when the row is pending at
        `used_at`. Returns False when it was already used, revoked or expired.
        """
        ...

    def revoke(self, code: str, now: datetime) -> bool:
        """Pull a pending row's expiry to `now`. False if not pending."""
        ...

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete rows with expires_at < cutoff regardless of state. Returns count."""
        ...

    def page(
        self,
        skip: int,
        take: int,
        now: datetime,
        status_filter: StatusFilter | None = None,
        search_term: str | None = None,
    ) -> tuple[list[InviteCode], int]:
        """Admin listing, newest first. Returns (items, total_count)."""
        ...

    def list_all(self) -> list[InviteCode]:
        ...


# -----------------------------------------------------------------------------
# Account store
# -----------------------------------------------------------------------------


class AccountRepoPort(Protocol):
    """
    Repository for application accounts and their roles.

    Invariants:
    - I1: An identity is linked to at most one account
    """

    def get_by_id(self, account_id: UUID) -> Account | None:
        ...

    def get_by_identity(self, identity_id: int) -> Account | None:
        ...

    def get_by_username(self, username: str) -> Account | None:
        ...

    def get_by_email(self, email: str) -> Account | None:
        ...

    def save(self, account: Account) -> Account:
        """Insert or update the account and replace its role set."""
        ...

    def delete(self, account_id: UUID) -> bool:
        ...

    def list_by_role(self, role: str) -> list[Account]:
        ...

    def get_binding(self, identity_id: int, now: datetime) -> RoleBinding | None:
        """Role snapshot for a linked identity, or None if never linked."""
        ...


# -----------------------------------------------------------------------------
# Unit of Work
# -----------------------------------------------------------------------------


class UnitOfWorkPort(Protocol):
    """
    Transaction boundary spanning both stores.

    Leaving the context without commit() rolls everything back.
    """

    @property
    def invite_codes(self) -> InviteCodeRepoPort:
        ...

    @property
    def accounts(self) -> AccountRepoPort:
        ...

    def __enter__(self) -> UnitOfWorkPort:
        ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...
