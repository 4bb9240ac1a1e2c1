"""
In-memory store adapter.

Implements the invite and account repository ports over plain dicts.
Suitable for tests and single-process dev runs. Every operation runs under
one re-entrant lock, which gives the same compare-and-set guarantees the
SQLite adapter gets from BEGIN IMMEDIATE.
"""

from __future__ import annotations

import copy
import itertools
from datetime import datetime
from threading import RLock
from types import TracebackType
from uuid import UUID

from src.domain.entities import Account, InviteCode, RoleBinding, StatusFilter
from src.domain.errors import (
    ActiveCodeExistsError,
    AlreadyLinkedError,
    DuplicateCodeError,
    ValidationError,
)


class InMemoryStore:
    """Shared state for the in-memory repositories."""

    def __init__(self) -> None:
        self.lock = RLock()
        self.codes: dict[int, InviteCode] = {}
        self.issued: set[str] = set()
        self.accounts: dict[UUID, Account] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def snapshot(self) -> tuple[dict[int, InviteCode], set[str], dict[UUID, Account]]:
        return copy.deepcopy((self.codes, self.issued, self.accounts))

    def restore(
        self, state: tuple[dict[int, InviteCode], set[str], dict[UUID, Account]]
    ) -> None:
        self.codes, self.issued, self.accounts = state

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)


class InMemoryInviteCodeRepo:
    """In-memory implementation of InviteCodeRepoPort."""

    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store or InMemoryStore()

    def find_by_code(self, code: str) -> InviteCode | None:
        with self.store.lock:
            for row in self.store.codes.values():
                if row.code == code:
                    return row.model_copy()
            return None

    def find_active_by_identity(self, identity_id: int, now: datetime) -> InviteCode | None:
        with self.store.lock:
            pending = [
                r
                for r in self.store.codes.values()
                if r.owner_identity_id == identity_id and r.is_pending(now)
            ]
            if not pending:
                return None
            return _newest_first(pending)[0].model_copy()

    def list_by_identity(self, identity_id: int) -> list[InviteCode]:
        with self.store.lock:
            rows = [r for r in self.store.codes.values() if r.owner_identity_id == identity_id]
            return [r.model_copy() for r in _newest_first(rows)]

    def list_active(self, now: datetime) -> list[InviteCode]:
        with self.store.lock:
            rows = [r for r in self.store.codes.values() if r.is_pending(now)]
            return [r.model_copy() for r in _newest_first(rows)]

    def list_all(self) -> list[InviteCode]:
        with self.store.lock:
            return [r.model_copy() for r in _newest_first(list(self.store.codes.values()))]

    def insert(self, record: InviteCode, now: datetime) -> InviteCode:
        with self.store.lock:
            if self.find_active_by_identity(record.owner_identity_id, now) is not None:
                raise ActiveCodeExistsError(
                    f"Identity {record.owner_identity_id} already holds a pending code",
                    identity_id=record.owner_identity_id,
                )
            if record.code in self.store.issued:
                raise DuplicateCodeError("Invite code already issued", invite_code=record.code)

            saved = record.model_copy(update={"id": self.store.next_id()})
            self.store.issued.add(saved.code)
            self.store.codes[saved.id] = saved  # type: ignore[index]
            return saved.model_copy()

    def mark_used(self, code_id: int, account_id: UUID, used_at: datetime) -> bool:
        with self.store.lock:
            row = self.store.codes.get(code_id)
            if row is None or not row.is_pending(used_at):
                return False
            if account_id not in self.store.accounts:
                raise ValidationError(f"Account {account_id} does not exist")
            self.store.codes[code_id] = row.model_copy(
                update={
                    "is_used": True,
                    "used_at": used_at,
                    "redeemed_by_account_id": account_id,
                }
            )
            return True

    def revoke(self, code: str, now: datetime) -> bool:
        with self.store.lock:
            for code_id, row in self.store.codes.items():
                if row.code == code:
                    if not row.is_pending(now):
                        return False
                    self.store.codes[code_id] = row.model_copy(
                        update={"expires_at": now, "revoked_at": now}
                    )
                    return True
            return False

    def delete_older_than(self, cutoff: datetime) -> int:
        with self.store.lock:
            doomed = [cid for cid, r in self.store.codes.items() if r.expires_at < cutoff]
            for cid in doomed:
                del self.store.codes[cid]
            return len(doomed)

    def page(
        self,
        skip: int,
        take: int,
        now: datetime,
        status_filter: StatusFilter | None = None,
        search_term: str | None = None,
    ) -> tuple[list[InviteCode], int]:
        with self.store.lock:
            rows = list(self.store.codes.values())

        if status_filter == "revoked":
            rows = [r for r in rows if r.is_revoked()]
        elif status_filter is not None:
            rows = [r for r in rows if r.status_at(now) == status_filter]

        if search_term:
            term = search_term.lower()
            rows = [
                r
                for r in rows
                if term in r.code.lower() or term in r.owner_display_name.lower()
            ]

        ordered = _newest_first(rows)
        return [r.model_copy() for r in ordered[skip : skip + take]], len(ordered)


class InMemoryAccountRepo:
    """In-memory implementation of AccountRepoPort."""

    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store or InMemoryStore()
        # Counts get_binding calls; lets tests observe cache refetches
        self.binding_fetches = 0

    def get_by_id(self, account_id: UUID) -> Account | None:
        with self.store.lock:
            account = self.store.accounts.get(account_id)
            return account.model_copy(deep=True) if account else None

    def get_by_identity(self, identity_id: int) -> Account | None:
        with self.store.lock:
            for account in self.store.accounts.values():
                if account.identity_id == identity_id:
                    return account.model_copy(deep=True)
            return None

    def get_by_username(self, username: str) -> Account | None:
        with self.store.lock:
            for account in self.store.accounts.values():
                if account.username.lower() == username.lower():
                    return account.model_copy(deep=True)
            return None

    def get_by_email(self, email: str) -> Account | None:
        with self.store.lock:
            for account in self.store.accounts.values():
                if account.email.lower() == email.lower():
                    return account.model_copy(deep=True)
            return None

    def save(self, account: Account) -> Account:
        with self.store.lock:
            for other in self.store.accounts.values():
                if other.id == account.id:
                    continue
                if account.identity_id is not None and other.identity_id == account.identity_id:
                    raise AlreadyLinkedError(
                        f"Identity {account.identity_id} is already linked to an account"
                    )
                if (
                    other.username.lower() == account.username.lower()
                    or other.email.lower() == account.email.lower()
                ):
                    raise ValidationError("Username or email already registered")

            stored = account.model_copy(
                deep=True, update={"roles": list(dict.fromkeys(account.roles))}
            )
            self.store.accounts[account.id] = stored
            return account

    def delete(self, account_id: UUID) -> bool:
        with self.store.lock:
            if self.store.accounts.pop(account_id, None) is None:
                return False
            # ON DELETE SET NULL
            for code_id, row in self.store.codes.items():
                if row.redeemed_by_account_id == account_id:
                    self.store.codes[code_id] = row.model_copy(
                        update={"redeemed_by_account_id": None}
                    )
            return True

    def list_by_role(self, role: str) -> list[Account]:
        with self.store.lock:
            wanted = role.lower()
            matches = [
                a
                for a in self.store.accounts.values()
                if any(r.lower() == wanted for r in a.roles)
            ]
            return [a.model_copy(deep=True) for a in sorted(matches, key=lambda a: a.created_at)]

    def get_binding(self, identity_id: int, now: datetime) -> RoleBinding | None:
        with self.store.lock:
            self.binding_fetches += 1
            account = self.get_by_identity(identity_id)
        if account is None:
            return None
        return RoleBinding(
            identity_id=identity_id,
            account_id=account.id,
            roles=frozenset(account.roles),
            fetched_at=now,
        )


class InMemoryUnitOfWork:
    """
    Unit of work over an InMemoryStore.

    Holds the store lock for its whole lifetime and restores the snapshot
    taken on entry unless commit() was called.
    """

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._snapshot: tuple[dict[int, InviteCode], set[str], dict[UUID, Account]] | None = None
        self._invite_codes = InMemoryInviteCodeRepo(store)
        self._accounts = InMemoryAccountRepo(store)

    @property
    def invite_codes(self) -> InMemoryInviteCodeRepo:
        return self._invite_codes

    @property
    def accounts(self) -> InMemoryAccountRepo:
        return self._accounts

    def __enter__(self) -> InMemoryUnitOfWork:
        self.store.lock.acquire()
        self._snapshot = self.store.snapshot()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self._snapshot is not None:
                self.rollback()
        finally:
            self.store.lock.release()

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
            self._snapshot = None


def _newest_first(rows: list[InviteCode]) -> list[InviteCode]:
    return sorted(rows, key=lambda r: (r.created_at, r.id or 0), reverse=True)
