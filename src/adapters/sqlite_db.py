"""
SQLite Database Adapter.

Implements the invite and account repository ports using SQLite.
The conditional UPDATEs port to Postgres unchanged; locking is SQLite-specific.

Key behaviors:
- Timestamps stored as fixed-width UTC ISO strings so text order is time order
- Writes run inside BEGIN IMMEDIATE, serializing writers at the store
- Redemption and revocation are single conditional UPDATEs (compare-and-set)
- Code uniqueness is a UNIQUE index plus a never-deleted ledger of issued codes
- sqlite3.OperationalError (locked/unreachable DB) surfaces as UnavailableError
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from src.domain.entities import Account, InviteCode, RoleBinding, StatusFilter
from src.domain.errors import (
    ActiveCodeExistsError,
    AlreadyLinkedError,
    DuplicateCodeError,
    UnavailableError,
    ValidationError,
)

DEFAULT_BUSY_TIMEOUT = 5.0

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def to_db_dt(dt: datetime) -> str:
    """Serialize as UTC with microseconds, fixed width."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s) if s else None


def parse_uuid(s: str | None) -> UUID | None:
    """Parse UUID string."""
    return UUID(s) if s else None


def _py_lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def connect(db_path: str, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    try:
        conn = sqlite3.connect(
            db_path,
            timeout=busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = dict_factory
        # Built-in LOWER() only folds ASCII
        conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON;")
    except sqlite3.OperationalError as e:
        raise UnavailableError(f"Cannot open invite store: {e}") from e
    return conn


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(
        self,
        db_path: str,
        connection: sqlite3.Connection | None = None,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    ):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._external_conn = connection

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn
        return connect(self.db_path, self.busy_timeout)

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise UnavailableError(f"Invite store read failed: {e}") from e
        finally:
            if self._should_close():
                conn.close()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """
        Run a write inside BEGIN IMMEDIATE.

        When bound to a unit of work the surrounding transaction is used
        and commit/rollback is left to it.
        """
        conn = self._get_conn()
        own = self._should_close()
        try:
            if own:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if own:
                conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            if own and conn.in_transaction:
                conn.execute("ROLLBACK")
            raise UnavailableError(f"Invite store write failed: {e}") from e
        except BaseException:
            if own and conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            if own:
                conn.close()


# -----------------------------------------------------------------------------
# Invite Code Repository
# -----------------------------------------------------------------------------


_PENDING_SQL = "is_used = 0 AND expires_at > ?"


class SQLiteInviteCodeRepo(SQLiteRepoBase):
    """SQLite implementation of InviteCodeRepoPort."""

    def find_by_code(self, code: str) -> InviteCode | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM invite_codes WHERE code = ?", (code,)).fetchone()
            return self._map_row(row) if row else None

    def find_active_by_identity(self, identity_id: int, now: datetime) -> InviteCode | None:
        with self._read() as conn:
            return self._find_active(conn, identity_id, now)

    def list_by_identity(self, identity_id: int) -> list[InviteCode]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM invite_codes WHERE owner_identity_id = ? "
                "ORDER BY created_at DESC, id DESC",
                (identity_id,),
            ).fetchall()
            return [self._map_row(r) for r in rows]

    def list_active(self, now: datetime) -> list[InviteCode]:
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT * FROM invite_codes WHERE {_PENDING_SQL} "
                "ORDER BY created_at DESC, id DESC",
                (to_db_dt(now),),
            ).fetchall()
            return [self._map_row(r) for r in rows]

    def list_all(self) -> list[InviteCode]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM invite_codes ORDER BY created_at DESC, id DESC"
            ).fetchall()
            return [self._map_row(r) for r in rows]

    def insert(self, record: InviteCode, now: datetime) -> InviteCode:
        with self._write() as conn:
            # Checked inside the write lock, so two issuers cannot both pass
            existing = self._find_active(conn, record.owner_identity_id, now)
            if existing is not None:
                raise ActiveCodeExistsError(
                    f"Identity {record.owner_identity_id} already holds a pending code",
                    identity_id=record.owner_identity_id,
                )

            try:
                conn.execute("INSERT INTO issued_codes (code) VALUES (?)", (record.code,))
                cursor = conn.execute(
                    """
                    INSERT INTO invite_codes (
                        code, owner_identity_id, owner_display_name,
                        created_at, expires_at, is_used, used_at,
                        redeemed_by_account_id, revoked_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.code,
                        record.owner_identity_id,
                        record.owner_display_name,
                        to_db_dt(record.created_at),
                        to_db_dt(record.expires_at),
                        int(record.is_used),
                        to_db_dt(record.used_at) if record.used_at else None,
                        str(record.redeemed_by_account_id)
                        if record.redeemed_by_account_id
                        else None,
                        to_db_dt(record.revoked_at) if record.revoked_at else None,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateCodeError(
                    "Invite code already issued", invite_code=record.code
                ) from e

            return record.model_copy(update={"id": cursor.lastrowid})

    def mark_used(self, code_id: int, account_id: UUID, used_at: datetime) -> bool:
        with self._write() as conn:
            try:
                cursor = conn.execute(
                    f"""
                    UPDATE invite_codes
                    SET is_used = 1, used_at = ?, redeemed_by_account_id = ?
                    WHERE id = ? AND {_PENDING_SQL}
                    """,
                    (to_db_dt(used_at), str(account_id), code_id, to_db_dt(used_at)),
                )
            except sqlite3.IntegrityError as e:
                raise ValidationError(f"Account {account_id} does not exist") from e
            return cursor.rowcount == 1

    def revoke(self, code: str, now: datetime) -> bool:
        with self._write() as conn:
            now_s = to_db_dt(now)
            cursor = conn.execute(
                f"""
                UPDATE invite_codes
                SET expires_at = ?, revoked_at = ?
                WHERE code = ? AND {_PENDING_SQL}
                """,
                (now_s, now_s, code, now_s),
            )
            return cursor.rowcount == 1

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._write() as conn:
            cursor = conn.execute(
                "DELETE FROM invite_codes WHERE expires_at < ?", (to_db_dt(cutoff),)
            )
            return cursor.rowcount

    def page(
        self,
        skip: int,
        take: int,
        now: datetime,
        status_filter: StatusFilter | None = None,
        search_term: str | None = None,
    ) -> tuple[list[InviteCode], int]:
        where: list[str] = []
        params: list[Any] = []
        now_s = to_db_dt(now)

        if status_filter == "pending":
            where.append(_PENDING_SQL)
            params.append(now_s)
        elif status_filter == "redeemed":
            where.append("is_used = 1")
        elif status_filter == "expired":
            where.append("is_used = 0 AND expires_at <= ?")
            params.append(now_s)
        elif status_filter == "revoked":
            where.append("is_used = 0 AND revoked_at IS NOT NULL")

        if search_term:
            pattern = _like_pattern(search_term)
            where.append(
                "(py_lower(code) LIKE ? ESCAPE '\\'"
                " OR py_lower(owner_display_name) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])

        clause = f"WHERE {' AND '.join(where)}" if where else ""

        with self._read() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) AS n FROM invite_codes {clause}", params
            ).fetchone()["n"]
            rows = conn.execute(
                f"SELECT * FROM invite_codes {clause} "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                [*params, take, skip],
            ).fetchall()
            return [self._map_row(r) for r in rows], total

    def _find_active(
        self, conn: sqlite3.Connection, identity_id: int, now: datetime
    ) -> InviteCode | None:
        row = conn.execute(
            f"""
            SELECT * FROM invite_codes
            WHERE owner_identity_id = ? AND {_PENDING_SQL}
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (identity_id, to_db_dt(now)),
        ).fetchone()
        return self._map_row(row) if row else None

    def _map_row(self, row: dict[str, Any]) -> InviteCode:
        return InviteCode(
            id=row["id"],
            code=row["code"],
            owner_identity_id=row["owner_identity_id"],
            owner_display_name=row["owner_display_name"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            is_used=bool(row["is_used"]),
            used_at=parse_dt(row["used_at"]),
            redeemed_by_account_id=parse_uuid(row["redeemed_by_account_id"]),
            revoked_at=parse_dt(row["revoked_at"]),
        )


# -----------------------------------------------------------------------------
# Account Repository
# -----------------------------------------------------------------------------


class SQLiteAccountRepo(SQLiteRepoBase):
    """SQLite implementation of AccountRepoPort."""

    def get_by_id(self, account_id: UUID) -> Account | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE id = ?", (str(account_id),)
            ).fetchone()
            return self._map_row_with_roles(conn, row) if row else None

    def get_by_identity(self, identity_id: int) -> Account | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE identity_id = ?", (identity_id,)
            ).fetchone()
            return self._map_row_with_roles(conn, row) if row else None

    def get_by_username(self, username: str) -> Account | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE py_lower(username) = py_lower(?)", (username,)
            ).fetchone()
            return self._map_row_with_roles(conn, row) if row else None

    def get_by_email(self, email: str) -> Account | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE py_lower(email) = py_lower(?)", (email,)
            ).fetchone()
            return self._map_row_with_roles(conn, row) if row else None

    def save(self, account: Account) -> Account:
        with self._write() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO accounts (
                        id, username, email, password_hash, identity_id,
                        identity_display_name, linked_at, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        username=excluded.username,
                        email=excluded.email,
                        password_hash=excluded.password_hash,
                        identity_id=excluded.identity_id,
                        identity_display_name=excluded.identity_display_name,
                        linked_at=excluded.linked_at
                    """,
                    (
                        str(account.id),
                        account.username,
                        account.email,
                        account.password_hash,
                        account.identity_id,
                        account.identity_display_name,
                        to_db_dt(account.linked_at) if account.linked_at else None,
                        to_db_dt(account.created_at),
                    ),
                )
            except sqlite3.IntegrityError as e:
                if "identity_id" in str(e):
                    raise AlreadyLinkedError(
                        f"Identity {account.identity_id} is already linked to an account"
                    ) from e
                raise ValidationError("Username or email already registered") from e

            conn.execute("DELETE FROM account_roles WHERE account_id = ?", (str(account.id),))
            for role in dict.fromkeys(account.roles):
                conn.execute(
                    "INSERT INTO account_roles (account_id, role) VALUES (?, ?)",
                    (str(account.id), role),
                )
            return account

    def delete(self, account_id: UUID) -> bool:
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM accounts WHERE id = ?", (str(account_id),))
            return cursor.rowcount == 1

    def list_by_role(self, role: str) -> list[Account]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT a.* FROM accounts a
                JOIN account_roles r ON r.account_id = a.id
                WHERE py_lower(r.role) = py_lower(?)
                ORDER BY a.created_at ASC
                """,
                (role,),
            ).fetchall()
            return [self._map_row_with_roles(conn, r) for r in rows]

    def get_binding(self, identity_id: int, now: datetime) -> RoleBinding | None:
        account = self.get_by_identity(identity_id)
        if account is None:
            return None
        return RoleBinding(
            identity_id=identity_id,
            account_id=account.id,
            roles=frozenset(account.roles),
            fetched_at=now,
        )

    def _map_row_with_roles(self, conn: sqlite3.Connection, row: dict[str, Any]) -> Account:
        role_rows = conn.execute(
            "SELECT role FROM account_roles WHERE account_id = ? ORDER BY role ASC",
            (row["id"],),
        ).fetchall()
        return Account(
            id=UUID(row["id"]),
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            roles=[r["role"] for r in role_rows],
            identity_id=row["identity_id"],
            identity_display_name=row["identity_display_name"],
            linked_at=parse_dt(row["linked_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


# -----------------------------------------------------------------------------
# Unit of Work
# -----------------------------------------------------------------------------


class SQLiteUnitOfWork:
    """
    SQLite Unit of Work implementation.

    Provides transaction management and access to all repositories.
    Uses a shared connection holding the write lock (BEGIN IMMEDIATE)
    for all operations within the transaction.
    """

    def __init__(self, db_path: str, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

        # Lazy-initialized repositories
        self._invite_codes: SQLiteInviteCodeRepo | None = None
        self._accounts: SQLiteAccountRepo | None = None

    def __enter__(self) -> SQLiteUnitOfWork:
        self._conn = connect(self.db_path, self.busy_timeout)
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            self._conn.close()
            self._conn = None
            raise UnavailableError(f"Cannot start transaction: {e}") from e
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._conn:
            if self._conn.in_transaction:
                self.rollback()
            self._conn.close()
            self._conn = None
        self._invite_codes = None
        self._accounts = None

    def commit(self) -> None:
        if self._conn and self._conn.in_transaction:
            try:
                self._conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                raise UnavailableError(f"Commit failed: {e}") from e

    def rollback(self) -> None:
        if self._conn and self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    @property
    def invite_codes(self) -> SQLiteInviteCodeRepo:
        if self._invite_codes is None:
            self._invite_codes = SQLiteInviteCodeRepo(
                self.db_path, self._conn, self.busy_timeout
            )
        return self._invite_codes

    @property
    def accounts(self) -> SQLiteAccountRepo:
        if self._accounts is None:
            self._accounts = SQLiteAccountRepo(self.db_path, self._conn, self.busy_timeout)
        return self._accounts
