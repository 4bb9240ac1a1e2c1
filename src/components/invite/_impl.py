"""
InviteService - Invite code lifecycle.

Handles issuance, validation, redemption, revocation, listing and cleanup
of single-use registration codes.

Key behaviors:
- One pending code per identity; a repeat request returns the same code
- Generation retries on code collision up to a fixed bound, then fails loudly
- Redemption is decided by the store's conditional write, never by the pre-check
- A successful redemption invalidates the identity's cached roles
- Revocation pulls expires_at to now and records revoked_at

State machine (per code):
    pending --redeem--> redeemed   (terminal)
    pending --time----> expired    (terminal, query-time only)
    pending --revoke--> expired    (terminal, explicit write)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from src.adapters.clock import SystemClock
from src.components.codegen import CodeGenerator, normalize_code
from src.domain.entities import (
    STATUS_ALIASES,
    InviteCode,
    InvitePage,
    InviteStatistics,
)
from src.rules.models import Rules
from src.domain.errors import (
    ActiveCodeExistsError,
    AlreadyFinalizedError,
    AlreadyLinkedError,
    AlreadyUsedError,
    ConflictError,
    DeadlineExceededError,
    DuplicateCodeError,
    ExpiredError,
    GenerationFailedError,
    NotFoundError,
    ValidationError,
)

from .ports import (
    AccountLookupPort,
    CodeGeneratorPort,
    InviteCodeRepoPort,
    RoleCacheInvalidatorPort,
    TimePort,
)

logger = logging.getLogger(__name__)

MAX_DISPLAY_NAME_LENGTH = 100


# --- Configuration ---


@dataclass(frozen=True)
class InviteConfig:
    """Invite configuration from rules."""

    code_lifetime_hours: int = 24
    max_generation_attempts: int = 10
    default_page_size: int = 25
    max_page_size: int = 100
    default_cleanup_days: int = 7


DEFAULT_CONFIG = InviteConfig()


# --- Deadlines ---


class Deadline:
    """Caller-supplied time budget, checked before each store call."""

    def __init__(
        self,
        timeout: float | None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._monotonic = monotonic
        self._expires = None if timeout is None else monotonic() + timeout

    def check(self, step: str) -> None:
        if self._expires is not None and self._monotonic() >= self._expires:
            raise DeadlineExceededError(
                f"Deadline exceeded before {step}; outcome unknown, retry is safe"
            )


# --- Service ---


class InviteService:
    def __init__(
        self,
        repo: InviteCodeRepoPort,
        *,
        time_port: TimePort | None = None,
        generator: CodeGeneratorPort | None = None,
        accounts: AccountLookupPort | None = None,
        role_cache: RoleCacheInvalidatorPort | None = None,
        config: InviteConfig = DEFAULT_CONFIG,
    ):
        self.repo = repo
        self.time = time_port or SystemClock()
        self.generator = generator or CodeGenerator()
        self.accounts = accounts
        self.role_cache = role_cache
        self.config = config

    def bind(
        self,
        repo: InviteCodeRepoPort,
        accounts: AccountLookupPort | None = None,
    ) -> InviteService:
        """Same service over different repos (e.g. inside a unit of work)."""
        return InviteService(
            repo,
            time_port=self.time,
            generator=self.generator,
            accounts=accounts if accounts is not None else self.accounts,
            role_cache=self.role_cache,
            config=self.config,
        )

    # --- Issue ---

    def issue(
        self,
        identity_id: int,
        display_name: str,
        *,
        lifetime_hours: int | None = None,
        timeout: float | None = None,
    ) -> InviteCode:
        display_name = (display_name or "").strip()
        if not display_name:
            raise ValidationError("Display name cannot be empty")
        if len(display_name) > MAX_DISPLAY_NAME_LENGTH:
            raise ValidationError(
                f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters"
            )

        hours = self.config.code_lifetime_hours if lifetime_hours is None else lifetime_hours
        if hours <= 0:
            raise ValidationError("Expiration hours must be positive")

        deadline = Deadline(timeout)

        if self.accounts is not None:
            deadline.check("account lookup")
            if self.accounts.get_by_identity(identity_id) is not None:
                logger.warning(
                    "Identity %s requested a code but is already linked", identity_id
                )
                raise AlreadyLinkedError(f"Identity {identity_id} is already registered")

        deadline.check("active code lookup")
        existing = self.repo.find_active_by_identity(identity_id, self.time.now_utc())
        if existing is not None:
            logger.info("Returning existing active code for identity %s", identity_id)
            return existing

        for attempt in range(1, self.config.max_generation_attempts + 1):
            now = self.time.now_utc()
            record = InviteCode(
                code=self.generator.generate(),
                owner_identity_id=identity_id,
                owner_display_name=display_name,
                created_at=now,
                expires_at=now + timedelta(hours=hours),
            )

            deadline.check("insert")
            try:
                saved = self.repo.insert(record, now)
            except DuplicateCodeError:
                logger.warning(
                    "Code collision detected on attempt %d. Generating new code.", attempt
                )
                continue
            except ActiveCodeExistsError:
                # A concurrent request for the same identity got there first
                winner = self.repo.find_active_by_identity(identity_id, now)
                if winner is not None:
                    logger.info(
                        "Concurrent issue for identity %s, returning winner", identity_id
                    )
                    return winner
                continue

            logger.info(
                "Generated invite code for identity %s (%s). Code expires at %s",
                identity_id,
                display_name,
                saved.expires_at.isoformat(),
            )
            return saved

        logger.error(
            "Failed to generate unique invite code after %d attempts",
            self.config.max_generation_attempts,
        )
        raise GenerationFailedError(
            "Failed to generate unique invite code after maximum attempts"
        )

    # --- Validate / Redeem ---

    def validate(self, code: str, *, timeout: float | None = None) -> InviteCode:
        """Return the pending record for `code` without consuming it."""
        deadline = Deadline(timeout)
        record = self._load_pending(normalize_code(code or ""), deadline)
        logger.info(
            "Invite code %s validated for identity %s", record.code, record.owner_identity_id
        )
        return record

    def redeem(
        self,
        code: str,
        account_id: UUID,
        *,
        timeout: float | None = None,
    ) -> InviteCode:
        deadline = Deadline(timeout)
        record = self._load_pending(normalize_code(code or ""), deadline)
        assert record.id is not None

        used_at = self.time.now_utc()
        deadline.check("mark used")
        if not self.repo.mark_used(record.id, account_id, used_at):
            logger.warning(
                "Invite code %s lost a concurrent redemption race", record.code
            )
            raise ConflictError(
                "Invite code was redeemed or expired concurrently; request a new code",
                invite_code=record.code,
            )

        logger.info("Marked invite code %s as used by account %s", record.code, account_id)
        self.invalidate_identity(record.owner_identity_id)

        return record.model_copy(
            update={"is_used": True, "used_at": used_at, "redeemed_by_account_id": account_id}
        )

    def invalidate_identity(self, identity_id: int) -> None:
        if self.role_cache is not None:
            self.role_cache.invalidate(identity_id)

    def _load_pending(self, code: str, deadline: Deadline) -> InviteCode:
        if not code:
            raise NotFoundError("Invite code not found")

        deadline.check("code lookup")
        record = self.repo.find_by_code(code)
        if record is None:
            logger.warning("Invite code validation failed: code %s not found", code)
            raise NotFoundError("Invite code not found", invite_code=code)

        if record.is_used:
            logger.warning("Invite code validation failed: code %s already used", code)
            raise AlreadyUsedError("Invite code already used", invite_code=code)

        now = self.time.now_utc()
        if not record.is_pending(now):
            logger.warning(
                "Invite code validation failed: code %s expired at %s",
                code,
                record.expires_at.isoformat(),
            )
            raise ExpiredError("Invite code expired", invite_code=code)

        return record

    # --- Revoke ---

    def revoke(self, code: str) -> InviteCode:
        normalized = normalize_code(code or "")
        if not normalized:
            raise NotFoundError("Invite code not found")

        now = self.time.now_utc()
        if self.repo.revoke(normalized, now):
            logger.info("Revoked invite code %s", normalized)
            revoked = self.repo.find_by_code(normalized)
            assert revoked is not None
            return revoked

        existing = self.repo.find_by_code(normalized)
        if existing is None:
            logger.warning("Cannot revoke code %s: not found", normalized)
            raise NotFoundError("Invite code not found", invite_code=normalized)

        state = existing.status_at(now)
        logger.warning("Cannot revoke code %s: already %s", normalized, state)
        raise AlreadyFinalizedError(f"Invite code already {state}", invite_code=normalized)

    # --- Queries ---

    def active_code(self, identity_id: int) -> InviteCode | None:
        return self.repo.find_active_by_identity(identity_id, self.time.now_utc())

    def history(self, identity_id: int) -> list[InviteCode]:
        return self.repo.list_by_identity(identity_id)

    def list_active(self) -> list[InviteCode]:
        return self.repo.list_active(self.time.now_utc())

    def statistics(self) -> InviteStatistics:
        now = self.time.now_utc()
        stats = InviteStatistics()
        for row in self.repo.list_all():
            state = row.status_at(now)
            if state == "pending":
                stats.pending_count += 1
            elif state == "redeemed":
                stats.used_count += 1
            else:
                stats.expired_count += 1
                if row.is_revoked():
                    stats.revoked_count += 1
        return stats

    def page(
        self,
        page: int = 1,
        page_size: int | None = None,
        status_filter: str | None = None,
        search_term: str | None = None,
    ) -> InvitePage:
        size = self.config.default_page_size if page_size is None else page_size
        if page < 1:
            raise ValidationError("Page must be greater than 0")
        if size < 1:
            raise ValidationError("Page size must be greater than 0")
        if size > self.config.max_page_size:
            raise ValidationError(f"Page size must be at most {self.config.max_page_size}")

        status = None
        if status_filter:
            status = STATUS_ALIASES.get(status_filter.strip().lower())
            if status is None:
                raise ValidationError(f"Unknown status filter: {status_filter}")

        term = search_term.strip() if search_term else None

        items, total = self.repo.page(
            (page - 1) * size, size, self.time.now_utc(), status, term or None
        )
        return InvitePage(items=items, total_count=total, page=page, page_size=size)

    # --- Cleanup ---

    def cleanup(self, days_old: int | None = None) -> int:
        days = self.config.default_cleanup_days if days_old is None else days_old
        if days <= 0:
            raise ValidationError("Days must be positive")

        cutoff = self.time.now_utc() - timedelta(days=days)
        deleted = self.repo.delete_older_than(cutoff)
        logger.info(
            "Cleaned up %d expired invite codes older than %s", deleted, cutoff.isoformat()
        )
        return deleted


# --- Factory ---


def build_invite_config(rules: Rules) -> InviteConfig:
    """Build invite config from loaded rules."""
    return InviteConfig(
        code_lifetime_hours=rules.invites.code_lifetime_hours,
        max_generation_attempts=rules.invites.max_generation_attempts,
        default_page_size=rules.invites.default_page_size,
        max_page_size=rules.invites.max_page_size,
        default_cleanup_days=rules.sweeper.retention_days,
    )


def create_invite_service(
    repo: InviteCodeRepoPort,
    *,
    rules: Rules | None = None,
    time_port: TimePort | None = None,
    accounts: AccountLookupPort | None = None,
    role_cache: RoleCacheInvalidatorPort | None = None,
) -> InviteService:
    config = build_invite_config(rules) if rules is not None else DEFAULT_CONFIG
    return InviteService(
        repo,
        time_port=time_port,
        accounts=accounts,
        role_cache=role_cache,
        config=config,
    )
