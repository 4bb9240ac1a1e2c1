"""
Invite component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from src.domain.entities import InviteCode, InvitePage, InviteStatistics

# --- Validation Error ---


@dataclass(frozen=True)
class InviteValidationError:
    """Invite operation error."""

    code: str
    message: str
    invite_code: str | None = None


# --- Input Models ---


@dataclass(frozen=True)
class IssueInviteInput:
    """Input for issuing (or re-fetching) an identity's code."""

    identity_id: int
    display_name: str
    lifetime_hours: int | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class ValidateInviteInput:
    code: str
    timeout: float | None = None


@dataclass(frozen=True)
class RedeemInviteInput:
    """Input for consuming a code on behalf of a registered account."""

    code: str
    account_id: UUID
    timeout: float | None = None


@dataclass(frozen=True)
class RevokeInviteInput:
    code: str


@dataclass(frozen=True)
class StatisticsInput:
    pass


@dataclass(frozen=True)
class ListInvitesInput:
    """Input for the admin listing."""

    page: int = 1
    page_size: int | None = None
    status_filter: str | None = None
    search_term: str | None = None


@dataclass(frozen=True)
class CleanupInput:
    days_old: int | None = None


# --- Output Models ---


@dataclass(frozen=True)
class InviteOutput:
    """Output for issue, validate, redeem and revoke."""

    invite: InviteCode | None
    errors: list[InviteValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class StatisticsOutput:
    statistics: InviteStatistics | None
    errors: list[InviteValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class PageOutput:
    page: InvitePage | None
    errors: list[InviteValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class CleanupOutput:
    deleted: int
    errors: list[InviteValidationError] = field(default_factory=list)
    success: bool = True
