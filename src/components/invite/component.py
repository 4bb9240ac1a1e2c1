"""
Invite component - Single-use registration code lifecycle.

Entry points wrap InviteService and convert raised domain errors into
output objects, so callers that prefer values over exceptions (CLI, jobs)
can branch on `success`.

Invariants:
- At most one pending code per identity
- A code string is never issued twice
- A code is consumed by at most one redemption
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from src.domain.errors import InviteError, UnavailableError
from src.rules.models import Rules

from ._impl import InviteService, create_invite_service
from .models import (
    CleanupInput,
    CleanupOutput,
    InviteOutput,
    InviteValidationError,
    IssueInviteInput,
    ListInvitesInput,
    PageOutput,
    RedeemInviteInput,
    RevokeInviteInput,
    StatisticsInput,
    StatisticsOutput,
    ValidateInviteInput,
)
from .ports import (
    AccountLookupPort,
    InviteCodeRepoPort,
    RoleCacheInvalidatorPort,
    TimePort,
)

T = TypeVar("T")


def _convert_error(exc: InviteError | UnavailableError) -> InviteValidationError:
    return InviteValidationError(
        code=exc.code,
        message=exc.message,
        invite_code=getattr(exc, "invite_code", None),
    )


def _guard(call: Callable[[], T]) -> tuple[T | None, list[InviteValidationError]]:
    try:
        return call(), []
    except (InviteError, UnavailableError) as e:
        return None, [_convert_error(e)]


def _create_service(
    repo: InviteCodeRepoPort,
    time_port: TimePort | None,
    rules: Rules | None,
    accounts: AccountLookupPort | None = None,
    role_cache: RoleCacheInvalidatorPort | None = None,
) -> InviteService:
    return create_invite_service(
        repo,
        rules=rules,
        time_port=time_port,
        accounts=accounts,
        role_cache=role_cache,
    )


# --- Component Entry Points ---


def run_issue(
    inp: IssueInviteInput,
    *,
    repo: InviteCodeRepoPort,
    accounts: AccountLookupPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> InviteOutput:
    """
    Issue a code for an identity, or return its existing pending code.

    Args:
        inp: Identity, display name and optional lifetime override.
        repo: Invite code repository port.
        accounts: Optional account lookup; linked identities are refused.
        time_port: Optional time port for timestamps.
        rules: Optional rules for lifetime and retry bounds.

    Returns:
        InviteOutput with the pending code or errors.
    """
    service = _create_service(repo, time_port, rules, accounts=accounts)
    invite, errors = _guard(
        lambda: service.issue(
            inp.identity_id,
            inp.display_name,
            lifetime_hours=inp.lifetime_hours,
            timeout=inp.timeout,
        )
    )
    return InviteOutput(invite=invite, errors=errors, success=not errors)


def run_validate(
    inp: ValidateInviteInput,
    *,
    repo: InviteCodeRepoPort,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> InviteOutput:
    """Check a code without consuming it."""
    service = _create_service(repo, time_port, rules)
    invite, errors = _guard(lambda: service.validate(inp.code, timeout=inp.timeout))
    return InviteOutput(invite=invite, errors=errors, success=not errors)


def run_redeem(
    inp: RedeemInviteInput,
    *,
    repo: InviteCodeRepoPort,
    role_cache: RoleCacheInvalidatorPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> InviteOutput:
    """
    Consume a pending code for an account.

    Exactly one concurrent caller can succeed; the rest get a `conflict`,
    `already_used` or `expired` error.
    """
    service = _create_service(repo, time_port, rules, role_cache=role_cache)
    invite, errors = _guard(
        lambda: service.redeem(inp.code, inp.account_id, timeout=inp.timeout)
    )
    return InviteOutput(invite=invite, errors=errors, success=not errors)


def run_revoke(
    inp: RevokeInviteInput,
    *,
    repo: InviteCodeRepoPort,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> InviteOutput:
    service = _create_service(repo, time_port, rules)
    invite, errors = _guard(lambda: service.revoke(inp.code))
    return InviteOutput(invite=invite, errors=errors, success=not errors)


def run_statistics(
    inp: StatisticsInput,
    *,
    repo: InviteCodeRepoPort,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> StatisticsOutput:
    service = _create_service(repo, time_port, rules)
    stats, errors = _guard(service.statistics)
    return StatisticsOutput(statistics=stats, errors=errors, success=not errors)


def run_page(
    inp: ListInvitesInput,
    *,
    repo: InviteCodeRepoPort,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> PageOutput:
    """Page through codes, newest first, with optional status filter and search."""
    service = _create_service(repo, time_port, rules)
    page, errors = _guard(
        lambda: service.page(
            inp.page,
            inp.page_size,
            status_filter=inp.status_filter,
            search_term=inp.search_term,
        )
    )
    return PageOutput(page=page, errors=errors, success=not errors)


def run_cleanup(
    inp: CleanupInput,
    *,
    repo: InviteCodeRepoPort,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> CleanupOutput:
    service = _create_service(repo, time_port, rules)
    deleted, errors = _guard(lambda: service.cleanup(inp.days_old))
    return CleanupOutput(deleted=deleted or 0, errors=errors, success=not errors)


def run(
    inp: (
        IssueInviteInput
        | ValidateInviteInput
        | RedeemInviteInput
        | RevokeInviteInput
        | StatisticsInput
        | ListInvitesInput
        | CleanupInput
    ),
    *,
    repo: InviteCodeRepoPort,
    accounts: AccountLookupPort | None = None,
    role_cache: RoleCacheInvalidatorPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> InviteOutput | StatisticsOutput | PageOutput | CleanupOutput:
    """
    Main entry point for the invite component.

    Dispatches to the appropriate handler based on input type.
    """
    if isinstance(inp, IssueInviteInput):
        return run_issue(inp, repo=repo, accounts=accounts, time_port=time_port, rules=rules)
    elif isinstance(inp, ValidateInviteInput):
        return run_validate(inp, repo=repo, time_port=time_port, rules=rules)
    elif isinstance(inp, RedeemInviteInput):
        return run_redeem(
            inp, repo=repo, role_cache=role_cache, time_port=time_port, rules=rules
        )
    elif isinstance(inp, RevokeInviteInput):
        return run_revoke(inp, repo=repo, time_port=time_port, rules=rules)
    elif isinstance(inp, StatisticsInput):
        return run_statistics(inp, repo=repo, time_port=time_port, rules=rules)
    elif isinstance(inp, ListInvitesInput):
        return run_page(inp, repo=repo, time_port=time_port, rules=rules)
    elif isinstance(inp, CleanupInput):
        return run_cleanup(inp, repo=repo, time_port=time_port, rules=rules)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
