"""
Invite component - Single-use registration code lifecycle.
"""

from ._impl import (
    Deadline,
    InviteConfig,
    InviteService,
    build_invite_config,
    create_invite_service,
)
from .component import (
    run,
    run_cleanup,
    run_issue,
    run_page,
    run_redeem,
    run_revoke,
    run_statistics,
    run_validate,
)
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
    CodeGeneratorPort,
    InviteCodeRepoPort,
    RoleCacheInvalidatorPort,
    TimePort,
)

__all__ = [
    # Entry points
    "run",
    "run_cleanup",
    "run_issue",
    "run_page",
    "run_redeem",
    "run_revoke",
    "run_statistics",
    "run_validate",
    # Input models
    "CleanupInput",
    "IssueInviteInput",
    "ListInvitesInput",
    "RedeemInviteInput",
    "RevokeInviteInput",
    "StatisticsInput",
    "ValidateInviteInput",
    # Output models
    "CleanupOutput",
    "InviteOutput",
    "InviteValidationError",
    "PageOutput",
    "StatisticsOutput",
    # Ports
    "AccountLookupPort",
    "CodeGeneratorPort",
    "InviteCodeRepoPort",
    "RoleCacheInvalidatorPort",
    "TimePort",
    # Service
    "Deadline",
    "InviteConfig",
    "InviteService",
    "build_invite_config",
    "create_invite_service",
]
