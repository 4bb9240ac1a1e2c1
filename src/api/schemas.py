from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from src.domain.entities import Account, InviteCode, InviteStatus


# --- Invites ---
class IssueInviteRequest(BaseModel):
    # Defaults to the caller; only admins may name another identity
    identity_id: int | None = None
    display_name: str
    lifetime_hours: int | None = None


class InviteResponse(BaseModel):
    code: str
    owner_identity_id: int
    owner_display_name: str
    status: InviteStatus
    revoked: bool
    created_at: datetime
    expires_at: datetime
    used_at: datetime | None = None
    redeemed_by_account_id: UUID | None = None

    @classmethod
    def from_entity(cls, invite: InviteCode, now: datetime) -> "InviteResponse":
        return cls(
            code=invite.code,
            owner_identity_id=invite.owner_identity_id,
            owner_display_name=invite.owner_display_name,
            status=invite.status_at(now),
            revoked=invite.is_revoked(),
            created_at=invite.created_at,
            expires_at=invite.expires_at,
            used_at=invite.used_at,
            redeemed_by_account_id=invite.redeemed_by_account_id,
        )


class InvitePageResponse(BaseModel):
    items: list[InviteResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class InviteStatisticsResponse(BaseModel):
    pending_count: int
    used_count: int
    expired_count: int
    revoked_count: int
    total: int


class SweepRequest(BaseModel):
    days_old: int | None = None


class SweepResponse(BaseModel):
    deleted: int


# --- Registration / Accounts ---
class RegisterRequest(BaseModel):
    code: str
    username: str
    email: str
    password: str


class AccountResponse(BaseModel):
    id: UUID
    username: str
    email: str
    roles: list[str]
    identity_id: int | None = None
    identity_display_name: str | None = None
    linked_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_entity(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            roles=sorted(account.roles),
            identity_id=account.identity_id,
            identity_display_name=account.identity_display_name,
            linked_at=account.linked_at,
            created_at=account.created_at,
        )


class RoleRequest(BaseModel):
    role: str = Field(min_length=1)


class ReassignRoleRequest(BaseModel):
    from_role: str = Field(min_length=1)
    to_role: str = Field(min_length=1)


class ReassignRoleResponse(BaseModel):
    changed: int


class IdentityRolesResponse(BaseModel):
    identity_id: int
    linked: bool
    account_id: UUID | None = None
    roles: list[str]
