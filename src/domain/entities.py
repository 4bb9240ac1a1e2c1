from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

# --- Enums / Literals ---
InviteStatus = Literal["pending", "redeemed", "expired"]
StatusFilter = Literal["pending", "redeemed", "expired", "revoked"]

# Aliases accepted from admin listing filters
STATUS_ALIASES: dict[str, StatusFilter] = {
    "pending": "pending",
    "active": "pending",
    "redeemed": "redeemed",
    "used": "redeemed",
    "expired": "expired",
    "revoked": "revoked",
}


def utcnow() -> datetime:
    return datetime.now(UTC)


# --- Invite Codes ---

class InviteCode(BaseModel):
    id: int | None = None  # assigned by the store on insert
    code: str
    owner_identity_id: int
    owner_display_name: str
    created_at: datetime
    expires_at: datetime
    is_used: bool = False
    used_at: datetime | None = None
    redeemed_by_account_id: UUID | None = None
    revoked_at: datetime | None = None

    def status_at(self, now: datetime) -> InviteStatus:
        """Classify the row at `now`. Exactly one state always applies."""
        if self.is_used:
            return "redeemed"
        if self.expires_at > now:
            return "pending"
        return "expired"

    def is_pending(self, now: datetime) -> bool:
        return self.status_at(now) == "pending"

    def is_revoked(self) -> bool:
        return not self.is_used and self.revoked_at is not None


class InviteStatistics(BaseModel):
    pending_count: int = 0
    used_count: int = 0
    expired_count: int = 0
    # Subset of expired_count: codes pulled to expiry by an admin
    revoked_count: int = 0

    @property
    def total(self) -> int:
        return self.pending_count + self.used_count + self.expired_count


class InvitePage(BaseModel):
    items: list[InviteCode] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 25

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


# --- Accounts & Roles ---

class Account(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    username: str
    email: str
    password_hash: str
    roles: list[str] = Field(default_factory=list)
    identity_id: int | None = None
    identity_display_name: str | None = None
    linked_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class RoleBinding(BaseModel):
    identity_id: int
    account_id: UUID | None = None
    roles: frozenset[str] = Field(default_factory=frozenset)
    fetched_at: datetime

    def is_fresh(self, now: datetime, max_age_seconds: float) -> bool:
        return (now - self.fetched_at).total_seconds() < max_age_seconds
