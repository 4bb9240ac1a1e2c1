from pydantic import BaseModel, Field, field_validator


class ProjectRules(BaseModel):
    slug: str
    rules_version: str


class InviteRules(BaseModel):
    code_lifetime_hours: int = Field(24, gt=0)
    max_generation_attempts: int = Field(10, gt=0)
    default_page_size: int = Field(25, gt=0)
    max_page_size: int = Field(100, gt=0)


class SweeperRules(BaseModel):
    enabled: bool = True
    interval_hours: float = Field(24, gt=0)
    retention_days: int = Field(7, gt=0)


class AuthzRules(BaseModel):
    max_age_seconds: float = Field(300, gt=0)
    standard_roles: list[str] = Field(
        default_factory=lambda: ["Admin", "Moderator", "Premium", "User"]
    )
    default_role: str = "User"

    @field_validator("default_role")
    @classmethod
    def _default_role_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("default_role must not be blank")
        return v


class StorageRules(BaseModel):
    db_filename: str = "invites.db"
    busy_timeout_seconds: float = Field(5.0, gt=0)


class OpsRules(BaseModel):
    required_env: list[str] = Field(default_factory=list)


class Rules(BaseModel):
    project: ProjectRules
    invites: InviteRules = Field(default_factory=InviteRules)
    sweeper: SweeperRules = Field(default_factory=SweeperRules)
    authz: AuthzRules = Field(default_factory=AuthzRules)
    storage: StorageRules = Field(default_factory=StorageRules)
    ops: OpsRules = Field(default_factory=OpsRules)
