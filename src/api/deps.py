import os
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.api.auth_utils import decode_identity_token
from src.app_shell.config import secret_key
from src.app_shell.context import ServiceContext
from src.rules.loader import load_rules
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("INVITES_DATA_DIR", "./data"))
        self.rules_path = Path(
            os.environ.get("INVITES_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )
        self.secret_key = secret_key()

    def db_path(self, rules: Rules) -> str:
        return str(self.data_dir / rules.storage.db_filename)


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules(settings.rules_path)


# --- Service Context ---
# One per process: the role cache lives inside it
_context_instance: ServiceContext | None = None


def get_context() -> ServiceContext:
    """Get service context singleton."""
    global _context_instance
    if _context_instance is None:
        settings = get_settings()
        rules = get_rules(settings)
        _context_instance = ServiceContext.create(settings.db_path(rules), rules)
    return _context_instance


def reset_context() -> None:
    global _context_instance
    _context_instance = None


# --- Caller identity ---

bearer_scheme = HTTPBearer(auto_error=False)


def get_token_secret(settings: Settings = Depends(get_settings)) -> str:
    if not settings.secret_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity tokens are not configured",
        )
    return settings.secret_key


def get_caller_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    secret_key: str = Depends(get_token_secret),
) -> int:
    """External identity asserted by a gateway-signed bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity_id = decode_identity_token(credentials.credentials, secret_key)
    if identity_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity_id


def require_role(role: str) -> Callable[..., int]:
    """Dependency factory: caller identity must hold `role`."""

    def _check(
        identity_id: int = Depends(get_caller_identity),
        ctx: ServiceContext = Depends(get_context),
    ) -> int:
        if not ctx.authz_service.is_in_role(identity_id, role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return identity_id

    return _check


require_admin = require_role("Admin")


def ensure_self_or_admin(caller_id: int, identity_id: int, ctx: ServiceContext) -> None:
    """Callers act on their own identity; admins on any."""
    if caller_id != identity_id and not ctx.authz_service.is_in_role(caller_id, "Admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
