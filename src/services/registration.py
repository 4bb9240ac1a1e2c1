"""
Registration boundary.

Turns a pending invite code into an application account linked to the
code owner's identity. Account creation, redemption and linking commit
together; if any step fails nothing is written.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime

from src.components.authz import AuthorizationService
from src.components.invite import InviteService
from src.domain.entities import Account
from src.domain.errors import AlreadyLinkedError, ValidationError
from src.ports.auth import PasswordHasherPort
from src.ports.repo import UnitOfWorkPort
from src.rules.models import AuthzRules

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,50}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


class RegistrationService:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWorkPort],
        invites: InviteService,
        hasher: PasswordHasherPort,
        authz: AuthorizationService,
        rules: AuthzRules | None = None,
    ):
        self.uow_factory = uow_factory
        self.invites = invites
        self.hasher = hasher
        self.authz = authz
        self.rules = rules or AuthzRules()

    def register(self, code: str, username: str, email: str, password: str) -> Account:
        username = (username or "").strip()
        email = (email or "").strip()
        self._validate_fields(username, email, password)

        # Hashed before the write lock is taken
        password_hash = self.hasher.hash_password(password)

        with self.uow_factory() as uow:
            invites = self.invites.bind(uow.invite_codes, uow.accounts)
            record = invites.validate(code)

            if uow.accounts.get_by_identity(record.owner_identity_id) is not None:
                raise AlreadyLinkedError(
                    f"Identity {record.owner_identity_id} is already registered",
                    invite_code=record.code,
                )
            if uow.accounts.get_by_username(username) is not None:
                raise ValidationError("Username is already taken")
            if uow.accounts.get_by_email(email) is not None:
                raise ValidationError("Email is already registered")

            now: datetime = invites.time.now_utc()
            account = Account(
                username=username,
                email=email,
                password_hash=password_hash,
                roles=[self.rules.default_role],
                identity_id=record.owner_identity_id,
                identity_display_name=record.owner_display_name,
                linked_at=now,
                created_at=now,
            )
            uow.accounts.save(account)
            invites.redeem(record.code, account.id)
            uow.commit()

        # Reads between redeem and commit may have cached the unlinked binding
        self.authz.invalidate(account.identity_id)  # type: ignore[arg-type]
        logger.info(
            "Registered account %s (%s) for identity %s",
            account.id,
            account.username,
            account.identity_id,
        )
        return account

    def _validate_fields(self, username: str, email: str, password: str) -> None:
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required")
        if not USERNAME_RE.match(username):
            raise ValidationError(
                "Username must be 3-50 characters of letters, digits, '.', '_' or '-'"
            )
        if not EMAIL_RE.match(email):
            raise ValidationError("Email address is not valid")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
