"""
Account and role management boundary.

Every write that changes who holds which role invalidates the affected
identity in the authorization cache before returning.
"""

from __future__ import annotations

import logging
from uuid import UUID

from src.components.authz import AuthorizationService
from src.domain.entities import Account
from src.domain.errors import NotFoundError, ValidationError
from src.ports.repo import AccountRepoPort
from src.rules.models import AuthzRules

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(
        self,
        accounts: AccountRepoPort,
        authz: AuthorizationService,
        rules: AuthzRules | None = None,
    ):
        self.accounts = accounts
        self.authz = authz
        self.rules = rules or AuthzRules()

    def normalize_role(self, role: str) -> str:
        """Trim, and map to the standard spelling when one matches case-insensitively."""
        cleaned = (role or "").strip()
        if not cleaned:
            raise ValidationError("Role name cannot be empty")
        for standard in self.rules.standard_roles:
            if standard.lower() == cleaned.lower():
                return standard
        return cleaned

    def get(self, account_id: UUID) -> Account:
        account = self.accounts.get_by_id(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def assign_role(self, account_id: UUID, role: str) -> Account:
        role = self.normalize_role(role)
        account = self.get(account_id)
        if any(r.lower() == role.lower() for r in account.roles):
            return account

        account.roles.append(role)
        self.accounts.save(account)
        self._invalidate(account)
        logger.info("Assigned role %s to account %s", role, account.id)
        return account

    def remove_role(self, account_id: UUID, role: str) -> Account:
        role = self.normalize_role(role)
        account = self.get(account_id)
        kept = [r for r in account.roles if r.lower() != role.lower()]
        if len(kept) == len(account.roles):
            return account

        account.roles = kept
        self.accounts.save(account)
        self._invalidate(account)
        logger.info("Removed role %s from account %s", role, account.id)
        return account

    def delete_account(self, account_id: UUID) -> None:
        account = self.get(account_id)
        self.accounts.delete(account_id)
        self._invalidate(account)
        logger.info("Deleted account %s (%s)", account.id, account.username)

    def reassign_role(self, from_role: str, to_role: str) -> int:
        """Move every holder of from_role to to_role. Returns the number of accounts changed."""
        source = self.normalize_role(from_role)
        target = self.normalize_role(to_role)
        if source.lower() == target.lower():
            raise ValidationError("Source and target roles must differ")

        changed = 0
        for account in self.accounts.list_by_role(source):
            roles = [r for r in account.roles if r.lower() != source.lower()]
            if not any(r.lower() == target.lower() for r in roles):
                roles.append(target)
            account.roles = roles
            self.accounts.save(account)
            changed += 1

        self.authz.invalidate_all()
        logger.info("Reassigned %d accounts from role %s to %s", changed, source, target)
        return changed

    def is_linked(self, identity_id: int) -> bool:
        return self.authz.is_linked(identity_id)

    def _invalidate(self, account: Account) -> None:
        if account.identity_id is not None:
            self.authz.invalidate(account.identity_id)
