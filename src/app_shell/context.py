from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from src.adapters.auth.crypto import Argon2PasswordHasher
from src.adapters.clock import SystemClock
from src.adapters.memory import InMemoryAccountRepo, InMemoryInviteCodeRepo, InMemoryStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteAccountRepo, SQLiteInviteCodeRepo, SQLiteUnitOfWork
from src.components.authz import AuthorizationService, create_authorization_service
from src.components.invite import InviteService, create_invite_service
from src.components.sweeper import ExpirationSweeper, SweeperScheduler, create_sweeper
from src.ports.auth import PasswordHasherPort
from src.ports.clock import ClockPort
from src.ports.repo import AccountRepoPort, InviteCodeRepoPort, UnitOfWorkPort
from src.rules.models import Rules
from src.services.accounts import AccountService
from src.services.registration import RegistrationService

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"


def migrator(db_path: str) -> SQLiteMigrator:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return SQLiteMigrator(db_path, MIGRATIONS_DIR)


def run_migrations(db_path: str) -> list[str]:
    return migrator(db_path).run_migrations()


@dataclass
class ServiceContext:
    invite_service: InviteService
    authz_service: AuthorizationService
    registration_service: RegistrationService
    account_service: AccountService
    sweeper: ExpirationSweeper
    invite_repo: InviteCodeRepoPort
    account_repo: AccountRepoPort
    rules: Rules
    clock: ClockPort

    def create_scheduler(self, interval_seconds: float | None = None) -> SweeperScheduler:
        return SweeperScheduler(self.sweeper, interval_seconds)

    @classmethod
    def create(
        cls,
        db_path: str,
        rules: Rules,
        clock: ClockPort | None = None,
        hasher: PasswordHasherPort | None = None,
    ) -> ServiceContext:
        timeout = rules.storage.busy_timeout_seconds
        return cls._wire(
            SQLiteInviteCodeRepo(db_path, busy_timeout=timeout),
            SQLiteAccountRepo(db_path, busy_timeout=timeout),
            lambda: SQLiteUnitOfWork(db_path, timeout),
            rules,
            clock,
            hasher,
        )

    @classmethod
    def create_in_memory(
        cls,
        rules: Rules,
        clock: ClockPort | None = None,
        hasher: PasswordHasherPort | None = None,
    ) -> ServiceContext:
        store = InMemoryStore()
        return cls._wire(
            InMemoryInviteCodeRepo(store),
            InMemoryAccountRepo(store),
            store.unit_of_work,
            rules,
            clock,
            hasher,
        )

    @classmethod
    def _wire(
        cls,
        invite_repo: InviteCodeRepoPort,
        account_repo: AccountRepoPort,
        uow_factory: Callable[[], UnitOfWorkPort],
        rules: Rules,
        clock: ClockPort | None,
        hasher: PasswordHasherPort | None,
    ) -> ServiceContext:
        clock = clock or SystemClock()
        authz = create_authorization_service(account_repo, rules=rules, time_port=clock)
        invites = create_invite_service(
            invite_repo,
            rules=rules,
            time_port=clock,
            accounts=account_repo,
            role_cache=authz,
        )
        registration = RegistrationService(
            uow_factory,
            invites,
            hasher or Argon2PasswordHasher(),
            authz,
            rules.authz,
        )
        return cls(
            invite_service=invites,
            authz_service=authz,
            registration_service=registration,
            account_service=AccountService(account_repo, authz, rules.authz),
            sweeper=create_sweeper(invite_repo, rules=rules, time_port=clock),
            invite_repo=invite_repo,
            account_repo=account_repo,
            rules=rules,
            clock=clock,
        )
