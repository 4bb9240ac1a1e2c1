from pathlib import Path

import pytest
from argon2 import PasswordHasher

from src.adapters.auth.crypto import Argon2PasswordHasher
from src.adapters.clock import FixedClock
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.app_shell.context import ServiceContext
from src.rules.loader import load_rules
from src.rules.models import Rules


@pytest.fixture
def rules() -> Rules:
    # Tests run from the project root
    rules_path = Path("rules.yaml").resolve()
    if not rules_path.exists():
        raise FileNotFoundError(f"Rules not found at {rules_path}")
    return load_rules(rules_path)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def fast_hasher() -> Argon2PasswordHasher:
    """Argon2 with minimal cost parameters so tests stay quick."""
    return Argon2PasswordHasher(PasswordHasher(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    path = str(tmp_path / "invites.db")
    SQLiteMigrator(path, "migrations").run_migrations()
    return path


@pytest.fixture
def sqlite_ctx(
    db_path: str, rules: Rules, clock: FixedClock, fast_hasher: Argon2PasswordHasher
) -> ServiceContext:
    """Full ServiceContext backed by a migrated temporary SQLite DB."""
    return ServiceContext.create(db_path, rules, clock=clock, hasher=fast_hasher)


@pytest.fixture
def memory_ctx(
    rules: Rules, clock: FixedClock, fast_hasher: Argon2PasswordHasher
) -> ServiceContext:
    return ServiceContext.create_in_memory(rules, clock=clock, hasher=fast_hasher)
