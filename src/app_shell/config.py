import logging
import os
import sys
from pathlib import Path

from src.rules.models import Rules

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "./data"
DEFAULT_RULES_PATH = "./rules.yaml"


def data_dir() -> Path:
    return Path(os.environ.get("INVITES_DATA_DIR", DEFAULT_DATA_DIR))


def rules_path() -> Path:
    return Path(os.environ.get("INVITES_RULES_PATH", DEFAULT_RULES_PATH))


def db_path(rules: Rules) -> str:
    return str(data_dir() / rules.storage.db_filename)


def secret_key() -> str | None:
    """HMAC secret shared with the chat gateway for identity tokens."""
    return os.environ.get("INVITES_SECRET_KEY") or None


def validate_ops_rules(rules: Rules) -> None:
    """
    Validate operational requirements before startup.

    Exits the process when a required environment variable is missing.
    """
    missing = [name for name in rules.ops.required_env if name not in os.environ]
    if missing:
        print(
            f"CRITICAL: Missing required environment variables: {', '.join(missing)}",
            file=sys.stderr,
        )
        sys.exit(1)

    logger.info("Configuration validated (data dir: %s)", data_dir())
