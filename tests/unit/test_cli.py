"""
CLI tests. Each command runs against a temporary data directory.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from src.api.auth_utils import decode_identity_token
from src.app_shell import cli


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("INVITES_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("INVITES_RULES_PATH", str(Path("rules.yaml").resolve()))
    assert cli.main(["migrate"]) == 0
    return tmp_path


def _code_from(output: str) -> str:
    for line in output.splitlines():
        if line.startswith("Code:"):
            return line.split()[1]
    raise AssertionError(f"no code in output: {output}")


def test_issue_validate_revoke(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["issue", "42", "alice"]) == 0
    code = _code_from(capsys.readouterr().out)

    assert cli.main(["validate", code.lower()]) == 0
    assert "Code is valid." in capsys.readouterr().out

    assert cli.main(["revoke", code]) == 0
    assert f"Revoked {code}." in capsys.readouterr().out

    assert cli.main(["validate", code]) == 1
    assert "expired" in capsys.readouterr().err


def test_stats_and_list(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["issue", "1", "one"])
    cli.main(["issue", "2", "two"])
    capsys.readouterr()

    assert cli.main(["stats"]) == 0
    out = capsys.readouterr().out
    assert "Pending:  2" in out
    assert "Total:    2" in out

    assert cli.main(["list", "--status", "active", "--search", "two"]) == 0
    out = capsys.readouterr().out
    assert "two" in out
    assert "Page 1/1 (1 codes)" in out


def test_sweep_and_roles(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["sweep", "--days", "7"]) == 0
    assert "Deleted 0 expired codes." in capsys.readouterr().out

    assert cli.main(["roles", "99"]) == 0
    assert "not linked" in capsys.readouterr().out


def test_bad_input_exits_non_zero(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["sweep", "--days", "0"]) == 1
    assert cli.main(["grant", "not-a-uuid", "Admin"]) == 2
    assert cli.main(["revoke", "ZZZZ-ZZZZ-ZZZZ"]) == 1


def test_missing_rules_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("INVITES_RULES_PATH", str(tmp_path / "missing.yaml"))
    with pytest.raises(SystemExit):
        cli.main(["stats"])


def test_missing_required_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    rules = Path("rules.yaml").read_text().replace("required_env: []", "required_env: [NOPE_VAR]")
    path = tmp_path / "strict.yaml"
    path.write_text(rules)
    monkeypatch.setenv("INVITES_RULES_PATH", str(path))
    monkeypatch.delenv("NOPE_VAR", raising=False)

    with pytest.raises(SystemExit):
        cli.main(["stats"])


def test_migrate_status(capsys: pytest.CaptureFixture[str]) -> None:
    capsys.readouterr()

    assert cli.main(["migrate", "--status"]) == 0
    assert "Applied: 1, pending: 0" in capsys.readouterr().out


def test_token_command(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("INVITES_SECRET_KEY", "cli-secret")
    capsys.readouterr()

    assert cli.main(["token", "42"]) == 0
    token = capsys.readouterr().out.strip()

    assert decode_identity_token(token, "cli-secret") == 42


def test_token_command_needs_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("INVITES_SECRET_KEY", raising=False)

    assert cli.main(["token", "42"]) == 2
