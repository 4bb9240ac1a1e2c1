import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from src.rules.models import Rules

# First ```yaml fenced block in a markdown document
_FENCE_RE = re.compile(r"^[ \t]*```ya?ml[ \t]*\n(.*?)^[ \t]*```", re.MULTILINE | re.DOTALL)


def load_rules(path: Path | str) -> Rules:
    """
    Load the invite registry rules file.

    Raises FileNotFoundError when the file is missing and ValueError when the
    YAML or the schema is invalid.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Rules file not found at: {path}")
    return parse_rules(path.read_text(encoding="utf-8"))


def _extract_yaml(content: str) -> str:
    match = _FENCE_RE.search(content)
    return match.group(1) if match else content


def parse_rules(content: str) -> Rules:
    try:
        data = yaml.safe_load(_extract_yaml(content))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in rules file: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Rules file must contain a mapping at the top level")

    try:
        return Rules.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Rules validation failed:\n{e}") from e
