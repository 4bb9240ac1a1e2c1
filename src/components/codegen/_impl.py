"""
CodeGenerator - Human-typable invite codes.

Key behaviors:
- Codes are 12 characters in three groups of four: XXXX-XXXX-XXXX
- Alphabet excludes look-alikes (0/O, 1/I), 32 symbols, 60 bits per code
- Randomness comes from the OS CSPRNG (`secrets`), never a seeded PRNG
- Input normalization accepts lowercase, stray whitespace and missing delimiters
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass

CODE_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
GROUP_COUNT = 3
GROUP_LENGTH = 4
DELIMITER = "-"
CODE_LENGTH = GROUP_COUNT * GROUP_LENGTH

CODE_PATTERN = re.compile(
    rf"^[{CODE_ALPHABET}]{{{GROUP_LENGTH}}}"
    rf"(?:{DELIMITER}[{CODE_ALPHABET}]{{{GROUP_LENGTH}}}){{{GROUP_COUNT - 1}}}$"
)


@dataclass(frozen=True)
class CodeFormat:
    alphabet: str = CODE_ALPHABET
    group_count: int = GROUP_COUNT
    group_length: int = GROUP_LENGTH
    delimiter: str = DELIMITER


DEFAULT_FORMAT = CodeFormat()


class CodeGenerator:
    """Draws codes from a cryptographically secure source."""

    def __init__(
        self,
        fmt: CodeFormat = DEFAULT_FORMAT,
        randbelow: Callable[[int], int] = secrets.randbelow,
    ) -> None:
        self.fmt = fmt
        self._randbelow = randbelow

    def generate(self) -> str:
        alphabet = self.fmt.alphabet
        groups = [
            "".join(alphabet[self._randbelow(len(alphabet))] for _ in range(self.fmt.group_length))
            for _ in range(self.fmt.group_count)
        ]
        return self.fmt.delimiter.join(groups)


def is_well_formed(code: str) -> bool:
    return bool(CODE_PATTERN.match(code))


def normalize_code(raw: str) -> str:
    """
    Canonicalize user input.

    Uppercases, drops whitespace, and regroups a bare 12-character string.
    The result is not guaranteed to be well-formed; lookups simply miss.
    """
    cleaned = "".join(raw.split()).upper()
    bare = cleaned.replace(DELIMITER, "")
    if len(bare) == CODE_LENGTH and (cleaned == bare or is_well_formed(cleaned)):
        return DELIMITER.join(
            bare[i : i + GROUP_LENGTH] for i in range(0, CODE_LENGTH, GROUP_LENGTH)
        )
    return cleaned
