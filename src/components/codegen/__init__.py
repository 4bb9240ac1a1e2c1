"""
Codegen component - Invite code generation and normalization.
"""

from ._impl import (
    CODE_ALPHABET,
    CODE_LENGTH,
    CODE_PATTERN,
    DEFAULT_FORMAT,
    DELIMITER,
    CodeFormat,
    CodeGenerator,
    is_well_formed,
    normalize_code,
)

__all__ = [
    "CODE_ALPHABET",
    "CODE_LENGTH",
    "CODE_PATTERN",
    "DEFAULT_FORMAT",
    "DELIMITER",
    "CodeFormat",
    "CodeGenerator",
    "is_well_formed",
    "normalize_code",
]
