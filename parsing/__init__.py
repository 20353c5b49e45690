# parsing/__init__.py
"""Common parsing utilities for model output."""

from .action_parser import (
    clean_text,
    has_action,
    parse_actions,
    replace_macros,
    validate_action,
)

__all__ = [
    "clean_text",
    "has_action",
    "parse_actions",
    "replace_macros",
    "validate_action",
]
