"""
Text processing utilities and helpers.

Whitespace normalization, truncation and the helpers that turn
user-supplied names into safe on-disk path components.
"""

import re
from pathlib import PurePath

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace in text.

    Args:
        text: Input text

    Returns:
        Text with every whitespace run collapsed to a single space

    Examples:
        >>> normalize_whitespace("Hello    world\\n\\n\\nThis   is   a   test.")
        'Hello world This is a test.'
    """
    return re.sub(r'\s+', ' ', text).strip()


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to maximum length with suffix.

    Examples:
        >>> truncate_text("This is a long text", 10)
        'This is...'
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix


def is_safe_name(name: str) -> bool:
    """
    Check whether a name can be used as a single path component.

    Examples:
        >>> is_safe_name("alice_policy")
        True
        >>> is_safe_name("../etc")
        False
    """
    return bool(name) and bool(_SAFE_NAME.match(name)) and name not in (".", "..")


def sanitize_name(name: str) -> str:
    """
    Replace characters that are not allowed in store or file names.

    Examples:
        >>> sanitize_name("Q3 report (final)")
        'Q3_report_final'
    """
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name.strip()).strip("._-")
    return cleaned[:128]


def document_stem(filename: str) -> str:
    """
    Derive the store-name stem of a document.

    Examples:
        >>> document_stem("policy.txt")
        'policy'
        >>> document_stem("notes/2024 plan.md")
        '2024_plan'
    """
    return sanitize_name(PurePath(filename).stem)
