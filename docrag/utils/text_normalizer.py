"""Text normalization utilities for extracted document text.

This module handles two distinct normalization concerns:

1. **Lossy cleanup** -- Used when a file cannot be decoded as its declared
   type.  Strips control and non-printable characters and collapses every
   whitespace run to a single space, leaving a flat stream of words that
   is still worth embedding.

2. **CSV flattening** -- Renders comma-separated rows as readable lines
   ("a, b, c") so embeddings see field values as separate words.
"""

import re
import unicodedata

_WHITESPACE_RUN = re.compile(r"\s+")

# Unicode categories dropped by strip_control_characters: control, format,
# surrogate, private use and unassigned code points.
_DROPPED_CATEGORIES = frozenset({"Cc", "Cf", "Cs", "Co", "Cn"})


def strip_control_characters(text: str) -> str:
    """Remove control and non-printable characters, keeping whitespace.

    Whitespace controls (``\\n``, ``\\t``, ``\\r``) survive so that callers
    can decide separately whether to collapse them.

    Args:
        text: Raw decoded text.

    Returns:
        Text containing only printable characters and whitespace.
    """
    return "".join(
        ch
        for ch in text
        if ch.isspace() or unicodedata.category(ch) not in _DROPPED_CATEGORIES
    )


def collapse_whitespace(text: str) -> str:
    """Collapse every run of whitespace to one space and trim the ends."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def clean_fallback_text(text: str) -> str:
    """Apply the full lossy cleanup used by the extraction fallback path."""
    return collapse_whitespace(strip_control_characters(text))


def csv_to_text(text: str) -> str:
    """Render CSV content as one readable line per row.

    Args:
        text: Decoded CSV content.

    Returns:
        The same rows with ``,`` rendered as ``, `` and line endings
        normalized to ``\\n``.
    """
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.replace(",", ", ") for line in lines)
