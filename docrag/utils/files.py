"""Small helpers for uploaded files: storage names and display sizes."""

from __future__ import annotations

import secrets
import string
import time
from pathlib import PurePath

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")
_NAME_ALPHABET = string.ascii_lowercase + string.digits


def generate_storage_filename(original_name: str | None) -> str:
    """Return a collision-resistant name like ``1718031234567_k3j9x0q2ab.pdf``."""
    suffix = PurePath(original_name).suffix.lstrip(".") if original_name else ""
    random_part = "".join(secrets.choice(_NAME_ALPHABET) for _ in range(13))
    return f"{int(time.time() * 1000)}_{random_part}.{suffix or 'tmp'}"


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for humans, e.g. ``1536`` -> ``"1.5 KB"``."""
    if num_bytes <= 0:
        return "0 Bytes"

    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{round(size, 2):g} {_SIZE_UNITS[unit]}"
