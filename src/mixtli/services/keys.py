"""Storage key derivation from client-supplied filenames."""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

DEFAULT_NAME = "file"
MAX_TAIL_LENGTH = 120

_UNSAFE_RUN = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_filename(filename: Optional[str]) -> str:
    """Reduce a filename to a safe key tail.

    Runs of characters outside ``[A-Za-z0-9._-]`` collapse to a single ``-``
    and only the last 120 characters are kept, so extensions survive
    truncation. Leading dots are dropped, which rules out ``.`` and ``..``.
    """
    clean = _UNSAFE_RUN.sub("-", filename or DEFAULT_NAME)
    clean = clean[-MAX_TAIL_LENGTH:].lstrip(".")
    return clean or DEFAULT_NAME


def sanitize_prefix(prefix: Optional[str]) -> str:
    """Normalize a configured key prefix into ``a/b/c`` form."""
    segments = []
    for segment in (prefix or "").replace("\\", "/").split("/"):
        segment = _UNSAFE_RUN.sub("-", segment).strip("-")
        if segment and segment not in (".", ".."):
            segments.append(segment)
    return "/".join(segments) or "uploads"


def derive_key(
    filename: Optional[str],
    prefix: str = "uploads",
    now: Optional[datetime] = None,
) -> str:
    """Derive a unique, date-partitioned storage key.

    Args:
        filename: Client-supplied filename, possibly empty or hostile
        prefix: Key namespace the result must stay inside
        now: Timestamp used for the date partition (UTC)

    Returns:
        Key of the form ``{prefix}/YYYY/MM/DD/{uuid4}-{tail}``
    """
    now = now or datetime.now(timezone.utc)
    return (
        f"{sanitize_prefix(prefix)}/{now:%Y/%m/%d}/"
        f"{uuid.uuid4()}-{sanitize_filename(filename)}"
    )


def is_safe_key(key: str) -> bool:
    """Check that a client-supplied key cannot escape the bucket namespace."""
    if not key or key.startswith("/") or "\\" in key:
        return False
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in key):
        return False
    return all(segment not in ("", ".", "..") for segment in key.split("/"))
