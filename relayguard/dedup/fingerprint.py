"""Content fingerprinting for message dedup.

Pure functions: no I/O, deterministic for identical inputs.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

FINGERPRINT_LENGTH = 32  # hex chars of a SHA-256 digest

_WHITESPACE_RE = re.compile(r"\s+")
_FIELD_SEP = "\x1f"


@dataclass(frozen=True)
class Correlation:
    """Optional task/sequence fields folded into the fingerprint."""

    task_id: str | None = None
    seq: str | None = None


def normalize_content(content: str) -> str:
    """Collapse whitespace runs to one space and trim."""
    return _WHITESPACE_RE.sub(" ", content).strip()


def fingerprint(
    from_id: str,
    to_id: str,
    content: str,
    correlation: Correlation | None = None,
) -> str:
    """Stable identity for a (sender, recipient, content[, correlation]) tuple.

    Whitespace-only differences in content map to the same fingerprint.
    A missing correlation and an empty Correlation() are equivalent.
    """
    corr = correlation or Correlation()
    parts = [
        from_id,
        to_id,
        normalize_content(content),
        corr.task_id or "",
        corr.seq or "",
    ]
    digest = hashlib.sha256(_FIELD_SEP.join(parts).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]
