"""Utility helpers for droidgram."""

from droidgram.utils.helpers import (
    ensure_dir,
    safe_filename,
    redact_secrets,
    safe_snippet,
    truncate_output,
)

__all__ = [
    "ensure_dir",
    "safe_filename",
    "redact_secrets",
    "safe_snippet",
    "truncate_output",
]
