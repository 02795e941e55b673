"""Small helpers shared across modules."""

import re
from pathlib import Path

# Secret-shaped substrings scrubbed from anything shown to users or logs
_SECRET_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bfk-[A-Za-z0-9_-]+\b"), "fk-***"),
    (re.compile(r"\bghp_[A-Za-z0-9]+\b"), "ghp_***"),
    (re.compile(r"\bsk-ant-oat01-[A-Za-z0-9_-]+\b"), "sk-ant-oat01-***"),
    (re.compile(r"\bsk-ant-(?!oat01-\*)[A-Za-z0-9_-]+\b"), "sk-ant-***"),
    (re.compile(r"\b\d{8,12}:[A-Za-z0-9_-]{20,}\b"), "<redacted:telegram_bot_token>"),
]

_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_filename(name: str) -> str:
    """Replace characters that are not valid in file names."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name).strip() or "_"


def redact_secrets(text: str) -> str:
    """Mask API keys and bot tokens in free text."""
    if not text:
        return text
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def safe_snippet(text: str, max_chars: int = 1800) -> str:
    """Redact, trim and cap text for inclusion in a chat message."""
    cleaned = redact_secrets(text or "").strip()
    if len(cleaned) <= max_chars:
        return cleaned
    return cleaned[:max_chars] + "\n... (truncated)"


def truncate_output(text: str, max_chars: int = 3500) -> str:
    """Cap command output for chat-message limits."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n\n... (truncated)"
