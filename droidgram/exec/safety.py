"""Command safety checks: block-lists, allow-lists and argv validation."""

import re
import shlex
from functools import lru_cache
from pathlib import PurePosixPath

from droidgram.autonomy.config import ExecConfig

# Used only when the session autonomy level is "full"
FULL_AUTONOMY_ALLOWLIST = [
    # Package managers and runtimes
    "npm", "yarn", "pnpm", "bun", "npx", "node", "tsx", "ts-node",
    # Git
    "git", "gh",
    # Files
    "rm", "mkdir", "cp", "mv", "touch", "cat", "head", "tail", "ls", "pwd",
    "echo", "wc", "grep", "find", "which", "env",
    # Network
    "curl", "wget",
    # Build tools
    "make", "cargo", "go", "python", "pip", "python3", "pip3",
    # Containers and hosting
    "docker", "docker-compose", "vercel", "netlify", "surge",
    # Test and lint
    "jest", "vitest", "mocha", "pytest", "eslint", "prettier", "tsc", "biome",
    # Databases and process managers
    "psql", "mysql", "sqlite3", "redis-cli", "pm2", "forever",
    # Text and archives
    "sed", "awk", "sort", "uniq", "diff", "patch", "tar", "gzip", "gunzip",
    "zip", "unzip", "chmod", "chown",
]

# Never runnable, whatever the level or configured lists say
ABSOLUTE_BLOCKLIST = [
    "rm -rf /",
    "rm -rf /*",
    "rm -rf ~",
    "rm -rf $HOME",
    "sudo rm",
    "sudo su",
    "sudo -i",
    "sudo bash",
    "mkfs",
    "dd if=",
    ":(){:|:&};:",
    "> /dev/sd",
    "> /dev/nvme",
    "mv /* ",
    "chmod -R 777 /",
    "chown -R",
    "shutdown",
    "reboot",
    "init 0",
    "init 6",
    "halt",
    "poweroff",
]

DANGEROUS_PATTERNS = [
    re.compile(r"rm\s+-rf\s+/(?!\w)", re.IGNORECASE),  # rm -rf / but not /home/...
    re.compile(r">\s*/dev/sd[a-z]", re.IGNORECASE),
    re.compile(r"mkfs\.", re.IGNORECASE),
    re.compile(r"dd\s+if=", re.IGNORECASE),
    re.compile(r":\(\)\s*\{.*\}.*:", re.IGNORECASE),  # Fork bomb
    re.compile(r"chmod\s+777\s+/", re.IGNORECASE),
    re.compile(r"sudo\s+rm", re.IGNORECASE),
]

ABSOLUTE_PATTERNS = DANGEROUS_PATTERNS + [
    re.compile(r">\s*/dev/nvme", re.IGNORECASE),
    re.compile(r"sudo\s+(?:rm|dd|mkfs|chmod\s+777)", re.IGNORECASE),
]

# Checked longest first so "&&" is reported rather than "&"
SHELL_OPERATORS = ("$(", "&&", "||", ">>", "<<", ";", "|", "&", "`", ">", "<", "\n")


@lru_cache(maxsize=512)
def _entry_pattern(entry: str) -> re.Pattern:
    """
    Compile a block-list entry into a bounded substring match.

    "rm -rf /" must catch "rm -rf /" and "rm -rf /*" but not
    "rm -rf /home/user/project", and "halt" must not hit "asphalt".
    """
    pattern = re.escape(entry)
    if entry[0].isalnum() or entry[0] == "_":
        pattern = r"(?<!\w)" + pattern
    last = entry[-1]
    if last.isalnum() or last in "_/~":
        pattern += r"(?=$|[\s*;&|)'\"]|/(?:$|[\s*]))"
    return re.compile(pattern, re.IGNORECASE)


def _matches_list(command: str, entries: list[str]) -> bool:
    normalized = command.strip()
    return any(entry and _entry_pattern(entry).search(normalized) for entry in entries)


def _matches_patterns(command: str, patterns: list[re.Pattern]) -> bool:
    return any(p.search(command) for p in patterns)


def is_blocked(command: str, blocklist: list[str]) -> bool:
    """Substring match against the block-list, plus the fixed dangerous patterns."""
    return _matches_list(command, blocklist) or _matches_patterns(command, DANGEROUS_PATTERNS)


def is_absolutely_blocked(command: str) -> bool:
    """Check the non-overridable block-list."""
    return _matches_list(command, ABSOLUTE_BLOCKLIST) or _matches_patterns(command, ABSOLUTE_PATTERNS)


def first_token(command: str) -> str:
    """First whitespace-delimited token of a command."""
    parts = command.strip().split()
    return parts[0] if parts else ""


def is_allowed(command: str, allowlist: list[str]) -> bool:
    """The first token, or its path basename, must be allow-listed."""
    token = first_token(command)
    if not token:
        return False
    return token in allowlist or PurePosixPath(token).name in allowlist


def find_shell_operator(command: str) -> str | None:
    """
    Return the first shell control operator outside of quotes, if any.

    Commands run without a shell, so chaining, pipes, substitution and
    redirection would otherwise be passed through as literal arguments.
    """
    quote: str | None = None
    i = 0
    while i < len(command):
        ch = command[i]
        if quote:
            if ch == quote:
                quote = None
            elif quote == '"' and command.startswith("$(", i):
                return "$("
            elif quote == '"' and ch == "`":
                return "`"
            i += 1
            continue
        if ch in ("'", '"'):
            quote = ch
            i += 1
            continue
        if ch == "\\":
            i += 2
            continue
        for op in SHELL_OPERATORS:
            if command.startswith(op, i):
                return op
        i += 1
    return None


def split_argv(command: str) -> list[str]:
    """
    Split a command into an argument vector.

    Raises:
        ValueError: On unbalanced quotes.
    """
    return shlex.split(command)


def check_subcommand(argv: list[str], subcommands: dict[str, list[str]]) -> str | None:
    """Return a rejection reason if argv violates the (binary, subcommand) map."""
    if not argv:
        return "Empty command"
    binary = PurePosixPath(argv[0]).name
    allowed = subcommands.get(binary)
    if allowed is None:
        return None
    sub = next((a for a in argv[1:] if not a.startswith("-")), None)
    if sub is None or sub not in allowed:
        return f"{binary} subcommand '{sub or ''}' is not permitted. Allowed: {', '.join(allowed)}"
    return None


def effective_allowlist(config: ExecConfig, level: str) -> list[str]:
    """Configured allow-list, widened with the full-autonomy set at level "full"."""
    if level != "full":
        return list(config.allowlist)
    merged = list(config.allowlist)
    merged.extend(c for c in FULL_AUTONOMY_ALLOWLIST if c not in merged)
    return merged
