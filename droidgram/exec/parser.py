"""Extract ordered shell-command lists from free-form chat text."""

import re
from pathlib import PurePosixPath

from droidgram.exec.types import ParsedCommand, ParsedSequence

# "1. cmd", "2) cmd", "3: cmd" at line start or after whitespace
NUMBERED_MARKER = re.compile(r"(?:^|(?<=\s))(\d+)[.):]\s+")

# "Step 1: cmd", "step 2 - cmd"
STEP_MARKER = re.compile(r"\bstep\s*(\d+)\s*[:.)-]?\s+", re.IGNORECASE)
STEP_PREFIX = re.compile(r"\bstep\s*$", re.IGNORECASE)

BULLET_LINE = re.compile(r"^\s*[-*•]\s+(.+)$", re.MULTILINE)

CODE_BLOCK = re.compile(r"```(?:bash|sh|shell|zsh)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)

# "Clear cache: rm -rf .next"; the label may not contain quotes or backticks
DESCRIPTION_PREFIX = re.compile(r"^([A-Za-z][^:'\"`]*?):\s+(\S.*)$", re.DOTALL)

TRAILING_NOTE = re.compile(r"\s*\([^()]*\)\s*$")

_CLAUSE_VERBS = (
    "rebuild", "clear", "fix", "update", "install", "remove", "delete", "create",
    "generate", "run", "start", "stop", "restart", "build", "test", "deploy",
    "check", "verify", "validate", "ensure", "make", "set", "get", "show", "list",
    "view", "display", "print", "save", "load", "copy", "move", "rename", "backup",
    "restore", "reset", "clean", "purge", "flush", "refresh", "reload", "sync",
    "push", "pull", "fetch", "clone", "init", "setup", "configure", "enable",
    "disable", "apply", "compile", "bundle", "lint", "format", "publish", "release",
    "see", "confirm", "free", "regenerate", "recompile",
)
TRAILING_CLAUSE = re.compile(
    r"\s+to\s+(?:" + "|".join(_CLAUSE_VERBS) + r")\b.*$",
    re.IGNORECASE | re.DOTALL,
)


def clean_command(cmd: str) -> str:
    """Strip comments, parenthetical notes and "to <verb>" tails from a command."""
    cleaned = cmd.split("#", 1)[0].strip()
    cleaned = TRAILING_NOTE.sub("", cleaned).strip()
    if "--to" not in cleaned and "-to" not in cleaned:
        cleaned = TRAILING_CLAUSE.sub("", cleaned).strip()
    return cleaned


def _split_description(body: str) -> tuple[str | None, str]:
    match = DESCRIPTION_PREFIX.match(body)
    if match:
        return match.group(1).strip(), match.group(2)
    return None, body


def _parse_marked(text: str, marker: re.Pattern) -> list[ParsedCommand]:
    """Slice text at each marker and parse the bodies between them."""
    matches = list(marker.finditer(text))
    if marker is NUMBERED_MARKER:
        # "Step 1:" belongs to the step pattern
        matches = [m for m in matches if not STEP_PREFIX.search(text[:m.start()])]
    commands: list[ParsedCommand] = []

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        raw = text[match.start():end].strip()
        body = text[match.end():end].strip()
        if not body:
            continue

        description, command_text = _split_description(body)
        command = clean_command(command_text)
        if not command:
            continue

        commands.append(ParsedCommand(
            index=int(match.group(1)),
            raw=raw,
            command=command,
            description=description,
        ))

    return commands


def _parse_bullets(text: str) -> list[ParsedCommand]:
    commands: list[ParsedCommand] = []
    for match in BULLET_LINE.finditer(text):
        description, command_text = _split_description(match.group(1).strip())
        command = clean_command(command_text)
        if command:
            commands.append(ParsedCommand(
                index=len(commands) + 1,
                raw=match.group(0).strip(),
                command=command,
                description=description,
            ))
    return commands


def _build_sequence(commands: list[ParsedCommand]) -> ParsedSequence:
    ordered = sorted(commands, key=lambda c: c.index)
    return ParsedSequence(
        commands=ordered,
        total_count=len(ordered),
        has_descriptions=any(c.description for c in ordered),
    )


def parse_command_sequence(text: str) -> ParsedSequence:
    """
    Parse numbered, step-prefixed or bulleted command lists.

    Patterns are tried in that order; the first one that yields any
    command wins. Commands come back sorted by their written index.
    Unrecognized input yields an empty sequence.
    """
    if not text or not text.strip():
        return ParsedSequence()

    for parse in (
        lambda t: _parse_marked(t, NUMBERED_MARKER),
        lambda t: _parse_marked(t, STEP_MARKER),
        _parse_bullets,
    ):
        commands = parse(text)
        if commands:
            return _build_sequence(commands)

    return ParsedSequence()


def extract_code_block_commands(text: str) -> list[ParsedCommand]:
    """Treat non-comment lines of shell code fences as commands."""
    commands: list[ParsedCommand] = []
    for block in CODE_BLOCK.finditer(text or ""):
        for line in block.group(1).splitlines():
            line = line.strip()
            if not line or line.startswith("#") or line.startswith("//"):
                continue
            commands.append(ParsedCommand(index=len(commands) + 1, raw=line, command=line))
    return commands


def extract_commands_from_message(text: str) -> ParsedSequence:
    """Parse a list first, then fall back to fenced code blocks."""
    sequence = parse_command_sequence(text)
    if sequence.total_count:
        return sequence
    return _build_sequence(extract_code_block_commands(text))


def command_name(command: str) -> str:
    """First whitespace token, reduced to its path basename."""
    parts = command.strip().split()
    if not parts:
        return ""
    return PurePosixPath(parts[0]).name


def validate_commands(
    commands: list[ParsedCommand],
    allowlist: list[str],
) -> tuple[list[ParsedCommand], list[ParsedCommand]]:
    """Partition commands into (valid, invalid) against an allow-list."""
    allowed = set(allowlist)
    valid: list[ParsedCommand] = []
    invalid: list[ParsedCommand] = []

    for cmd in commands:
        first = cmd.command.strip().split()[0] if cmd.command.strip() else ""
        if first in allowed or command_name(cmd.command) in allowed:
            valid.append(cmd)
        else:
            invalid.append(cmd)

    return valid, invalid


def format_command_sequence(sequence: ParsedSequence) -> str:
    """Render a parsed sequence for chat."""
    if not sequence.total_count:
        return "No commands found."

    noun = "command" if sequence.total_count == 1 else "commands"
    lines = [f"Command Sequence ({sequence.total_count} {noun})", ""]
    for cmd in sequence.commands:
        if cmd.description:
            lines.append(f"{cmd.index}. {cmd.description}: `{cmd.command}`")
        else:
            lines.append(f"{cmd.index}. `{cmd.command}`")
    return "\n".join(lines)
