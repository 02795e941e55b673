"""Type definitions for command sequences and sandboxed execution."""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union


@dataclass
class ParsedCommand:
    """One entry of a command list extracted from chat text."""
    index: int
    raw: str
    command: str
    description: str | None = None


@dataclass
class ParsedSequence:
    """Commands extracted from a message, ordered by index."""
    commands: list[ParsedCommand] = field(default_factory=list)
    total_count: int = 0
    has_descriptions: bool = False


@dataclass
class ExecResult:
    """Result of one sandboxed command."""
    success: bool
    message: str
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
    timed_out: bool = False
    denied: bool = False


@dataclass
class SmartExecResult:
    """Outcome of running a whole command sequence."""
    success: bool
    message: str
    results: list[ExecResult] = field(default_factory=list)
    parsed: ParsedSequence = field(default_factory=ParsedSequence)
    executed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0


# Called after each command with (current, total, result); may be async
ProgressCallback = Callable[[int, int, ExecResult], Union[None, Awaitable[None]]]
