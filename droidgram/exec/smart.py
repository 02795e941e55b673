"""
Smart exec: command sequences under the session autonomy level.

Wraps the sandbox with a non-overridable block-list, the wider
full-autonomy allow-list, dry runs, progress reporting and a few
canned command templates.
"""

import inspect
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from droidgram.autonomy.config import ExecConfig
from droidgram.exec.parser import (
    command_name,
    extract_commands_from_message,
    validate_commands,
)
from droidgram.exec.safety import effective_allowlist, is_absolutely_blocked
from droidgram.exec.sandbox import check_command, exec_sandbox
from droidgram.exec.types import (
    ExecResult,
    ParsedCommand,
    ProgressCallback,
    SmartExecResult,
)

ABSOLUTE_BLOCK_MESSAGE = (
    "🛡️ Command blocked for safety.\n\n"
    "This command matches a dangerous pattern and cannot be executed."
)

MAX_SUMMARY_DETAILS = 10

PROJECT_MARKERS = ("package.json", "Cargo.toml", "go.mod", "pyproject.toml", "pom.xml", ".git")

COMMAND_TEMPLATES: dict[str, list[str]] = {
    "nextjs-clean": ["rm -rf .next", "rm -rf node_modules/.cache", "npm run build"],
    "nextjs-export": ["rm -rf .next", "rm -rf out", "npm run build", "npx next export"],
    "npm-fresh": ["rm -rf node_modules", "rm -f package-lock.json", "npm install"],
    "yarn-fresh": ["rm -rf node_modules", "rm -f yarn.lock", "yarn install"],
    "pnpm-fresh": ["rm -rf node_modules", "rm -f pnpm-lock.yaml", "pnpm install"],
    "git-clean": ["git clean -fd", "git checkout ."],
    "docker-clean": ["docker system prune -f", "docker volume prune -f"],
}


@dataclass
class SmartExecOptions:
    """Execution context for a command or sequence."""
    cwd: str
    config: ExecConfig = field(default_factory=ExecConfig)
    level: str = "medium"
    dry_run: bool = False
    stop_on_error: bool = True
    on_progress: ProgressCallback | None = None


async def _notify(callback: ProgressCallback | None, current: int, total: int, result: ExecResult) -> None:
    if callback is None:
        return
    outcome = callback(current, total, result)
    if inspect.isawaitable(outcome):
        await outcome


async def smart_exec_single(command: str, options: SmartExecOptions) -> ExecResult:
    """Run one command: absolute block-list, then dry-run or sandbox."""
    if is_absolutely_blocked(command):
        logger.warning(f"Absolutely blocked command refused: {command_name(command)!r}")
        return ExecResult(success=False, denied=True, message=ABSOLUTE_BLOCK_MESSAGE)

    allowlist = effective_allowlist(options.config, options.level)

    if options.dry_run:
        denial = check_command(command, options.config, allowlist)
        if denial:
            return ExecResult(success=False, denied=True, message=f"[dry run] Would be rejected:\n{denial.message}")
        return ExecResult(success=True, message=f"[dry run] Would execute: {command}")

    return await exec_sandbox(command, options.cwd, options.config, allowlist)


def _format_result_line(cmd: ParsedCommand, result: ExecResult) -> str:
    icon = "✅" if result.success else "❌"
    label = f"{cmd.description}: " if cmd.description else ""
    line = f"{icon} {cmd.index}. {label}`{cmd.command}`"
    if not result.success:
        first = result.message.strip().splitlines()[0] if result.message.strip() else ""
        if first:
            line += f"\n   {first}"
    return line


def _no_commands_message() -> str:
    return (
        "No commands found.\n\n"
        "Send commands as a list, for example:\n"
        "1. npm install\n"
        "2. npm run build\n\n"
        "Step 1: ..., bullet points, or a ```bash code block also work."
    )


async def smart_exec_sequence(text: str, options: SmartExecOptions) -> SmartExecResult:
    """
    Parse and run a command sequence in ascending index order.

    Stops at the first failure unless options.stop_on_error is False;
    the remaining commands are counted as skipped.
    """
    parsed = extract_commands_from_message(text)
    if not parsed.total_count:
        return SmartExecResult(success=False, message=_no_commands_message(), parsed=parsed)

    allowlist = effective_allowlist(options.config, options.level)
    valid, invalid = validate_commands(parsed.commands, allowlist)
    blocked = [c for c in valid if is_absolutely_blocked(c.command)]
    runnable = [c for c in valid if c not in blocked]

    lines: list[str] = []
    mode = " (dry run)" if options.dry_run else ""
    lines.append(f"Executing {len(runnable)} of {parsed.total_count} commands{mode}")

    if blocked:
        lines.append("")
        lines.append("🛡️ Blocked for safety:")
        lines.extend(f"  {c.index}. `{c.command}`" for c in blocked)
    if invalid:
        lines.append("")
        lines.append("⚠️ Not in allowlist (skipped):")
        lines.extend(f"  {c.index}. `{c.command}`" for c in invalid)

    results: list[ExecResult] = []
    details: list[str] = []
    executed = failed = skipped = 0

    for position, cmd in enumerate(runnable):
        result = await smart_exec_single(cmd.command, options)
        results.append(result)
        executed += 1
        details.append(_format_result_line(cmd, result))
        await _notify(options.on_progress, position + 1, len(runnable), result)

        if not result.success:
            failed += 1
            if options.stop_on_error and not options.dry_run:
                skipped += len(runnable) - position - 1
                logger.info(f"Sequence stopped at command {cmd.index}: {skipped} skipped")
                break

    lines.append("")
    lines.append(f"Executed: {executed} | Failed: {failed} | Skipped: {skipped}")
    if details:
        lines.append("")
        lines.extend(details[:MAX_SUMMARY_DETAILS])
        if len(details) > MAX_SUMMARY_DETAILS:
            lines.append(f"... and {len(details) - MAX_SUMMARY_DETAILS} more")

    return SmartExecResult(
        success=failed == 0 and not blocked,
        message="\n".join(lines),
        results=results,
        parsed=parsed,
        executed_count=executed,
        failed_count=failed,
        skipped_count=skipped,
    )


async def exec_template(name: str, options: SmartExecOptions) -> SmartExecResult:
    """
    Run a named command template.

    Raises:
        ValueError: If the template does not exist.
    """
    commands = COMMAND_TEMPLATES.get(name)
    if commands is None:
        raise ValueError(f"Unknown template: {name}. Available: {', '.join(COMMAND_TEMPLATES)}")
    text = "\n".join(f"{i}. {cmd}" for i, cmd in enumerate(commands, 1))
    return await smart_exec_sequence(text, options)


def list_templates() -> str:
    """Describe the available templates for chat."""
    lines = ["Available Command Templates", ""]
    for name, commands in COMMAND_TEMPLATES.items():
        lines.append(f"{name}:")
        lines.extend(f"  {i}. {cmd}" for i, cmd in enumerate(commands, 1))
        lines.append("")
    lines.append("Use: /exec-template <name>")
    return "\n".join(lines)


def find_project_root(start: str | Path) -> Path | None:
    """Walk up from start until a directory with a project marker is found."""
    current = Path(start).expanduser().resolve()
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
            return candidate
    return None


def find_directory(start: str | Path, name: str, max_depth: int = 3) -> Path | None:
    """Breadth-first search for a directory called name below start."""
    root = Path(start).expanduser()
    frontier = [root]
    for _ in range(max_depth):
        next_frontier: list[Path] = []
        for directory in frontier:
            try:
                children = sorted(p for p in directory.iterdir() if p.is_dir())
            except OSError:
                continue
            for child in children:
                if child.name == name:
                    return child
                if child.name.startswith(".") or child.name == "node_modules":
                    continue
                next_frontier.append(child)
        frontier = next_frontier
    return None
