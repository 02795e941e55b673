"""Sandboxed command execution with allow/block lists and timeouts."""

import asyncio
import os

from loguru import logger

from droidgram.autonomy.config import ExecConfig
from droidgram.exec.safety import (
    check_subcommand,
    find_shell_operator,
    first_token,
    is_allowed,
    is_blocked,
    split_argv,
)
from droidgram.exec.types import ExecResult
from droidgram.utils.helpers import redact_secrets, truncate_output

MAX_BUFFER_BYTES = 1024 * 1024  # 1MB per stream
MAX_MESSAGE_CHARS = 3500
TERMINATE_GRACE = 5.0

BLOCKED_MESSAGE = "🛡️ Command blocked for safety.\n\nThis command matches a dangerous pattern."


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    """Read a stream into sink until EOF, keeping at most MAX_BUFFER_BYTES."""
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        room = MAX_BUFFER_BYTES - len(sink)
        if room > 0:
            sink.extend(chunk[:room])


async def terminate_process(process: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE) -> None:
    """SIGTERM the process, SIGKILL it after grace seconds, and reap it."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()


async def cancel_readers(readers: asyncio.Future) -> None:
    """Cancel a gather of stream readers and retrieve its outcome."""
    readers.cancel()
    try:
        await readers
    except asyncio.CancelledError:
        pass


async def run_argv(
    argv: list[str],
    cwd: str,
    timeout: float,
    env: dict[str, str] | None = None,
) -> tuple[int | None, str, str, bool]:
    """
    Run an argument vector without a shell.

    Output is collected incrementally so whatever was printed before a
    timeout is still returned. If the caller is cancelled the child is
    terminated before the cancellation propagates.

    Returns:
        (exit_code, stdout, stderr, timed_out). exit_code is None on timeout.

    Raises:
        FileNotFoundError: If the binary does not exist.
    """
    process = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdout = bytearray()
    stderr = bytearray()
    readers = asyncio.gather(_drain(process.stdout, stdout), _drain(process.stderr, stderr))
    timed_out = False

    try:
        try:
            await asyncio.wait_for(asyncio.shield(readers), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            try:
                process.kill()
            except ProcessLookupError:
                pass
        exit_code = await process.wait()
    finally:
        await terminate_process(process)
        await cancel_readers(readers)

    if timed_out:
        return None, _decode(stdout), _decode(stderr), True
    return exit_code, _decode(stdout), _decode(stderr), False


def exec_env() -> dict[str, str]:
    """Inherited environment with non-interactive, colorless output forced."""
    env = os.environ.copy()
    env.update({"CI": "true", "FORCE_COLOR": "0"})
    return env


def check_command(command: str, config: ExecConfig, allowlist: list[str] | None = None) -> ExecResult | None:
    """
    Run every pre-execution check.

    Returns:
        A denial ExecResult, or None when the command may run.
    """
    if not config.enabled:
        return ExecResult(
            success=False,
            denied=True,
            message="Command execution disabled.\n\nEnable with: /autonomy exec on",
        )

    if is_blocked(command, config.blocklist):
        return ExecResult(success=False, denied=True, message=BLOCKED_MESSAGE)

    allowed = config.allowlist if allowlist is None else allowlist
    if not is_allowed(command, allowed):
        shown = ", ".join(allowed[:10]) + ("..." if len(allowed) > 10 else "")
        return ExecResult(
            success=False,
            denied=True,
            message=(
                f"Command not allowed: {first_token(command) or '(empty)'}\n\n"
                f"Allowed commands: {shown}\n\n"
                f"Add with: /autonomy exec-allow {first_token(command)}"
            ),
        )

    operator = find_shell_operator(command)
    if operator:
        return ExecResult(
            success=False,
            denied=True,
            message=(
                f"Shell operator not supported: {operator!r}\n\n"
                "Commands run without a shell. Send them as a numbered list instead."
            ),
        )

    try:
        argv = split_argv(command)
    except ValueError as e:
        return ExecResult(success=False, denied=True, message=f"Could not parse command: {e}")

    reason = check_subcommand(argv, config.subcommands)
    if reason:
        return ExecResult(success=False, denied=True, message=reason)

    return None


async def exec_sandbox(
    command: str,
    cwd: str,
    config: ExecConfig,
    allowlist: list[str] | None = None,
) -> ExecResult:
    """
    Execute one command if it passes the block-list and allow-list checks.

    A command that fails any check never reaches process creation.
    """
    denial = check_command(command, config, allowlist)
    if denial:
        logger.info(f"Exec denied: {first_token(command)!r}")
        return denial

    argv = split_argv(command)
    timeout = config.timeout or 30.0
    logger.info(f"Exec: {redact_secrets(command)} (cwd={cwd}, timeout={timeout}s)")

    try:
        exit_code, stdout, stderr, timed_out = await run_argv(argv, cwd, timeout, env=exec_env())
    except FileNotFoundError:
        return ExecResult(
            success=False,
            message=f"Command not found: {argv[0]}\n\nIs it installed and on PATH?",
            exit_code=127,
        )
    except OSError as e:
        logger.error(f"Exec failed to start {argv[0]}: {e}")
        return ExecResult(success=False, message=f"Failed to start command: {e}")

    stdout = redact_secrets(stdout)
    stderr = redact_secrets(stderr)

    if timed_out:
        partial = truncate_output(stdout.strip(), MAX_MESSAGE_CHARS) or "(none)"
        return ExecResult(
            success=False,
            message=f"Command timed out after {timeout:g}s\n\nPartial output:\n{partial}",
            stdout=stdout,
            stderr=stderr,
            exit_code=-1,
            timed_out=True,
        )

    if exit_code != 0:
        detail = truncate_output((stderr or stdout).strip(), MAX_MESSAGE_CHARS)
        return ExecResult(
            success=False,
            message=f"Command failed (exit {exit_code})\n\n{detail}".rstrip(),
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
        )

    output = truncate_output(stdout.strip(), MAX_MESSAGE_CHARS)
    return ExecResult(
        success=True,
        message=output or "Command completed (no output)",
        stdout=stdout,
        stderr=stderr,
        exit_code=0,
    )


async def exec_sequence(
    commands: list[str],
    cwd: str,
    config: ExecConfig,
    stop_on_error: bool = True,
) -> list[ExecResult]:
    """Run commands one at a time, in order."""
    results: list[ExecResult] = []
    for command in commands:
        result = await exec_sandbox(command, cwd, config)
        results.append(result)
        if not result.success and stop_on_error:
            break
    return results


async def quick_exec(
    argv: list[str],
    cwd: str,
    timeout: float = 60.0,
    env: dict[str, str] | None = None,
) -> ExecResult:
    """
    Run a trusted internal command (git, package managers, vercel).

    No allow-list checks; callers build argv themselves.
    """
    merged_env = exec_env()
    if env:
        merged_env.update(env)

    try:
        exit_code, stdout, stderr, timed_out = await run_argv(argv, cwd, timeout, env=merged_env)
    except FileNotFoundError:
        return ExecResult(success=False, message=f"{argv[0]}: command not found", exit_code=127)
    except OSError as e:
        return ExecResult(success=False, message=f"Failed to start {argv[0]}: {e}")

    if timed_out:
        return ExecResult(
            success=False,
            message=f"{argv[0]} timed out after {timeout:g}s",
            stdout=stdout,
            stderr=stderr,
            exit_code=-1,
            timed_out=True,
        )

    return ExecResult(
        success=exit_code == 0,
        message=(stdout if exit_code == 0 else stderr or stdout).strip(),
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
    )
