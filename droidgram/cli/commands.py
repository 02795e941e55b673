"""CLI commands for droidgram."""

import asyncio
import logging
import platform
import signal
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from droidgram import __logo__, __version__

app = typer.Typer(
    name="droidgram",
    help=f"{__logo__} droidgram - Droid CLI over Telegram",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} droidgram v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """droidgram - Droid CLI over Telegram."""
    pass


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    # python-telegram-bot and httpx log through the standard library
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def _exit_code(success: bool) -> None:
    if not success:
        raise typer.Exit(1)


# ============================================================================
# Command Sequences
# ============================================================================


@app.command()
def parse(
    text: str = typer.Argument(..., help="Message text containing a command list"),
):
    """Show how a message is parsed into a command sequence."""
    from droidgram.exec.parser import extract_commands_from_message

    sequence = extract_commands_from_message(text)
    if not sequence.total_count:
        console.print("[yellow]No commands found.[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Command Sequence ({sequence.total_count} commands)")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Command", style="green")
    table.add_column("Description", style="dim")
    for cmd in sequence.commands:
        table.add_row(str(cmd.index), cmd.command, cmd.description or "")
    console.print(table)


@app.command("exec")
def exec_command(
    text: str = typer.Argument(..., help="Command or numbered command list"),
    cwd: Path = typer.Option(Path("."), "--cwd", "-C", help="Working directory"),
    level: str = typer.Option("medium", "--level", "-l", help="Autonomy level"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Validate without running"),
    keep_going: bool = typer.Option(False, "--keep-going", "-k", help="Continue after a failure"),
):
    """Run a command sequence through the sandbox."""
    from droidgram.autonomy.config import apply_preset
    from droidgram.exec.parser import extract_commands_from_message
    from droidgram.exec.smart import SmartExecOptions, smart_exec_sequence, smart_exec_single

    try:
        config = apply_preset(level)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    options = SmartExecOptions(
        cwd=str(cwd.resolve()),
        config=config.exec,
        level=config.level,
        dry_run=dry_run,
        stop_on_error=not keep_going,
    )

    async def run():
        if extract_commands_from_message(text).total_count:
            return await smart_exec_sequence(text, options)
        return await smart_exec_single(text, options)

    result = asyncio.run(run())
    console.print(result.message)
    _exit_code(result.success)


@app.command()
def templates():
    """List the built-in command templates."""
    from droidgram.exec.smart import COMMAND_TEMPLATES

    table = Table(title="Command Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Commands", style="dim")
    for name, commands in COMMAND_TEMPLATES.items():
        table.add_row(name, "\n".join(f"{i}. {c}" for i, c in enumerate(commands, 1)))
    console.print(table)


@app.command()
def template(
    name: str = typer.Argument(..., help="Template name"),
    cwd: Path = typer.Option(Path("."), "--cwd", "-C", help="Working directory"),
    level: str = typer.Option("medium", "--level", "-l", help="Autonomy level"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Validate without running"),
):
    """Run a built-in command template."""
    from droidgram.autonomy.config import apply_preset
    from droidgram.exec.smart import SmartExecOptions, exec_template

    try:
        config = apply_preset(level)
        options = SmartExecOptions(
            cwd=str(cwd.resolve()), config=config.exec, level=config.level, dry_run=dry_run
        )
        result = asyncio.run(exec_template(name.lower(), options))
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    console.print(result.message)
    _exit_code(result.success)


# ============================================================================
# Deploy
# ============================================================================


@app.command()
def diagnose(
    text: str = typer.Argument(..., help="Deployment error output"),
):
    """Classify deployment error output and suggest a fix."""
    from droidgram.deploy.diagnosis import diagnose_error, format_analysis

    diagnosis = diagnose_error(text)
    console.print(format_analysis(diagnosis))
    fix = diagnosis.fix.value if diagnosis.fix else "none"
    console.print(f"\n[dim]category={diagnosis.category} confidence={diagnosis.confidence} fix={fix}[/dim]")


@app.command()
def deploy(
    build_dir: str = typer.Argument("", help="Directory to deploy (auto-detected if empty)"),
    cwd: Path = typer.Option(Path("."), "--cwd", "-C", help="Project directory"),
    prod: bool = typer.Option(False, "--prod", help="Deploy to production"),
    retries: int = typer.Option(None, "--retries", "-r", help="Max fix-and-retry rounds"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Deploy to Vercel, diagnosing and fixing failures between attempts."""
    from droidgram.autonomy.config import apply_preset
    from droidgram.config.loader import load_config
    from droidgram.deploy.healing import self_healing_deploy

    _setup_logging(verbose)
    config = load_config()
    vercel = apply_preset(config.default_autonomy).preview.vercel
    max_retries = config.deploy.max_retries if retries is None else retries

    result = asyncio.run(self_healing_deploy(
        str(cwd.resolve()),
        build_dir,
        vercel,
        target="production" if prod else "preview",
        max_retries=max_retries,
        token=config.deploy.vercel_token or None,
    ))
    console.print(result.message)
    _exit_code(result.success)


# ============================================================================
# Routing
# ============================================================================


@app.command()
def classify(
    text: str = typer.Argument(..., help="Task prompt"),
    agent: bool = typer.Option(False, "--agent", help="Score as if an agent persona is active"),
):
    """Show the complexity score and class of a task prompt."""
    from droidgram.config.loader import load_config
    from droidgram.orchestrator.complexity import (
        complexity_score,
        estimate_task_complexity,
        should_route_to_job_queue,
    )

    config = load_config()
    complexity = estimate_task_complexity(text, has_nova_agent=agent)
    queued = should_route_to_job_queue(complexity, config.jobs)

    table = Table(title="Task Complexity")
    table.add_column("Score", justify="right")
    table.add_column("Class", style="cyan")
    table.add_column("Background job", justify="center")
    table.add_row(str(complexity_score(text, has_nova_agent=agent)), complexity, "✓" if queued else "")
    console.print(table)


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the Telegram gateway with the orchestrator and job worker."""
    from droidgram.channels.telegram import TelegramPlatform
    from droidgram.config.loader import get_data_dir, load_config
    from droidgram.jobs import InMemoryJobQueue, JobNotifier, JobWorker
    from droidgram.orchestrator import Orchestrator
    from droidgram.session import SessionManager

    _setup_logging(verbose)
    config = load_config()

    if not config.telegram.token:
        console.print("[red]Error: No Telegram bot token configured.[/red]")
        console.print("Set telegram.token in ~/.droidgram/config.json or DROIDGRAM_TELEGRAM__TOKEN")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting droidgram gateway v{__version__}...")

    sessions = SessionManager(get_data_dir() / "sessions")
    queue = InMemoryJobQueue() if config.jobs.async_enabled else None
    orchestrator = Orchestrator(config, sessions, queue=queue)
    telegram = TelegramPlatform(config.telegram)

    async def on_message(conversation_id: str, text: str, user: dict) -> None:
        await orchestrator.dispatch(telegram, conversation_id, text, user)

    telegram.on_message = on_message

    worker = None
    if queue is not None:
        worker = JobWorker(
            queue,
            droid_config=config.droid,
            poll_interval=config.jobs.poll_interval_seconds,
            max_concurrent=config.jobs.max_concurrent,
        )
        JobNotifier(telegram, sessions).attach(worker)
        console.print(
            f"[green]✓[/green] Background jobs: threshold {config.jobs.complexity_threshold}, "
            f"max {config.jobs.max_concurrent} concurrent"
        )
    else:
        console.print("[dim]Background jobs disabled (jobs.asyncEnabled)[/dim]")

    console.print(f"[green]✓[/green] Workspace: {config.workspace_path}")
    console.print(f"[green]✓[/green] Streaming mode: {config.telegram.streaming_mode}")

    async def run():
        shutdown_event = asyncio.Event()

        def signal_handler():
            console.print("\n[yellow]Shutting down...[/yellow]")
            shutdown_event.set()

        if platform.system() == "Windows":
            signal.signal(signal.SIGINT, lambda s, f: signal_handler())
            signal.signal(signal.SIGTERM, lambda s, f: signal_handler())
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, signal_handler)

        try:
            if worker:
                await worker.start()

            main_task = asyncio.create_task(telegram.start())
            done, pending = await asyncio.wait(
                [main_task, asyncio.create_task(shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            console.print("[dim]Cleaning up...[/dim]")
            if worker:
                await worker.stop(timeout=config.jobs.shutdown_timeout_seconds)
            await telegram.stop()
            console.print("[green]✓[/green] Shutdown complete")

    asyncio.run(run())


if __name__ == "__main__":
    app()
