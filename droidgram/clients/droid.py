"""Droid CLI client: `droid exec -o json` as a subprocess."""

import asyncio
import inspect
import json
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from loguru import logger

from droidgram.clients.base import AssistantClient, MessageChunk
from droidgram.config.schema import DroidConfig
from droidgram.exec.sandbox import cancel_readers, terminate_process
from droidgram.utils.helpers import safe_snippet

REASONING_EFFORTS = ("off", "none", "low", "medium", "high")
AUTONOMY_MODES = ("normal", "low", "medium", "high")

AUTH_KEYWORDS = (
    "factory_api_key",
    "not authenticated",
    "unauthorized",
    "forbidden",
    "401",
    "api_key",
    "invalid key",
    "authentication",
)

PROMPT_CHARS_PER_STEP = 5000
SECONDS_PER_STEP = 120
UNLIMITED_TIMEOUT = 3600  # timeout_seconds=0 means "no limit", capped at an hour
TERMINATE_GRACE = 10.0
MAX_ERROR_BODY = 2500

ProgressHook = Callable[[int, str], Union[None, Awaitable[None]]]


def _env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_bool(name: str) -> bool:
    return (_env(name) or "").lower() in ("1", "true", "yes")


def _normalize(value: str | None, allowed: tuple[str, ...]) -> str | None:
    if not value:
        return None
    value = value.strip().lower()
    return value if value in allowed else None


def looks_like_auth_error(stderr: str, stdout: str) -> bool:
    """Keyword sniff for authentication failures."""
    hay = f"{stderr}\n{stdout}".lower()
    return any(keyword in hay for keyword in AUTH_KEYWORDS)


def parse_droid_json_output(stdout: str) -> dict[str, Any]:
    """
    Parse Droid's JSON output.

    Accepts a single JSON object, JSON Lines (the last object line wins),
    or an object surrounded by log noise.

    Raises:
        ValueError: If no JSON object can be recovered.
    """
    text = stdout.strip()
    if not text:
        raise ValueError("Empty stdout")

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    for line in reversed([l.strip() for l in text.splitlines() if l.strip()]):
        if line.startswith("{") and line.endswith("}"):
            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

    start, end = text.find("{"), text.rfind("}")
    if start >= 0 and end > start:
        try:
            parsed = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Unparseable stdout: {e}") from e
        if isinstance(parsed, dict):
            return parsed

    raise ValueError("Unparseable stdout")


def extract_fields(root: dict[str, Any]) -> tuple[str | None, bool, str | None]:
    """Pull (session_id, is_error, message) out of a Droid result object."""
    session = root.get("session")
    session_id = (
        root.get("sessionId")
        or root.get("session_id")
        or (session.get("id") if isinstance(session, dict) else None)
    )

    subtype = root.get("subtype")
    is_error = (
        root.get("is_error") is True
        or root.get("isError") is True
        or (isinstance(subtype, str) and "error" in subtype.lower())
    )

    response = root.get("response")
    message = None
    for candidate in (
        root.get("result"),
        root.get("message"),
        root.get("output"),
        root.get("text"),
        response.get("text") if isinstance(response, dict) else None,
    ):
        if isinstance(candidate, str):
            message = candidate
            break

    return session_id, is_error, message


def auth_help() -> str:
    return (
        "Auth required. Fix one of these:\n"
        "1) Run `droid` once as the service user and complete the login flow, or\n"
        "2) Set FACTORY_API_KEY in the service environment."
    )


def not_found_help(binary: str) -> str:
    return (
        f"Droid CLI not found: '{binary}'. Fix one of these:\n"
        "1) Install Droid CLI and ensure it is on PATH for the service user, or\n"
        "2) Set DROIDGRAM_DROID__BIN (or DROID_BIN) to the absolute path."
    )


def timeout_help(seconds: float) -> str:
    return (
        f"⚠️ Droid CLI timed out after {seconds:g} seconds.\n\n"
        "Large prompts and multi-step tasks need more time.\n\n"
        "Try:\n"
        "1. Break the task into smaller, focused requests\n"
        "2. /reset to start a fresh session\n"
        "3. Lower the reasoning effort in your config"
    )


@dataclass
class DroidClientOptions:
    """Per-invocation Droid settings. None falls back to DROID_* env vars."""
    bin: str | None = None
    model: str | None = None
    reasoning_effort: str | None = None
    use_spec: bool | None = None
    spec_model: str | None = None
    spec_reasoning_effort: str | None = None
    auto: str | None = None
    timeout_seconds: float | None = None  # 0 means unlimited (one hour cap)
    base_timeout_seconds: float = 300.0
    max_timeout_seconds: float | None = None
    hard_timeout_seconds: float = 3600.0
    activity_check_seconds: float = 30.0
    progress_interval_seconds: float = 60.0
    on_progress: ProgressHook | None = None

    @classmethod
    def from_config(cls, config: DroidConfig, **overrides: Any) -> "DroidClientOptions":
        options = cls(
            bin=config.bin or None,
            model=config.model or None,
            reasoning_effort=config.reasoning_effort or None,
            use_spec=config.use_spec or None,
            spec_model=config.spec_model or None,
            spec_reasoning_effort=config.spec_reasoning_effort or None,
            auto=config.auto or None,
            base_timeout_seconds=config.base_timeout_seconds,
            max_timeout_seconds=config.max_timeout_seconds,
            hard_timeout_seconds=config.hard_timeout_seconds,
            progress_interval_seconds=config.progress_interval_seconds,
        )
        for key, value in overrides.items():
            setattr(options, key, value)
        return options


@dataclass
class _RunOutcome:
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool


class DroidClient(AssistantClient):
    """
    Runs prompts through `droid exec -o json`.

    The idle timeout resets on any output; a hard ceiling applies on top.
    Failures never raise: they become assistant chunks with actionable,
    redacted text.
    """

    name = "droid"

    def __init__(self, options: DroidClientOptions | None = None):
        self.options = options or DroidClientOptions()

    @property
    def binary(self) -> str:
        return self.options.bin or _env("DROID_BIN") or "droid"

    def build_args(self, prompt: str, cwd: str, resume_session_id: str | None = None) -> list[str]:
        """Arguments after the binary name."""
        o = self.options
        model = o.model or _env("DROID_MODEL")
        reasoning = _normalize(o.reasoning_effort or _env("DROID_REASONING_EFFORT"), REASONING_EFFORTS)
        use_spec = o.use_spec if o.use_spec is not None else _env_bool("DROID_USE_SPEC")
        spec_model = o.spec_model or _env("DROID_SPEC_MODEL")
        spec_reasoning = _normalize(
            o.spec_reasoning_effort or _env("DROID_SPEC_REASONING_EFFORT"), REASONING_EFFORTS
        )
        auto = _normalize(o.auto or _env("DROID_AUTO"), AUTONOMY_MODES)

        args = ["exec", "-o", "json", "--cwd", cwd]
        if resume_session_id:
            args.extend(["-s", resume_session_id])
        if model:
            args.extend(["-m", model])
        if reasoning:
            args.extend(["-r", reasoning])
        if use_spec:
            args.append("--use-spec")
        if spec_model:
            args.extend(["--spec-model", spec_model])
        if spec_reasoning:
            args.extend(["--spec-reasoning-effort", spec_reasoning])
        if auto and auto != "normal":
            args.extend(["--auto", auto])
        args.append(prompt)
        return args

    def compute_timeout(self, prompt: str) -> float:
        """Idle timeout: base + 2 minutes per 5000 prompt chars, capped."""
        o = self.options
        if o.timeout_seconds is not None:
            return UNLIMITED_TIMEOUT if o.timeout_seconds == 0 else o.timeout_seconds

        max_timeout = o.max_timeout_seconds
        if max_timeout is None:
            env_ms = _env("DROID_MAX_TIMEOUT_MS")
            max_timeout = int(env_ms) / 1000 if env_ms and env_ms.isdigit() else 900.0
        steps = len(prompt) // PROMPT_CHARS_PER_STEP
        return min(o.base_timeout_seconds + steps * SECONDS_PER_STEP, max_timeout)

    async def _report_progress(self, elapsed: float) -> None:
        hook = self.options.on_progress
        if hook is None:
            return
        seconds = int(elapsed)
        outcome = hook(seconds, f"Processing... ({seconds // 60}m {seconds % 60}s elapsed)")
        if inspect.isawaitable(outcome):
            await outcome

    async def _run(self, argv: list[str], idle_timeout: float) -> _RunOutcome:
        """Run the process, enforcing idle and hard timeouts."""
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        last_activity = [started]
        stdout, stderr = bytearray(), bytearray()

        async def pump(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
            if stream is None:
                return
            while True:
                chunk = await stream.read(65536)
                if not chunk:
                    break
                sink.extend(chunk)
                last_activity[0] = loop.time()

        pumps = asyncio.gather(pump(process.stdout, stdout), pump(process.stderr, stderr))
        waiter = asyncio.ensure_future(process.wait())
        hard_timeout = max(self.options.hard_timeout_seconds, idle_timeout)
        check = min(self.options.activity_check_seconds, idle_timeout)
        next_progress = started + self.options.progress_interval_seconds
        timed_out = False

        try:
            while not waiter.done():
                await asyncio.wait({waiter}, timeout=check)
                if waiter.done():
                    break
                now = loop.time()
                idle = now - last_activity[0]
                if idle > idle_timeout or now - started > hard_timeout:
                    timed_out = True
                    logger.error(f"Droid timed out ({idle:.0f}s idle, {now - started:.0f}s total), terminating")
                    await terminate_process(process, TERMINATE_GRACE)
                    await waiter
                    break
                if now >= next_progress:
                    next_progress = now + self.options.progress_interval_seconds
                    await self._report_progress(now - started)

            try:
                await asyncio.wait_for(asyncio.shield(pumps), timeout=TERMINATE_GRACE)
            except asyncio.TimeoutError:
                pass
        finally:
            # Also reached when the caller is cancelled, e.g. a job timeout
            await terminate_process(process, TERMINATE_GRACE)
            if not waiter.done():
                waiter.cancel()
            await cancel_readers(pumps)

        return _RunOutcome(
            exit_code=waiter.result(),
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            timed_out=timed_out,
        )

    async def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: str | None = None,
    ) -> AsyncIterator[MessageChunk]:
        binary = self.binary
        argv = [binary, *self.build_args(prompt, cwd, resume_session_id)]
        idle_timeout = self.compute_timeout(prompt)
        logger.info(
            f"Droid exec in {cwd} (prompt {len(prompt)} chars, resume={bool(resume_session_id)}, "
            f"timeout {idle_timeout:g}s)"
        )

        try:
            outcome = await self._run(argv, idle_timeout)
        except FileNotFoundError:
            logger.error(f"Droid binary not found: {binary}")
            yield MessageChunk(type="assistant", content=not_found_help(binary))
            return
        except OSError as e:
            logger.error(f"Failed to start Droid: {e}")
            yield MessageChunk(type="assistant", content=f"Failed to start Droid CLI: {e}")
            return

        logger.info(
            f"Droid exec finished: exit {outcome.exit_code}, stdout {len(outcome.stdout)} chars, "
            f"stderr {len(outcome.stderr)} chars, timed_out={outcome.timed_out}"
        )

        if outcome.timed_out:
            yield MessageChunk(type="assistant", content=timeout_help(idle_timeout))
            return

        if outcome.exit_code != 0 and outcome.stderr.strip():
            yield MessageChunk(type="system", content=safe_snippet(outcome.stderr, 4000))

        is_auth = looks_like_auth_error(outcome.stderr, outcome.stdout)

        try:
            root = parse_droid_json_output(outcome.stdout)
        except ValueError as e:
            help_text = f"\n\n{auth_help()}" if is_auth and not _env("FACTORY_API_KEY") else ""
            snippet = safe_snippet(outcome.stdout, 1200)
            content = (
                f"Failed to parse Droid output (exit {outcome.exit_code}). {e}.\n"
                f"Ensure Droid supports 'droid exec -o json' and is authenticated.{help_text}"
            )
            if snippet:
                content += f"\n\nRaw stdout (truncated):\n{snippet}"
            yield MessageChunk(type="assistant", content=content)
            return

        session_id, is_error, message = extract_fields(root)
        if session_id:
            yield MessageChunk(type="result", session_id=str(session_id))

        if is_error or outcome.exit_code != 0:
            content = f"⚠️ Droid exec failed (exit {outcome.exit_code})."
            if is_auth:
                content += f"\n\n{auth_help()}"
            if message:
                content += f"\n\n{safe_snippet(message, MAX_ERROR_BODY)}"
            if outcome.stderr.strip():
                content += f"\n\nStderr (truncated):\n{safe_snippet(outcome.stderr, 1200)}"
            yield MessageChunk(type="assistant", content=content)
            return

        if message:
            yield MessageChunk(type="assistant", content=message)
            return

        content = f"Droid exec completed (exit {outcome.exit_code}) but returned no message."
        if is_auth:
            content += f"\n\n{auth_help()}"
        if outcome.stdout.strip():
            content += f"\n\nRaw stdout (truncated):\n{safe_snippet(outcome.stdout, 1200)}"
        yield MessageChunk(type="assistant", content=content)
