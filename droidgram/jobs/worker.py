"""Background worker that drains the job queue."""

import asyncio
import inspect
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from droidgram.clients.base import AssistantClient, MessageChunk
from droidgram.clients.droid import DroidClient, DroidClientOptions
from droidgram.config.schema import DroidConfig
from droidgram.jobs.queue import Job, JobQueue


@dataclass
class JobResult:
    success: bool
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    duration_seconds: float = 0.0


JobHandler = Callable[[Job], Awaitable[JobResult]]
JobCallback = Callable[..., Union[None, Awaitable[None]]]

# First match wins; percent only ever moves forward
PHASE_PATTERNS: list[tuple[re.Pattern, str, int]] = [
    (re.compile(r"planning|analyzing|understanding", re.I), "🎯 Planning", 10),
    (re.compile(r"researching|investigating|exploring", re.I), "🔬 Researching", 20),
    (re.compile(r"building|creating|implementing|developing", re.I), "🏗️ Building", 40),
    (re.compile(r"writing|coding|generating", re.I), "✍️ Writing code", 50),
    (re.compile(r"testing|test|verifying", re.I), "🧪 Testing", 70),
    (re.compile(r"reviewing|checking|validating", re.I), "✨ Reviewing", 80),
    (re.compile(r"complete|done|finished|success", re.I), "✅ Completing", 95),
]


def detect_phase(text: str) -> tuple[str, int] | None:
    """Map free text to a (phase label, percent) pair."""
    for pattern, phase, percent in PHASE_PATTERNS:
        if pattern.search(text):
            return phase, percent
    return None


def _mission_label(mission: str | None) -> str:
    if not mission:
        return "Processing task"
    return mission[:50] + ("..." if len(mission) > 50 else "")


async def _call(callback: JobCallback | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as e:
        logger.warning(f"Job callback failed: {e}")


class JobWorker:
    """
    Polls a JobQueue and runs claimed jobs through registered handlers.

    Lifecycle callbacks (on_started, on_progress, on_completed, on_failed)
    are how the chat platform gets notified; a failing callback never
    fails the job.
    """

    def __init__(
        self,
        queue: JobQueue,
        droid_config: DroidConfig | None = None,
        poll_interval: float = 5.0,
        max_concurrent: int = 1,
        job_types: list[str] | None = None,
        client_factory: Callable[[DroidClientOptions], AssistantClient] | None = None,
    ):
        self.queue = queue
        self.droid_config = droid_config or DroidConfig()
        self.poll_interval = poll_interval
        self.max_concurrent = max(1, max_concurrent)
        self.job_types = job_types or []
        self.client_factory = client_factory or DroidClient
        self._handlers: dict[str, JobHandler] = {}
        self._active: dict[str, asyncio.Task] = {}
        self._running = False
        self._poll_task: asyncio.Task | None = None

        self.on_started: JobCallback | None = None
        self.on_progress: JobCallback | None = None
        self.on_completed: JobCallback | None = None
        self.on_failed: JobCallback | None = None

        self.register_handler("droid_exec", self.handle_droid_exec)
        self.register_handler("nova_mission", self.handle_droid_exec)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        return len(self._active)

    def register_handler(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler
        logger.debug(f"Registered job handler for '{job_type}'")

    async def start(self) -> None:
        if self._running:
            logger.info("Job worker already running")
            return
        self._running = True
        logger.info(
            f"Job worker started (poll {self.poll_interval}s, max concurrent {self.max_concurrent})"
        )
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop polling and wait for active jobs; cancel whatever is left after timeout."""
        if not self._running:
            return
        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._active:
            logger.info(f"Waiting for {len(self._active)} active job(s)...")
            active = dict(self._active)
            _, pending = await asyncio.wait(list(active.values()), timeout=timeout)
            for job_id, task in active.items():
                if task in pending:
                    task.cancel()
                    await self.queue.fail_job(job_id, "Worker shutdown - job aborted")
            if pending:
                logger.warning(f"Aborted {len(pending)} job(s) on shutdown")
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Job worker stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Job poll error: {e}")
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> Job | None:
        """Claim one job if there is capacity and start it in the background."""
        if len(self._active) >= self.max_concurrent:
            return None
        job = await self.queue.claim_next(self.job_types or None)
        if job is None:
            return None
        logger.info(f"Processing job {job.short_id} ({job.job_type})")
        task = asyncio.create_task(self.process(job))
        self._active[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._active.pop(job_id, None))
        return job

    async def process(self, job: Job) -> JobResult:
        """Run a claimed job to completion and record the outcome."""
        await _call(self.on_started, job)
        started = time.monotonic()

        try:
            handler = self._handlers.get(job.job_type)
            if handler is None:
                raise RuntimeError(f"No handler registered for job type: {job.job_type}")
            result = await asyncio.wait_for(handler(job), timeout=job.timeout_seconds)
        except asyncio.TimeoutError:
            result = JobResult(success=False, error=f"Job timed out after {job.timeout_seconds}s")
        except Exception as e:
            logger.error(f"Job {job.short_id} error: {e}")
            result = JobResult(success=False, error=str(e))

        result.duration_seconds = time.monotonic() - started

        if job.status == "cancelled":
            logger.info(f"Job {job.short_id} was cancelled while running; result discarded")
            return result

        if result.success:
            await self.queue.complete_job(job.id, result.result)
            logger.info(f"Job {job.short_id} completed in {result.duration_seconds:.1f}s")
            await _call(self.on_completed, job, result)
        else:
            error = result.error or "Unknown error"
            await self.queue.fail_job(job.id, error)
            logger.warning(f"Job {job.short_id} failed: {error}")
            await _call(self.on_failed, job, error)
        return result

    async def handle_droid_exec(self, job: Job) -> JobResult:
        """Run the job's prompt through Droid with the long background timeout."""
        payload = job.payload
        prompt = payload.get("prompt")
        cwd = payload.get("cwd")
        if not prompt or not cwd:
            return JobResult(success=False, error="Missing required payload: prompt and cwd")

        mission = _mission_label(payload.get("nova_mission"))
        agent = payload.get("nova_agent") or "Agent"
        state = {"phase": "⚡ Starting", "percent": 5, "last": ""}

        async def advance(text: str) -> None:
            detected = detect_phase(text)
            if detected:
                state["phase"] = detected[0]
                state["percent"] = max(state["percent"], detected[1])
            message = f"{state['phase']}: {mission}"
            if message != state["last"]:
                state["last"] = message
                await _call(self.on_progress, job, state["percent"], state["phase"], message, agent)

        async def on_droid_progress(_elapsed: int, text: str) -> None:
            await advance(text)

        options = DroidClientOptions.from_config(
            self.droid_config,
            timeout_seconds=0,
            on_progress=on_droid_progress,
            **(payload.get("droid_options") or {}),
        )
        client = self.client_factory(options)

        await _call(self.on_progress, job, 5, state["phase"], f"⚡ Starting: {mission}", agent)

        chunks: list[MessageChunk] = []
        session_id = None
        async for chunk in client.send_query(prompt, cwd, payload.get("session_id")):
            chunks.append(chunk)
            if chunk.type == "result" and chunk.session_id:
                session_id = chunk.session_id
            elif chunk.type == "assistant" and chunk.content:
                await advance(chunk.content)

        assistant = [c.content for c in chunks if c.type == "assistant" and c.content]
        system = [c.content for c in chunks if c.type == "system" and c.content]
        final = assistant[-1] if assistant else "\n\n".join(system)

        if not final:
            return JobResult(success=False, error="Droid execution failed - no valid response")

        return JobResult(
            success=True,
            result={
                "message": final,
                "session_id": session_id,
                "chunks_count": len(chunks),
            },
        )
