"""Chat notifications for background job lifecycle events."""

import time
from typing import TYPE_CHECKING

from loguru import logger

from droidgram.jobs.queue import Job
from droidgram.utils.helpers import truncate_output

if TYPE_CHECKING:
    from droidgram.channels.base import ChatPlatform
    from droidgram.jobs.worker import JobResult, JobWorker
    from droidgram.session.manager import SessionManager


def format_duration(seconds: float) -> str:
    total = int(seconds)
    mins, secs = divmod(total, 60)
    return f"{mins}m {secs}s" if mins else f"{secs}s"


def format_queued(job: Job, mission: str | None = None) -> str:
    lines = ["🔄 **Task Queued**", ""]
    if mission:
        lines += [f"📋 {mission}", ""]
    lines.append("Your request is being processed in the background.")
    lines.append(f"Job: `{job.short_id}`")
    lines += [
        "",
        f"Check: /job {job.short_id}",
        "List: /jobs",
        f"Cancel: /cancel {job.short_id}",
    ]
    return "\n".join(lines)


def format_started(job: Job) -> str:
    lines = ["⚡ **Processing Started**"]
    if job.agent:
        lines.append(f"🤖 Agent: **{job.agent}**")
    lines.append(f"Job: `{job.short_id}`")
    lines += ["", "Working on your request..."]
    return "\n".join(lines)


def format_progress(percent: int, phase: str, message: str, agent: str | None = None) -> str:
    filled = max(0, min(10, percent // 10))
    bar = "█" * filled + "░" * (10 - filled)
    head = f"🤖 **{agent}**\n" if agent else ""
    return f"{head}⏳ [{bar}] {percent}%\n{phase}\n{message}"


def format_completed(job: Job, duration: float, message: str | None = None) -> str:
    lines = ["✅ **Task Complete**"]
    if job.agent:
        lines.append(f"🤖 {job.agent}")
    lines.append(f"Job: `{job.short_id}`")
    lines.append(f"⏱️ Duration: {format_duration(duration)}")
    if message:
        lines += ["", message]
    return "\n".join(lines)


def format_failed(job: Job, error: str) -> str:
    lines = ["❌ **Task Failed**"]
    if job.agent:
        lines.append(f"🤖 {job.agent}")
    lines.append(f"Job: `{job.short_id}`")
    lines.append(f"Error: {error}")
    lines += ["", "💡 Try breaking the task into smaller steps, or use /reset to start fresh."]
    return "\n".join(lines)


def format_job_status(job: Job) -> str:
    """One job, as shown by /job."""
    lines = [f"📋 **{job.name}**", f"Job: `{job.short_id}`", f"Status: {job.status}"]
    if job.agent:
        lines.append(f"Agent: {job.agent}")
    lines.append(f"Created: {job.created_at:%Y-%m-%d %H:%M:%S}")
    duration = job.duration_seconds
    if duration is not None:
        lines.append(f"Duration: {format_duration(duration)}")
    if job.error:
        lines.append(f"Error: {job.error}")
    if job.result and job.result.get("message"):
        lines += ["", truncate_output(job.result["message"], 3000)]
    return "\n".join(lines)


def format_job_list(jobs: list[Job]) -> str:
    if not jobs:
        return "No jobs for this conversation."
    icons = {"pending": "⏸️", "running": "⚡", "completed": "✅", "failed": "❌", "cancelled": "🚫"}
    lines = ["**Recent jobs**", ""]
    for job in jobs:
        lines.append(f"{icons.get(job.status, '•')} `{job.short_id}` {job.status} - {job.name}")
    return "\n".join(lines)


class JobNotifier:
    """
    Forwards JobWorker events to the chat platform.

    Progress messages are throttled per job; completion also stores the
    Droid session id back on the conversation so the next turn resumes it.
    """

    def __init__(
        self,
        platform: "ChatPlatform",
        sessions: "SessionManager | None" = None,
        min_progress_interval: float = 30.0,
    ):
        self.platform = platform
        self.sessions = sessions
        self.min_progress_interval = min_progress_interval
        self._last_progress: dict[str, tuple[float, int]] = {}

    def attach(self, worker: "JobWorker") -> None:
        worker.on_started = self.on_started
        worker.on_progress = self.on_progress
        worker.on_completed = self.on_completed
        worker.on_failed = self.on_failed

    async def _send(self, conversation_id: str, text: str) -> None:
        try:
            await self.platform.send_message(conversation_id, text)
        except Exception as e:
            logger.warning(f"Failed to send job notification to {conversation_id}: {e}")

    async def on_started(self, job: Job) -> None:
        await self._send(job.conversation_id, format_started(job))

    async def on_progress(self, job: Job, percent: int, phase: str, message: str, agent: str | None = None) -> None:
        now = time.monotonic()
        last = self._last_progress.get(job.id)
        if last is not None:
            last_time, last_percent = last
            if now - last_time < self.min_progress_interval or percent <= last_percent:
                return
        self._last_progress[job.id] = (now, percent)
        await self._send(job.conversation_id, format_progress(percent, phase, message, agent))

    async def on_completed(self, job: Job, result: "JobResult") -> None:
        self._last_progress.pop(job.id, None)
        session_id = result.result.get("session_id")
        if self.sessions and session_id:
            session = self.sessions.get_or_create(job.session_key)
            session.droid_session_id = session_id
            self.sessions.save(session)
        await self._send(
            job.conversation_id,
            format_completed(job, result.duration_seconds, result.result.get("message")),
        )

    async def on_failed(self, job: Job, error: str) -> None:
        self._last_progress.pop(job.id, None)
        await self._send(job.conversation_id, format_failed(job, error))
