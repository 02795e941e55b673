"""Background jobs for long-running Droid work."""

from droidgram.jobs.notifier import JobNotifier
from droidgram.jobs.queue import InMemoryJobQueue, Job, JobQueue
from droidgram.jobs.worker import JobResult, JobWorker

__all__ = ["InMemoryJobQueue", "Job", "JobNotifier", "JobQueue", "JobResult", "JobWorker"]
