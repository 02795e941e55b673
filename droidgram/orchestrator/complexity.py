"""Heuristic task-complexity router for sync vs. background execution."""

import re

from droidgram.config.schema import Complexity, JobsConfig

MULTI_STEP = re.compile(r"\b(then|after that|finally|phase|step \d|first.*then|next)", re.I)
LARGE_SCALE = re.compile(r"\b(refactor|migrate|entire|all files|whole|complete|full)", re.I)
RESEARCH = re.compile(r"\b(research|analyze|investigate|compare|evaluate|audit)", re.I)
BUILD = re.compile(r"\b(build|create|implement|develop|design|architect)", re.I)

COMPLEXITY_RANK: dict[str, int] = {"quick": 1, "medium": 2, "complex": 3}
JOB_PRIORITY: dict[str, int] = {"quick": 70, "medium": 50, "complex": 30}


def complexity_score(prompt: str, has_nova_agent: bool = False) -> int:
    score = 0

    length = len(prompt)
    if length > 2000:
        score += 3
    elif length > 1000:
        score += 2
    elif length > 500:
        score += 1

    if MULTI_STEP.search(prompt):
        score += 2
    if LARGE_SCALE.search(prompt):
        score += 2
    if RESEARCH.search(prompt):
        score += 1
    if has_nova_agent and BUILD.search(prompt):
        score += 2
    if has_nova_agent:
        score += 1

    return score


def estimate_task_complexity(prompt: str, has_nova_agent: bool = False) -> Complexity:
    """Classify a prompt as quick, medium or complex."""
    score = complexity_score(prompt, has_nova_agent)
    if score >= 5:
        return "complex"
    if score >= 2:
        return "medium"
    return "quick"


def should_route_to_job_queue(complexity: Complexity, settings: JobsConfig) -> bool:
    """True when async jobs are enabled and complexity meets the threshold."""
    if not settings.async_enabled:
        return False
    return COMPLEXITY_RANK[complexity] >= COMPLEXITY_RANK[settings.complexity_threshold]


def job_priority(complexity: Complexity) -> int:
    return JOB_PRIORITY[complexity]


def job_timeout(complexity: Complexity) -> int:
    return 1800 if complexity == "complex" else 600
