"""Git operations gated by the autonomy policy."""

from droidgram.git.operations import (
    GitResult,
    get_effective_token,
    git_branch,
    git_commit,
    git_push,
    git_status,
    to_token_url,
)

__all__ = [
    "GitResult",
    "get_effective_token",
    "git_branch",
    "git_commit",
    "git_push",
    "git_status",
    "to_token_url",
]
