"""Git operations with autonomy checks and token-authenticated push."""

import os
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from droidgram.autonomy.config import AutonomyConfig, GitConfig
from droidgram.exec.sandbox import quick_exec
from droidgram.exec.types import ExecResult
from droidgram.utils.helpers import redact_secrets

GIT_TIMEOUT = 30.0
PUSH_TIMEOUT = 60.0

_GITHUB_REPO = re.compile(r"github\.com[:/](?P<repo>[^/\s]+/[^/\s]+?)(?:\.git)?/?$")
_COMMIT_HASH = re.compile(r"\[[\w./-]+(?: \(root-commit\))? ([a-f0-9]+)\]")
_FILES_CHANGED = re.compile(r"(\d+) files? changed")


@dataclass
class GitResult:
    """Outcome of a git operation, ready for chat."""
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)


def get_effective_token(config: GitConfig, default_token: str | None = None) -> str | None:
    """User token first, then the operator token when allowed."""
    if config.gh_token:
        return config.gh_token
    if config.use_default_token:
        return default_token or os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN") or None
    return None


def github_repo_path(remote_url: str) -> str | None:
    """owner/repo for a GitHub remote (https, ssh or scp-style)."""
    match = _GITHUB_REPO.search(remote_url.strip())
    return match.group("repo") if match else None


def to_token_url(remote_url: str, token: str) -> str:
    """Rewrite a GitHub remote to https://<token>@github.com/<owner>/<repo>.git."""
    repo = github_repo_path(remote_url)
    if not repo:
        return remote_url
    return f"https://{token}@github.com/{repo}.git"


async def _git(args: list[str], cwd: str, timeout: float = GIT_TIMEOUT, token: str | None = None) -> ExecResult:
    env = {"GH_TOKEN": token, "GITHUB_TOKEN": token, "GIT_TERMINAL_PROMPT": "0"} if token else None
    return await quick_exec(["git", *args], cwd, timeout=timeout, env=env)


async def current_branch(cwd: str) -> str:
    result = await _git(["branch", "--show-current"], cwd)
    return (result.stdout or "").strip() if result.success else ""


async def git_status(cwd: str) -> GitResult:
    status = await _git(["status", "--short"], cwd)
    if not status.success:
        return GitResult(False, f"❌ Git status failed: {redact_secrets(status.message)}")
    branch = await current_branch(cwd)

    lines = [line for line in (status.stdout or "").splitlines() if line.strip()]
    staged = sum(1 for line in lines if line[:1] in ("M", "A", "D", "R"))
    modified = len(lines) - staged

    msg = f"📊 Git Status\n\n🌿 Branch: {branch}\n📝 Staged: {staged} files\n📄 Modified: {modified} files\n"
    if not lines:
        msg += "\n✨ Working tree clean"
    elif len(lines) <= 20:
        msg += "\n" + "\n".join(lines)
    else:
        msg += "\n" + "\n".join(lines[:20]) + f"\n... and {len(lines) - 20} more"

    return GitResult(True, msg, {"branch": branch, "staged": staged, "modified": modified, "total": len(lines)})


async def git_branch(cwd: str, name: str, config: AutonomyConfig) -> GitResult:
    """Switch to a branch, creating it if needed. Protected branches are refused."""
    if name in config.git.protected_branches:
        return GitResult(
            False,
            f"❌ Cannot switch to protected branch: {name}\n\n"
            f"Protected: {', '.join(config.git.protected_branches)}",
        )

    listing = await _git(["branch", "--list", name], cwd)
    exists = listing.success and bool((listing.stdout or "").strip())
    result = await _git(["checkout", name] if exists else ["checkout", "-b", name], cwd)
    if not result.success:
        return GitResult(False, f"❌ Git branch failed: {redact_secrets(result.message)}")
    verb = "Switched to" if exists else "Created and switched to"
    return GitResult(True, f"✅ {verb} branch: {name}", {"branch": name, "created": not exists})


async def ensure_git_identity(cwd: str, config: GitConfig) -> GitResult:
    name = await _git(["config", "user.name"], cwd)
    email = await _git(["config", "user.email"], cwd)
    if name.success and email.success and (name.stdout or "").strip() and (email.stdout or "").strip():
        return GitResult(True, "✅ Git identity already configured.")

    if config.user_name and config.user_email:
        for key, value in (("user.name", config.user_name), ("user.email", config.user_email)):
            result = await _git(["config", key, value], cwd)
            if not result.success:
                return GitResult(False, f"❌ Failed to configure git identity: {result.message}")
        return GitResult(True, f"✅ Git identity configured: {config.user_name} <{config.user_email}>")

    return GitResult(
        False,
        "❌ Git identity not configured.\n\nSet user_name and user_email in your autonomy git settings.",
    )


async def git_commit(cwd: str, message: str, config: AutonomyConfig) -> GitResult:
    """Stage everything and commit with the configured prefix."""
    if not config.git.enabled:
        return GitResult(False, "❌ Git operations disabled. Use /autonomy with a level above off")

    identity = await ensure_git_identity(cwd, config.git)
    if not identity.success:
        return identity

    branch = await current_branch(cwd)
    if branch in config.git.protected_branches:
        return GitResult(
            False,
            f"❌ Cannot commit to protected branch: {branch}\n\nCreate a feature branch first.",
        )

    staged = await _git(["add", "-A"], cwd)
    if not staged.success:
        return GitResult(False, f"❌ Git add failed: {redact_secrets(staged.message)}")

    stat = await _git(["diff", "--cached", "--stat"], cwd)
    match = _FILES_CHANGED.search(stat.stdout or "")
    files_changed = int(match.group(1)) if match else 0
    if files_changed == 0:
        return GitResult(True, "💡 Nothing to commit. Working tree clean.")
    if files_changed > config.safety.max_files_per_commit:
        await _git(["reset"], cwd)
        return GitResult(
            False,
            f"❌ Too many files ({files_changed}). Max: {config.safety.max_files_per_commit}\n\n"
            "Commit in smaller batches.",
        )

    full_message = f"{config.git.commit_prefix}{message}"
    result = await _git(["commit", "-m", full_message], cwd)
    if not result.success:
        return GitResult(False, f"❌ Git commit failed: {redact_secrets(result.message)}")

    hash_match = _COMMIT_HASH.search(result.stdout or "")
    commit_hash = hash_match.group(1) if hash_match else "unknown"
    logger.info(f"Committed {commit_hash} on {branch} ({files_changed} files)")
    return GitResult(
        True,
        f"✅ Committed: {commit_hash}\n\n📝 {full_message}\n📊 {files_changed} files changed",
        {"hash": commit_hash, "files_changed": files_changed, "branch": branch},
    )


async def git_push(
    cwd: str,
    config: AutonomyConfig,
    branch: str | None = None,
    default_token: str | None = None,
) -> GitResult:
    """Push the branch to origin through a token-embedded HTTPS URL."""
    if not config.git.allow_push:
        return GitResult(False, "❌ Git push disabled.\n\nEnable with: /autonomy high")

    token = get_effective_token(config.git, default_token)
    if not token:
        return GitResult(
            False,
            "❌ No GitHub token configured.\n\nSet DROIDGRAM_GITHUB__TOKEN or GH_TOKEN in the environment.",
        )

    target = branch or await current_branch(cwd)
    if not target:
        return GitResult(False, "❌ Could not determine the current branch")
    if target in config.git.protected_branches:
        return GitResult(
            False,
            f"❌ Cannot push to protected branch: {target}\n\nUse a feature branch and create a PR.",
        )

    remote = await _git(["remote", "get-url", "origin"], cwd)
    if not remote.success:
        return GitResult(False, f"❌ No origin remote: {redact_secrets(remote.message)}")
    remote_url = (remote.stdout or "").strip()
    repo = github_repo_path(remote_url)
    push_url = to_token_url(remote_url, token)

    result = await _git(["push", push_url, target], cwd, timeout=PUSH_TIMEOUT, token=token)
    if not result.success:
        # The token is part of the URL, so scrub it from anything echoed back
        output = redact_secrets(result.message.replace(token, "***"))
        if any(s in output for s in ("Authentication failed", "403", "Permission denied")):
            return GitResult(
                False,
                "❌ GitHub authentication failed.\n\nCheck your token has \"repo\" scope.",
            )
        return GitResult(False, f"❌ Git push failed: {output[:500]}")

    msg = f"✅ Pushed to origin/{target}"
    if repo:
        msg += f"\n\n🔗 Create PR: https://github.com/{repo}/compare/{target}"
    return GitResult(True, msg, {"branch": target, "repo": repo})
