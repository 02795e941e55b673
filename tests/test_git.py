"""Tests for git operations."""

from unittest.mock import AsyncMock, patch

import pytest

from droidgram.autonomy.config import GitConfig, apply_preset
from droidgram.exec.types import ExecResult
from droidgram.git.operations import (
    get_effective_token,
    git_branch,
    git_commit,
    git_push,
    git_status,
    github_repo_path,
    to_token_url,
)


def _ok(stdout: str = "") -> ExecResult:
    return ExecResult(success=True, message=stdout.strip(), stdout=stdout, exit_code=0)


def _err(message: str) -> ExecResult:
    return ExecResult(success=False, message=message, stderr=message, exit_code=1)


class FakeGit:
    """Answers quick_exec calls from a table keyed by the git arguments."""

    def __init__(self, responses: dict[tuple[str, ...], ExecResult]):
        self.responses = responses
        self.calls: list[list[str]] = []
        self.envs: list[dict | None] = []

    async def __call__(self, argv, cwd, timeout=60.0, env=None):
        self.calls.append(argv[1:])
        self.envs.append(env)
        for key, result in self.responses.items():
            if tuple(argv[1:1 + len(key)]) == key:
                return result
        return _ok()


# ── Remote URLs and tokens ──────────────────────────────────────────


class TestRemoteUrls:
    @pytest.mark.parametrize("url", [
        "https://github.com/acme/site.git",
        "https://github.com/acme/site",
        "git@github.com:acme/site.git",
        "ssh://git@github.com/acme/site.git",
    ])
    def test_repo_path(self, url):
        assert github_repo_path(url) == "acme/site"

    def test_non_github(self):
        assert github_repo_path("https://gitlab.com/acme/site.git") is None
        assert to_token_url("https://gitlab.com/acme/site.git", "t") == "https://gitlab.com/acme/site.git"

    def test_token_url(self):
        assert to_token_url("git@github.com:acme/site.git", "ghp_x") == "https://ghp_x@github.com/acme/site.git"


class TestEffectiveToken:
    def test_user_token(self):
        assert get_effective_token(GitConfig(gh_token="mine"), "operator") == "mine"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        assert get_effective_token(GitConfig(), "operator") == "operator"
        assert get_effective_token(GitConfig()) is None

    def test_env(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert get_effective_token(GitConfig()) == "env-token"

    def test_disabled(self):
        assert get_effective_token(GitConfig(use_default_token=False), "operator") is None


# ── Status and branches ─────────────────────────────────────────────


class TestStatus:
    @pytest.mark.asyncio
    async def test_counts(self):
        git = FakeGit({
            ("status",): _ok("M  src/app.ts\n?? notes.md\nA  new.ts\n"),
            ("branch", "--show-current"): _ok("feature/x\n"),
        })
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_status("/repo")

        assert result.success
        assert result.data == {"branch": "feature/x", "staged": 2, "modified": 1, "total": 3}
        assert "🌿 Branch: feature/x" in result.message

    @pytest.mark.asyncio
    async def test_clean(self):
        git = FakeGit({("branch", "--show-current"): _ok("main\n")})
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_status("/repo")
        assert "Working tree clean" in result.message

    @pytest.mark.asyncio
    async def test_not_a_repo(self):
        git = FakeGit({("status",): _err("fatal: not a git repository")})
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_status("/tmp")
        assert not result.success
        assert "not a git repository" in result.message


class TestBranch:
    @pytest.mark.asyncio
    async def test_protected(self):
        git = FakeGit({})
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_branch("/repo", "main", apply_preset("medium"))
        assert not result.success
        assert git.calls == []

    @pytest.mark.asyncio
    async def test_creates(self):
        git = FakeGit({("branch", "--list"): _ok("")})
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_branch("/repo", "feature/login", apply_preset("medium"))
        assert result.message == "✅ Created and switched to branch: feature/login"
        assert ["checkout", "-b", "feature/login"] in git.calls

    @pytest.mark.asyncio
    async def test_switches(self):
        git = FakeGit({("branch", "--list"): _ok("  feature/login\n")})
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_branch("/repo", "feature/login", apply_preset("medium"))
        assert result.data["created"] is False
        assert ["checkout", "feature/login"] in git.calls


# ── Commit ──────────────────────────────────────────────────────────


def _commit_responses(branch: str = "feature/x", stat: str = " 2 files changed, 10 insertions(+)\n"):
    return {
        ("config", "user.name"): _ok("Dev\n"),
        ("config", "user.email"): _ok("dev@example.com\n"),
        ("branch", "--show-current"): _ok(f"{branch}\n"),
        ("diff", "--cached", "--stat"): _ok(stat),
        ("commit",): _ok(f"[{branch} 1a2b3c4] [AI] fix login\n 2 files changed\n"),
    }


class TestCommit:
    @pytest.mark.asyncio
    async def test_disabled(self):
        result = await git_commit("/repo", "msg", apply_preset("off"))
        assert "Git operations disabled" in result.message

    @pytest.mark.asyncio
    async def test_commits(self):
        git = FakeGit(_commit_responses())
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_commit("/repo", "fix login", apply_preset("medium"))

        assert result.success
        assert result.data == {"hash": "1a2b3c4", "files_changed": 2, "branch": "feature/x"}
        assert ["commit", "-m", "[AI] fix login"] in git.calls
        # Staged before counting
        assert git.calls.index(["add", "-A"]) < git.calls.index(["diff", "--cached", "--stat"])

    @pytest.mark.asyncio
    async def test_protected_branch(self):
        git = FakeGit(_commit_responses(branch="main"))
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_commit("/repo", "fix", apply_preset("medium"))
        assert "protected branch: main" in result.message
        assert ["add", "-A"] not in git.calls

    @pytest.mark.asyncio
    async def test_nothing_to_commit(self):
        git = FakeGit(_commit_responses(stat=""))
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_commit("/repo", "fix", apply_preset("medium"))
        assert result.success
        assert result.message.startswith("💡 Nothing to commit")

    @pytest.mark.asyncio
    async def test_too_many_files(self):
        git = FakeGit(_commit_responses(stat=" 51 files changed\n"))
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_commit("/repo", "fix", apply_preset("medium"))
        assert "Too many files (51)" in result.message
        assert ["reset"] in git.calls

    @pytest.mark.asyncio
    async def test_missing_identity(self):
        git = FakeGit({
            ("config", "user.name"): _err(""),
            ("config", "user.email"): _err(""),
        })
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_commit("/repo", "fix", apply_preset("medium"))
        assert "Git identity not configured" in result.message

    @pytest.mark.asyncio
    async def test_configures_identity(self):
        config = apply_preset("medium")
        config.git.user_name = "Bot"
        config.git.user_email = "bot@example.com"
        responses = _commit_responses()
        responses[("config", "user.name")] = _ok("")
        git = FakeGit(responses)
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_commit("/repo", "fix", config)
        assert result.success
        assert ["config", "user.name", "Bot"] in git.calls


# ── Push ────────────────────────────────────────────────────────────


class TestPush:
    @pytest.mark.asyncio
    async def test_disabled(self):
        result = await git_push("/repo", apply_preset("medium"))
        assert "Git push disabled" in result.message

    @pytest.mark.asyncio
    async def test_no_token(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        result = await git_push("/repo", apply_preset("high"))
        assert "No GitHub token configured" in result.message

    @pytest.mark.asyncio
    async def test_protected(self):
        git = FakeGit({("branch", "--show-current"): _ok("main\n")})
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_push("/repo", apply_preset("high"), default_token="tok")
        assert "Cannot push to protected branch: main" in result.message

    @pytest.mark.asyncio
    async def test_pushes_with_token_url(self):
        git = FakeGit({
            ("branch", "--show-current"): _ok("feature/x\n"),
            ("remote", "get-url", "origin"): _ok("git@github.com:acme/site.git\n"),
        })
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_push("/repo", apply_preset("high"), default_token="tok")

        assert result.success
        assert ["push", "https://tok@github.com/acme/site.git", "feature/x"] in git.calls
        assert git.envs[-1]["GIT_TERMINAL_PROMPT"] == "0"
        assert "https://github.com/acme/site/compare/feature/x" in result.message

    @pytest.mark.asyncio
    async def test_failure_hides_token(self):
        git = FakeGit({
            ("remote", "get-url", "origin"): _ok("https://github.com/acme/site.git\n"),
            ("push",): _err("fatal: unable to access 'https://tok@github.com/acme/site.git/': 500"),
        })
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_push("/repo", apply_preset("high"), branch="feature/x", default_token="tok")

        assert not result.success
        assert "tok@" not in result.message
        assert "***@github.com" in result.message

    @pytest.mark.asyncio
    async def test_auth_failure(self):
        git = FakeGit({
            ("remote", "get-url", "origin"): _ok("https://github.com/acme/site.git\n"),
            ("push",): _err("remote: Permission denied to bot."),
        })
        with patch("droidgram.git.operations.quick_exec", git):
            result = await git_push("/repo", apply_preset("high"), branch="feature/x", default_token="tok")
        assert "GitHub authentication failed" in result.message
