"""Tests for sandboxed command execution."""

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from droidgram.autonomy.config import ExecConfig
from droidgram.exec.sandbox import (
    BLOCKED_MESSAGE,
    check_command,
    exec_sandbox,
    exec_sequence,
    quick_exec,
    run_argv,
)


def _fake_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.stdout = asyncio.StreamReader()
    process.stdout.feed_data(stdout)
    process.stdout.feed_eof()
    process.stderr = asyncio.StreamReader()
    process.stderr.feed_data(stderr)
    process.stderr.feed_eof()
    process.wait = AsyncMock(return_value=returncode)
    return process


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


# ── Pre-execution checks ────────────────────────────────────────────


class TestCheckCommand:
    def test_disabled(self):
        denial = check_command("npm install", ExecConfig(enabled=False))
        assert denial.denied
        assert "/autonomy exec on" in denial.message

    def test_blocked(self):
        denial = check_command("sudo rm -rf build", ExecConfig(allowlist=["sudo"]))
        assert denial.message == BLOCKED_MESSAGE

    def test_not_allowed(self):
        denial = check_command("rustc main.rs", ExecConfig())
        assert denial.message.startswith("Command not allowed: rustc")
        assert "/autonomy exec-allow rustc" in denial.message

    def test_shell_operator(self):
        denial = check_command("npm install && npm test", ExecConfig())
        assert "Shell operator not supported" in denial.message

    def test_unbalanced_quotes(self):
        denial = check_command('echo "oops', ExecConfig())
        assert denial.message.startswith("Could not parse command")

    def test_subcommand_rule(self):
        config = ExecConfig(subcommands={"git": ["status"]})
        assert check_command("git status", config) is None
        assert check_command("git push", config).denied

    def test_allowlist_override(self):
        assert check_command("sleep 1", ExecConfig(), allowlist=["sleep"]) is None

    def test_passes(self):
        assert check_command("npm run build", ExecConfig()) is None


# ── Mocked execution ────────────────────────────────────────────────


class TestExecSandboxMocked:
    @pytest.mark.asyncio
    async def test_runs_argv_without_shell(self):
        process = _fake_process(stdout=b"built\n")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as create:
            result = await exec_sandbox('git commit -m "a b"', "/tmp", ExecConfig())

        assert result.success
        assert result.message == "built"
        args, kwargs = create.call_args
        assert args == ("git", "commit", "-m", "a b")
        assert kwargs["cwd"] == "/tmp"
        assert kwargs["env"]["CI"] == "true"

    @pytest.mark.asyncio
    async def test_denied_never_spawns(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock()) as create:
            result = await exec_sandbox("rm -rf /", "/tmp", ExecConfig(allowlist=["rm"]))

        assert result.denied
        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_allowlisted_never_spawns(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock()) as create:
            result = await exec_sandbox("rustc main.rs", "/tmp", ExecConfig())

        assert result.denied
        assert result.message.startswith("Command not allowed: rustc")
        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_nonzero_exit_uses_stderr(self):
        process = _fake_process(stdout=b"partial", stderr=b"npm ERR! missing script", returncode=1)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await exec_sandbox("npm run nope", "/tmp", ExecConfig())

        assert not result.success
        assert result.exit_code == 1
        assert result.message.startswith("Command failed (exit 1)")
        assert "npm ERR! missing script" in result.message

    @pytest.mark.asyncio
    async def test_output_redacted(self):
        process = _fake_process(stdout=b"token ghp_abcdef123456\n")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await exec_sandbox("gh auth status", "/tmp", ExecConfig())

        assert "ghp_abcdef123456" not in result.stdout
        assert "ghp_***" in result.message

    @pytest.mark.asyncio
    async def test_empty_output(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_fake_process())):
            result = await exec_sandbox("npm install", "/tmp", ExecConfig())
        assert result.message == "Command completed (no output)"

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
            result = await exec_sandbox("npm install", "/tmp", ExecConfig())
        assert result.exit_code == 127
        assert result.message.startswith("Command not found: npm")


# ── Real processes ──────────────────────────────────────────────────


class TestExecSandboxReal:
    @pytest.mark.asyncio
    async def test_echo(self, tmp_path):
        result = await exec_sandbox("echo hello", str(tmp_path), ExecConfig())
        assert result.success
        assert result.exit_code == 0
        assert result.message == "hello"

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        (tmp_path / "marker.txt").write_text("here")
        result = await exec_sandbox("cat marker.txt", str(tmp_path), ExecConfig())
        assert result.message == "here"

    @pytest.mark.asyncio
    async def test_failure(self, tmp_path):
        result = await exec_sandbox("cat missing.txt", str(tmp_path), ExecConfig())
        assert not result.success
        assert result.exit_code != 0

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        result = await exec_sandbox(
            "sleep 5", str(tmp_path), ExecConfig(timeout=0.2), allowlist=["sleep"]
        )
        assert result.timed_out
        assert result.exit_code == -1
        assert result.message.startswith("Command timed out after 0.2s")

    @pytest.mark.asyncio
    async def test_unknown_binary(self, tmp_path):
        name = "droidgram-no-such-binary"
        result = await exec_sandbox(name, str(tmp_path), ExecConfig(), allowlist=[name])
        assert result.exit_code == 127

    @pytest.mark.asyncio
    async def test_cancelled_caller_kills_child(self, tmp_path):
        pid_file = tmp_path / "child.pid"
        argv = ["sh", "-c", f"echo $$ > {pid_file}; exec sleep 30"]

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(run_argv(argv, str(tmp_path), timeout=60), timeout=0.5)

        assert not _alive(int(pid_file.read_text()))


class TestExecSequence:
    @pytest.mark.asyncio
    async def test_stops_on_error(self, tmp_path):
        results = await exec_sequence(
            ["echo one", "cat missing.txt", "echo three"], str(tmp_path), ExecConfig()
        )
        assert len(results) == 2
        assert results[0].success
        assert not results[1].success

    @pytest.mark.asyncio
    async def test_keep_going(self, tmp_path):
        results = await exec_sequence(
            ["cat missing.txt", "echo three"], str(tmp_path), ExecConfig(), stop_on_error=False
        )
        assert len(results) == 2
        assert results[1].success


class TestQuickExec:
    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        result = await quick_exec(["echo", "hi"], str(tmp_path))
        assert result.success
        assert result.message == "hi"

    @pytest.mark.asyncio
    async def test_env_merged(self, tmp_path):
        result = await quick_exec(["env"], str(tmp_path), env={"DROIDGRAM_TEST": "1"})
        assert "DROIDGRAM_TEST=1" in result.stdout
        assert "CI=true" in result.stdout

    @pytest.mark.asyncio
    async def test_missing(self, tmp_path):
        result = await quick_exec(["droidgram-no-such-binary"], str(tmp_path))
        assert not result.success
        assert result.exit_code == 127
