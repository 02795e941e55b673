"""Tests for smart exec: sequences, dry runs and templates."""

from unittest.mock import AsyncMock, patch

import pytest

from droidgram.autonomy.config import ExecConfig
from droidgram.exec.smart import (
    ABSOLUTE_BLOCK_MESSAGE,
    COMMAND_TEMPLATES,
    SmartExecOptions,
    exec_template,
    find_directory,
    find_project_root,
    list_templates,
    smart_exec_sequence,
    smart_exec_single,
)
from droidgram.exec.types import ExecResult


def _ok(message: str = "ok") -> ExecResult:
    return ExecResult(success=True, message=message, exit_code=0)


def _fail(message: str = "boom") -> ExecResult:
    return ExecResult(success=False, message=message, exit_code=1)


class TestSmartExecSingle:
    @pytest.mark.asyncio
    async def test_absolute_block(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), level="full")
        result = await smart_exec_single("shutdown -h now", options)
        assert result.denied
        assert result.message == ABSOLUTE_BLOCK_MESSAGE

    @pytest.mark.asyncio
    async def test_dry_run_accept(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), dry_run=True)
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock()) as sandbox:
            result = await smart_exec_single("npm install", options)
        assert result.success
        assert result.message == "[dry run] Would execute: npm install"
        sandbox.assert_not_called()

    @pytest.mark.asyncio
    async def test_dry_run_reject(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), dry_run=True)
        result = await smart_exec_single("rustc main.rs", options)
        assert not result.success
        assert result.message.startswith("[dry run] Would be rejected:")

    @pytest.mark.asyncio
    async def test_full_level_widens_allowlist(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), config=ExecConfig(allowlist=["npm"]), level="full")
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(return_value=_ok())) as sandbox:
            await smart_exec_single("mkdir dist", options)
        allowlist = sandbox.call_args.args[3]
        assert "mkdir" in allowlist


class TestSmartExecSequence:
    @pytest.mark.asyncio
    async def test_runs_in_order(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), config=ExecConfig(allowlist=["npm"]))
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(return_value=_ok())) as sandbox:
            result = await smart_exec_sequence("2. npm run build 1. npm install", options)

        assert result.success
        assert result.executed_count == 2
        assert result.failed_count == 0
        assert [c.args[0] for c in sandbox.call_args_list] == ["npm install", "npm run build"]
        assert "Executed: 2 | Failed: 0 | Skipped: 0" in result.message

    @pytest.mark.asyncio
    async def test_stops_on_first_failure(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path))
        text = "1. npm install\n2. npm test\n3. npm run build"
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(side_effect=[_ok(), _fail()])):
            result = await smart_exec_sequence(text, options)

        assert not result.success
        assert result.executed_count == 2
        assert result.failed_count == 1
        assert result.skipped_count == 1
        assert "❌ 2. `npm test`\n   boom" in result.message

    @pytest.mark.asyncio
    async def test_keep_going(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), stop_on_error=False)
        text = "1. npm install\n2. npm test\n3. npm run build"
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(side_effect=[_ok(), _fail(), _ok()])):
            result = await smart_exec_sequence(text, options)

        assert result.executed_count == 3
        assert result.failed_count == 1
        assert result.skipped_count == 0

    @pytest.mark.asyncio
    async def test_skips_disallowed(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), config=ExecConfig(allowlist=["npm"]))
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(return_value=_ok())) as sandbox:
            result = await smart_exec_sequence("1. npm install\n2. rustc main.rs", options)

        assert sandbox.call_count == 1
        assert "Not in allowlist (skipped)" in result.message
        assert "2. `rustc main.rs`" in result.message

    @pytest.mark.asyncio
    async def test_absolute_block_fails_sequence(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), level="full")
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(return_value=_ok())) as sandbox:
            result = await smart_exec_sequence("1. npm install\n2. rm -rf /", options)

        assert sandbox.call_count == 1
        assert not result.success
        assert "Blocked for safety" in result.message

    @pytest.mark.asyncio
    async def test_no_commands(self, tmp_path):
        result = await smart_exec_sequence("just chatting", SmartExecOptions(cwd=str(tmp_path)))
        assert not result.success
        assert result.message.startswith("No commands found.")

    @pytest.mark.asyncio
    async def test_progress_callback(self, tmp_path):
        seen = []

        async def on_progress(current, total, result):
            seen.append((current, total, result.success))

        options = SmartExecOptions(cwd=str(tmp_path), on_progress=on_progress)
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(return_value=_ok())):
            await smart_exec_sequence("1. npm install\n2. npm test", options)

        assert seen == [(1, 2, True), (2, 2, True)]

    @pytest.mark.asyncio
    async def test_sync_progress_callback(self, tmp_path):
        seen = []
        options = SmartExecOptions(cwd=str(tmp_path), on_progress=lambda c, t, r: seen.append(c))
        with patch("droidgram.exec.smart.exec_sandbox", AsyncMock(return_value=_ok())):
            await smart_exec_sequence("1. npm install", options)
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_dry_run_real(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), dry_run=True)
        result = await smart_exec_sequence("1. npm install\n2. npm run build", options)
        assert result.success
        assert "(dry run)" in result.message
        assert all(r.message.startswith("[dry run]") for r in result.results)


class TestTemplates:
    @pytest.mark.asyncio
    async def test_unknown(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown template"):
            await exec_template("nope", SmartExecOptions(cwd=str(tmp_path)))

    @pytest.mark.asyncio
    async def test_runs_template(self, tmp_path):
        options = SmartExecOptions(cwd=str(tmp_path), dry_run=True)
        result = await exec_template("npm-fresh", options)
        assert result.parsed.total_count == len(COMMAND_TEMPLATES["npm-fresh"])
        assert [c.command for c in result.parsed.commands] == COMMAND_TEMPLATES["npm-fresh"]

    def test_list(self):
        text = list_templates()
        assert "nextjs-clean:" in text
        assert text.endswith("Use: /exec-template <name>")


class TestProjectDiscovery:
    def test_project_root(self, tmp_path):
        (tmp_path / "package.json").write_text("{}")
        nested = tmp_path / "src" / "app"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()

    def test_find_directory(self, tmp_path):
        target = tmp_path / "apps" / "web" / "out"
        target.mkdir(parents=True)
        (tmp_path / "node_modules" / "out").mkdir(parents=True)
        assert find_directory(tmp_path, "out") == target

    def test_find_directory_depth(self, tmp_path):
        (tmp_path / "a" / "b" / "c" / "out").mkdir(parents=True)
        assert find_directory(tmp_path, "out", max_depth=2) is None
