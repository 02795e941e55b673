"""Tests for unexpected-error analysis."""

import pytest

from droidgram.orchestrator.errors import (
    ROOT_CAUSES,
    analyze_error,
    classify_error,
    format_error_analysis,
)


class TestClassify:
    @pytest.mark.parametrize("text,category,code", [
        ("connect ECONNREFUSED 127.0.0.1:5432", "NETWORK", "ECONNREFUSED"),
        ("request timed out", "NETWORK", "ETIMEDOUT"),
        ("HTTP 401 Unauthorized", "AUTH", "401"),
        ("SyntaxError: invalid syntax", "SYNTAX", "SYNTAX_ERROR"),
        ("Error: Cannot find module 'express'", "DEPENDENCY", "MODULE_NOT_FOUND"),
        ("branch already exists", "STATE", "STATE"),
        ("something strange", "UNKNOWN", "UNKNOWN"),
    ])
    def test_table(self, text, category, code):
        assert classify_error(text) == (category, code)


class TestAnalyze:
    def test_file_not_found(self):
        analysis = analyze_error(FileNotFoundError(2, "No such file or directory"))
        assert analysis.category == "RESOURCE"
        assert analysis.code == "ENOENT"
        assert analysis.root_cause == ROOT_CAUSES["RESOURCE"]

    def test_permission(self):
        assert analyze_error(PermissionError(13, "Permission denied")).code == "EPERM"

    def test_module_not_found(self):
        analysis = analyze_error(ModuleNotFoundError("No module named 'yaml'"))
        assert analysis.category == "DEPENDENCY"

    def test_timeout(self):
        assert analyze_error(TimeoutError()).category == "NETWORK"

    def test_empty_message_uses_type(self):
        assert analyze_error(ValueError()).message == "ValueError"

    def test_unknown(self):
        analysis = analyze_error(ValueError("something strange"))
        assert analysis.category == "UNKNOWN"
        assert analysis.suggested_fixes


class TestFormat:
    def test_layout(self):
        text = format_error_analysis(analyze_error(FileNotFoundError(2, "No such file or directory")))
        assert text.startswith("🛡️ **Error Debugger**")
        assert "**Category**: RESOURCE" in text
        assert "• [60%] Verify the path exists" in text
        assert text.endswith("describe the issue for deeper analysis.")

    def test_redacts_message(self):
        text = format_error_analysis(analyze_error(RuntimeError("bad key ghp_abc123")))
        assert "ghp_abc123" not in text
