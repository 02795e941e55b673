"""Tests for deployment error classification."""

import pytest

from droidgram.deploy.diagnosis import UNKNOWN_SOLUTION, diagnose_error, format_analysis
from droidgram.deploy.types import FixAction, FixResult


class TestDiagnoseError:
    @pytest.mark.parametrize("output,category,fix", [
        ("Error: Invalid token provided", "auth", None),
        ("Request failed with status 401", "auth", None),
        ("npm ERR! code ERESOLVE", "build", FixAction.INSTALL_DEPS),
        ("Error: Cannot find module 'react'", "dependency", FixAction.INSTALL_DEPS),
        ("SyntaxError: Unexpected end of input", "build", None),
        ("error TS2322: Type 'string' is not assignable", "build", None),
        ("Error: ENOENT: no such file or directory, scandir 'dist'", "directory", FixAction.RUN_BUILD),
        ("Error: vercel.json is invalid", "config", FixAction.WRITE_CONFIG),
        ("connect ETIMEDOUT 76.76.21.21:443", "network", FixAction.EXTEND_TIMEOUT),
        ("Error: 429 Too Many Requests", "rate_limit", FixAction.WAIT_RETRY),
    ])
    def test_categories(self, output, category, fix):
        diagnosis = diagnose_error(output)
        assert diagnosis.category == category
        assert diagnosis.fix == fix
        assert diagnosis.auto_fixable is (fix is not None)

    def test_first_rule_wins(self):
        # Both the package-manager and missing-module rules match
        diagnosis = diagnose_error("npm ERR! Cannot find module 'next'")
        assert diagnosis.problem == "Package manager error during build"
        assert diagnosis.confidence == 85

    def test_matched_fragment(self):
        assert diagnose_error("Error: Cannot find module 'x'").matched == "Cannot find module"

    def test_case_insensitive(self):
        assert diagnose_error("RATE LIMIT exceeded").category == "rate_limit"

    def test_uses_message(self):
        assert diagnose_error("", "Unauthorized").category == "auth"

    def test_unknown(self):
        diagnosis = diagnose_error("something odd happened")
        assert diagnosis.category == "unknown"
        assert diagnosis.confidence == 30
        assert diagnosis.solution == UNKNOWN_SOLUTION
        assert not diagnosis.auto_fixable


class TestFormatAnalysis:
    def test_without_fix(self):
        text = format_analysis(diagnose_error("Cannot find module 'x'"))
        assert text.startswith("🔍 Error Analysis")
        assert "Category: dependency" in text
        assert "Confidence: 90%" in text
        assert "Auto-fixable: yes" in text
        assert "Fix:" not in text

    def test_with_fix(self):
        fix = FixResult(False, "npm install failed", FixAction.INSTALL_DEPS)
        text = format_analysis(diagnose_error("Cannot find module 'x'"), fix)
        assert text.endswith("Fix: ❌ npm install failed")
