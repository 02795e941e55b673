"""Classify unexpected exceptions into user-facing explanations."""

from dataclasses import dataclass, field
from typing import Literal

from droidgram.utils.helpers import safe_snippet

ErrorCategory = Literal[
    "NETWORK", "AUTH", "SYNTAX", "RUNTIME", "RESOURCE", "CONFIG", "DEPENDENCY", "STATE", "UNKNOWN"
]


@dataclass(frozen=True)
class ErrorSignature:
    code: str
    message: str
    category: ErrorCategory
    patterns: tuple[str, ...]


# Ordered; first match wins. Specific error codes come before generic words.
# "ModuleNotFoundError" contains "enotfound", so it is checked first.
ERROR_PATTERNS: list[ErrorSignature] = [
    ErrorSignature("MODULE_NOT_FOUND", "Module not found", "DEPENDENCY",
                   ("MODULE_NOT_FOUND", "ModuleNotFoundError", "Cannot find module", "module not found")),
    ErrorSignature("ENOENT", "File or directory not found", "RESOURCE",
                   ("ENOENT", "no such file", "does not exist")),
    ErrorSignature("EPERM", "Permission denied", "RESOURCE",
                   ("EPERM", "EACCES", "permission denied")),
    ErrorSignature("ETIMEDOUT", "Connection timed out", "NETWORK",
                   ("ETIMEDOUT", "timeout", "timed out", "connection timeout")),
    ErrorSignature("ECONNRESET", "Connection reset by peer", "NETWORK",
                   ("ECONNRESET", "connection reset", "socket hang up")),
    ErrorSignature("ENOTFOUND", "DNS resolution failed", "NETWORK",
                   ("ENOTFOUND", "getaddrinfo", "DNS", "EAI_AGAIN")),
    ErrorSignature("ECONNREFUSED", "Connection refused", "NETWORK",
                   ("ECONNREFUSED", "connection refused")),
    ErrorSignature("401", "Unauthorized", "AUTH",
                   ("401", "unauthorized", "authentication failed", "invalid token")),
    ErrorSignature("403", "Forbidden", "AUTH",
                   ("403", "forbidden", "access denied")),
    ErrorSignature("SYNTAX_ERROR", "Syntax error in code", "SYNTAX",
                   ("SyntaxError", "Unexpected token", "Parse error", "Invalid syntax")),
    ErrorSignature("TYPE_ERROR", "Type mismatch", "SYNTAX",
                   ("TypeError", "is not a function", "Cannot read propert")),
    ErrorSignature("NULL_REF", "Null or undefined reference", "RUNTIME",
                   ("NoneType", "null", "undefined", "Cannot read")),
    ErrorSignature("ENV_MISSING", "Environment variable missing", "CONFIG",
                   ("environment variable", "env not set", "config missing")),
    ErrorSignature("STATE", "Inconsistent state", "STATE",
                   ("already exists", "conflict", "lock", "race")),
]

ROOT_CAUSES: dict[str, str] = {
    "NETWORK": "One or more network layer assumptions are false",
    "AUTH": "Credential validity or permission scope is incorrect",
    "SYNTAX": "Code structure does not match expected grammar",
    "RUNTIME": "Runtime state diverged from code expectations",
    "RESOURCE": "Resource availability or permission assumption is false",
    "CONFIG": "Configuration state does not match requirements",
    "DEPENDENCY": "Dependency installation or version is incorrect",
    "STATE": "State synchronization or ordering assumption is false",
    "UNKNOWN": "Requires manual investigation",
}

SUGGESTED_FIXES: dict[str, list[tuple[int, str]]] = {
    "NETWORK": [(60, "Retry the request; the service may be briefly unavailable"),
                (30, "Check network access and proxy settings on the host")],
    "AUTH": [(70, "Refresh or re-enter the API token"),
             (25, "Check the token has the required scopes")],
    "SYNTAX": [(60, "Review the most recent edit for a typo or bad merge"),
               (30, "Run the project's linter or type checker")],
    "RUNTIME": [(50, "Guard against missing values at the failing call"),
                (30, "Re-run with a fresh session to rule out stale state")],
    "RESOURCE": [(60, "Verify the path exists and the working directory is correct"),
                 (30, "Check file permissions for the bot user")],
    "CONFIG": [(70, "Set the missing environment variable or config key"),
               (20, "Restart the gateway after changing configuration")],
    "DEPENDENCY": [(70, "Install dependencies (npm install / pip install)"),
                   (25, "Check the package name and version in the manifest")],
    "STATE": [(50, "Use /reset to start a fresh session"),
              (30, "Wait for the running task to finish before retrying")],
    "UNKNOWN": [(30, "Use /reset to start a fresh session"),
                (20, "Describe the issue in more detail for deeper analysis")],
}


@dataclass
class ErrorAnalysis:
    category: ErrorCategory
    code: str
    root_cause: str
    message: str
    suggested_fixes: list[tuple[int, str]] = field(default_factory=list)


def classify_error(text: str) -> tuple[ErrorCategory, str]:
    """Return (category, code) for the first matching signature."""
    haystack = text.lower()
    for signature in ERROR_PATTERNS:
        for pattern in signature.patterns:
            if pattern.lower() in haystack:
                return signature.category, signature.code
    return "UNKNOWN", "UNKNOWN"


def analyze_error(error: BaseException) -> ErrorAnalysis:
    code = getattr(error, "code", None) or getattr(error, "errno", None) or ""
    message = str(error) or type(error).__name__
    search_text = f"{code} {type(error).__name__} {message}"
    category, matched_code = classify_error(search_text)
    return ErrorAnalysis(
        category=category,
        code=matched_code,
        root_cause=ROOT_CAUSES[category],
        message=message,
        suggested_fixes=SUGGESTED_FIXES[category],
    )


def format_error_analysis(analysis: ErrorAnalysis) -> str:
    lines = [
        "🛡️ **Error Debugger**",
        "",
        f"**Error**: {safe_snippet(analysis.message, 500)}",
        f"**Category**: {analysis.category}",
        f"**Root Cause**: {analysis.root_cause}",
    ]
    if analysis.suggested_fixes:
        lines += ["", "**Suggested Fixes**:"]
        lines += [f"• [{confidence}%] {description}" for confidence, description in analysis.suggested_fixes[:3]]
    lines += ["", "Use /reset to start fresh, or describe the issue for deeper analysis."]
    return "\n".join(lines)
