"""Classify deployment errors with an ordered rule table."""

import re
from dataclasses import dataclass

from droidgram.deploy.types import DiagnosisResult, ErrorCategory, FixAction, FixResult


@dataclass(frozen=True)
class DiagnosisRule:
    """One row of the classification table."""
    pattern: re.Pattern
    category: ErrorCategory
    problem: str
    solution: str
    confidence: int
    fix: FixAction | None = None


def _rule(
    pattern: str,
    category: ErrorCategory,
    problem: str,
    solution: str,
    confidence: int,
    fix: FixAction | None = None,
) -> DiagnosisRule:
    return DiagnosisRule(re.compile(pattern, re.IGNORECASE), category, problem, solution, confidence, fix)


# Evaluated top to bottom; the first match wins
DIAGNOSIS_RULES: list[DiagnosisRule] = [
    # Authentication
    _rule(
        r"Invalid token|401|Unauthorized|authentication failed",
        "auth", "Invalid or expired Vercel token",
        "Get a new token at https://vercel.com/account/tokens and update your settings",
        95,
    ),
    _rule(
        r"VERCEL_TOKEN.*not set|missing.*token",
        "auth", "Vercel token not configured",
        "Set a Vercel token in your settings or DROIDGRAM_DEPLOY__VERCEL_TOKEN",
        95,
    ),
    # Build
    _rule(
        r"npm ERR!|yarn error|pnpm ERR!",
        "build", "Package manager error during build",
        "Run npm install locally first, then retry",
        85, FixAction.INSTALL_DEPS,
    ),
    _rule(
        r"Cannot find module|Module not found|ENOENT.*node_modules",
        "dependency", "Missing dependencies",
        "Install dependencies with npm install",
        90, FixAction.INSTALL_DEPS,
    ),
    _rule(
        r"SyntaxError|Unexpected token|Parse error",
        "build", "Syntax error in code",
        "Fix the syntax error shown in the build log",
        85,
    ),
    _rule(
        r"TypeScript.*error|TS\d{4}:",
        "build", "TypeScript compilation error",
        "Fix the TypeScript errors shown in the build log",
        90,
    ),
    _rule(
        r"Build failed|build:.*failed|exit code 1",
        "build", "Build process failed",
        "Check the build log for the failing step",
        70,
    ),
    # Directory
    _rule(
        r"ENOENT|no such file or directory|directory not found",
        "directory", "Build output directory not found",
        "Run the build first so the output directory exists",
        85, FixAction.RUN_BUILD,
    ),
    _rule(
        r"No deployable.*found|empty directory",
        "directory", "No deployable content",
        "Build the project to produce deployable files",
        80, FixAction.RUN_BUILD,
    ),
    # Configuration
    _rule(
        r"vercel\.json.*invalid|configuration.*error",
        "config", "Invalid vercel.json configuration",
        "Regenerate a minimal vercel.json",
        75, FixAction.WRITE_CONFIG,
    ),
    _rule(
        r"package\.json.*not found|missing.*package\.json",
        "config", "package.json not found",
        "Deploy from the project root or point the build dir at static output",
        80, FixAction.WRITE_CONFIG,
    ),
    _rule(
        r"framework.*not detected|unknown.*framework",
        "framework", "Framework not detected",
        "Declare the framework in vercel.json",
        70, FixAction.WRITE_CONFIG,
    ),
    # Network
    _rule(
        r"ETIMEDOUT|ECONNRESET|ECONNREFUSED|network.*error",
        "network", "Network connection error",
        "Retry the deployment; check connectivity if it keeps failing",
        80, FixAction.EXTEND_TIMEOUT,
    ),
    _rule(
        r"timeout|timed out",
        "network", "Deployment timed out",
        "Retry with a longer timeout",
        75, FixAction.EXTEND_TIMEOUT,
    ),
    # Rate limiting
    _rule(
        r"rate limit|429|too many requests",
        "rate_limit", "Rate limited by Vercel",
        "Wait and retry; the free tier allows 100 deployments per day",
        95, FixAction.WAIT_RETRY,
    ),
    # Framework specific
    _rule(
        r"next.*export|getServerSideProps.*static",
        "framework", "Next.js static export incompatibility",
        "Remove getServerSideProps or deploy without static export",
        85,
    ),
]

UNKNOWN_SOLUTION = "Enable debug output in your autonomy preview settings and check the logs"


def diagnose_error(error_output: str, error_message: str = "") -> DiagnosisResult:
    """Classify deployment failure text; the first matching rule wins."""
    text = f"{error_output or ''}\n{error_message or ''}"
    for rule in DIAGNOSIS_RULES:
        match = rule.pattern.search(text)
        if match:
            return DiagnosisResult(
                category=rule.category,
                problem=rule.problem,
                solution=rule.solution,
                confidence=rule.confidence,
                fix=rule.fix,
                matched=match.group(0),
            )

    return DiagnosisResult(
        category="unknown",
        problem="Unrecognized deployment error",
        solution=UNKNOWN_SOLUTION,
        confidence=30,
    )


def format_analysis(diagnosis: DiagnosisResult, fix_result: FixResult | None = None) -> str:
    """Render a diagnosis (and optional fix outcome) for chat."""
    lines = [
        "🔍 Error Analysis",
        f"Category: {diagnosis.category}",
        f"Problem: {diagnosis.problem}",
        f"Confidence: {diagnosis.confidence}%",
        f"Solution: {diagnosis.solution}",
        f"Auto-fixable: {'yes' if diagnosis.auto_fixable else 'no'}",
    ]
    if fix_result is not None:
        icon = "✅" if fix_result.success else "❌"
        lines.append(f"Fix: {icon} {fix_result.message}")
    return "\n".join(lines)
