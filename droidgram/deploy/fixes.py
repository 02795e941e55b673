"""Remediation actions for failed deployments."""

import asyncio
import json
from pathlib import Path

from loguru import logger

from droidgram.deploy.types import DiagnosisResult, FixAction, FixResult
from droidgram.deploy.vercel import (
    BUILD_DIR_CANDIDATES,
    VERCEL_FRAMEWORK_SLUGS,
    detect_framework,
    read_package_json,
)
from droidgram.exec.sandbox import quick_exec

INSTALL_TIMEOUT = 120.0
BUILD_TIMEOUT = 300.0
RATE_LIMIT_WAIT = 30.0
BUILD_SCRIPTS = ("build", "build:prod", "generate")


def detect_package_manager(cwd: str | Path) -> str:
    """Pick the package manager from the lockfile present."""
    root = Path(cwd)
    if (root / "yarn.lock").exists():
        return "yarn"
    if (root / "pnpm-lock.yaml").exists():
        return "pnpm"
    return "npm"


async def install_dependencies(cwd: str) -> FixResult:
    manager = detect_package_manager(cwd)
    logger.info(f"Auto-fix: {manager} install in {cwd}")
    result = await quick_exec([manager, "install"], cwd, timeout=INSTALL_TIMEOUT)
    if result.success:
        return FixResult(True, f"Installed dependencies with {manager}", FixAction.INSTALL_DEPS)
    return FixResult(False, f"{manager} install failed: {result.message[:300]}", FixAction.INSTALL_DEPS)


def _output_dir_exists(cwd: Path, build_dir: str) -> str | None:
    for candidate in filter(None, [build_dir, "dist", *BUILD_DIR_CANDIDATES]):
        if candidate != "." and (cwd / candidate).is_dir():
            return candidate
    return None


async def run_build(cwd: str, build_dir: str = "") -> FixResult:
    root = Path(cwd)
    package = read_package_json(root)
    if package is None:
        return FixResult(False, "No package.json found, cannot build", FixAction.RUN_BUILD)

    scripts = package.get("scripts", {})
    script = next((s for s in BUILD_SCRIPTS if s in scripts), None)
    if script is None:
        return FixResult(False, "No build script in package.json", FixAction.RUN_BUILD)

    manager = detect_package_manager(root)
    logger.info(f"Auto-fix: {manager} run {script} in {cwd}")
    result = await quick_exec([manager, "run", script], cwd, timeout=BUILD_TIMEOUT)
    if not result.success:
        return FixResult(False, f"Build failed: {result.message[:300]}", FixAction.RUN_BUILD)

    output_dir = _output_dir_exists(root, build_dir)
    if output_dir is None:
        return FixResult(False, "Build succeeded but no output directory was produced", FixAction.RUN_BUILD)
    return FixResult(True, f"Built project ({script}), output in {output_dir}", FixAction.RUN_BUILD)


def write_vercel_config(cwd: str, build_dir: str = "") -> FixResult:
    """Write a minimal vercel.json unless a valid one already exists."""
    path = Path(cwd) / "vercel.json"
    existing: dict | None = None
    if path.exists():
        try:
            existing = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            existing = None

    framework = detect_framework(cwd, build_dir or None)
    slug = VERCEL_FRAMEWORK_SLUGS.get(framework) if framework else None

    if isinstance(existing, dict):
        if slug and "framework" not in existing:
            existing["framework"] = slug
            path.write_text(json.dumps(existing, indent=2) + "\n", encoding="utf-8")
            return FixResult(True, f"Added framework '{slug}' to vercel.json", FixAction.WRITE_CONFIG)
        return FixResult(False, "vercel.json already valid, nothing to fix", FixAction.WRITE_CONFIG)

    config: dict = {"version": 2}
    if slug:
        config["framework"] = slug
    if build_dir and build_dir not in (".", "./"):
        config["outputDirectory"] = build_dir
    path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
    logger.info(f"Auto-fix: wrote {path}")
    return FixResult(True, "Created minimal vercel.json", FixAction.WRITE_CONFIG)


async def wait_for_rate_limit(seconds: float = RATE_LIMIT_WAIT) -> FixResult:
    logger.info(f"Auto-fix: waiting {seconds:g}s for rate limit")
    await asyncio.sleep(seconds)
    return FixResult(True, f"Waited {seconds:g}s for rate limit", FixAction.WAIT_RETRY)


async def attempt_auto_fix(cwd: str, diagnosis: DiagnosisResult, build_dir: str = "") -> FixResult:
    """Apply the fix attached to a diagnosis."""
    if diagnosis.fix is None:
        return FixResult(False, f"No automatic fix for {diagnosis.category} errors")

    if diagnosis.fix is FixAction.INSTALL_DEPS:
        return await install_dependencies(cwd)
    if diagnosis.fix is FixAction.RUN_BUILD:
        return await run_build(cwd, build_dir)
    if diagnosis.fix is FixAction.WRITE_CONFIG:
        return write_vercel_config(cwd, build_dir)
    if diagnosis.fix is FixAction.WAIT_RETRY:
        return await wait_for_rate_limit()
    # EXTEND_TIMEOUT: the loop doubles the next attempt's timeout
    return FixResult(True, "Retrying with a longer timeout", FixAction.EXTEND_TIMEOUT)
